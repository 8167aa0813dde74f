"""
In-memory relationship store.

Holds the relationship graph in plain dicts and sets. Each snapshot works on
a private copy of the state taken when the snapshot opened, so writes made
afterwards are never observed half-applied.
"""

import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from shared.errors import NotFoundError
from shared.logging import get_logger
from . import dataset
from .models import (
    AssignmentScope, Repo, RepoGroup, RepogroupMembership, RoleAssignment, User,
    UserGroup, UsergroupMembership, UsergroupNesting, build_assignment
)
from .store import RelationshipStore, StoreSnapshot


@dataclass
class _GraphState:
    users: Dict[int, User] = field(default_factory=dict)
    usergroups: Dict[int, UserGroup] = field(default_factory=dict)
    repos: Dict[int, Repo] = field(default_factory=dict)
    repogroups: Dict[int, RepoGroup] = field(default_factory=dict)
    memberships: Set[UsergroupMembership] = field(default_factory=set)
    nestings: Set[UsergroupNesting] = field(default_factory=set)
    repogroup_memberships: Set[RepogroupMembership] = field(default_factory=set)
    # raw rows; labels are decoded on read like any other backend
    assignments: List[Tuple[AssignmentScope, int, int, str]] = field(default_factory=list)


class InMemorySnapshot(StoreSnapshot):
    """Snapshot over a frozen copy of the in-memory graph."""

    def __init__(self, state: _GraphState):
        self._state = state

    async def find_user(self, user_id: int) -> User:
        user = self._state.users.get(user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    async def find_repo(self, name: str) -> Repo:
        for repo in self._state.repos.values():
            if repo.name == name:
                return repo
        raise NotFoundError("repo", name)

    async def direct_usergroups(self, user_id: int) -> Set[UsergroupMembership]:
        return {m for m in self._state.memberships if m.user_id == user_id}

    async def child_usergroups(self, parent_ids: Iterable[int]) -> Set[UsergroupNesting]:
        parents = set(parent_ids)
        return {n for n in self._state.nestings if n.parent_usergroup_id in parents}

    async def repogroups_containing(self, repo_id: int) -> Set[RepogroupMembership]:
        return {m for m in self._state.repogroup_memberships if m.repo_id == repo_id}

    async def role_assignments(
        self,
        scope: AssignmentScope,
        principal_ids: Set[int],
        resource_ids: Set[int]
    ) -> List[RoleAssignment]:
        if not principal_ids or not resource_ids:
            return []

        return [
            build_assignment(scope, principal_id, resource_id, label, row_id=row_id)
            for row_id, (row_scope, principal_id, resource_id, label) in enumerate(self._state.assignments, start=1)
            if row_scope == scope and principal_id in principal_ids and resource_id in resource_ids
        ]


class InMemoryRelationshipStore(RelationshipStore):
    """Relationship store backed by process memory."""

    def __init__(self):
        self.logger = get_logger("authz.store.memory")
        self._state = _GraphState()

    @asynccontextmanager
    async def snapshot(self):
        yield InMemorySnapshot(copy.deepcopy(self._state))

    def add_user(self, user_id: int, name: str) -> User:
        user = User(user_id, name)
        self._state.users[user_id] = user
        return user

    def add_usergroup(self, usergroup_id: int, name: str) -> UserGroup:
        usergroup = UserGroup(usergroup_id, name)
        self._state.usergroups[usergroup_id] = usergroup
        return usergroup

    def add_repo(self, repo_id: int, name: str) -> Repo:
        repo = Repo(repo_id, name)
        self._state.repos[repo_id] = repo
        return repo

    def add_repogroup(self, repogroup_id: int, name: str) -> RepoGroup:
        repogroup = RepoGroup(repogroup_id, name)
        self._state.repogroups[repogroup_id] = repogroup
        return repogroup

    def add_membership(self, usergroup_id: int, user_id: int):
        self._state.memberships.add(UsergroupMembership(user_id=user_id, usergroup_id=usergroup_id))

    def add_nesting(self, parent_usergroup_id: int, child_usergroup_id: int):
        self._state.nestings.add(UsergroupNesting(parent_usergroup_id, child_usergroup_id))

    def remove_nesting(self, parent_usergroup_id: int, child_usergroup_id: int):
        self._state.nestings.discard(UsergroupNesting(parent_usergroup_id, child_usergroup_id))

    def add_repo_to_group(self, repogroup_id: int, repo_id: int):
        self._state.repogroup_memberships.add(RepogroupMembership(repogroup_id, repo_id))

    def assign_role(self, scope, principal_id: int, resource_id: int, role: str):
        """Store an assignment row; the label is only validated when read."""
        self._state.assignments.append((AssignmentScope(scope), principal_id, resource_id, str(role)))

    def revoke_roles(self, scope, principal_id: int, resource_id: int) -> int:
        scope = AssignmentScope(scope)
        before = len(self._state.assignments)
        self._state.assignments = [
            row for row in self._state.assignments
            if not (row[0] == scope and row[1] == principal_id and row[2] == resource_id)
        ]
        return before - len(self._state.assignments)

    @classmethod
    def example_dataset(cls) -> "InMemoryRelationshipStore":
        """Store pre-populated with the example relationship graph."""
        store = cls()
        for user_id, name in dataset.USERS:
            store.add_user(user_id, name)
        for usergroup_id, name in dataset.USERGROUPS:
            store.add_usergroup(usergroup_id, name)
        for repo_id, name in dataset.REPOS:
            store.add_repo(repo_id, name)
        for repogroup_id, name in dataset.REPOGROUPS:
            store.add_repogroup(repogroup_id, name)
        for usergroup_id, user_id in dataset.USERGROUP_MEMBERSHIPS:
            store.add_membership(usergroup_id, user_id)
        for parent_id, child_id in dataset.USERGROUP_NESTINGS:
            store.add_nesting(parent_id, child_id)
        for repogroup_id, repo_id in dataset.REPOGROUP_MEMBERSHIPS:
            store.add_repo_to_group(repogroup_id, repo_id)
        for scope, principal_id, resource_id, role in dataset.ROLE_ASSIGNMENTS:
            store.assign_role(scope, principal_id, resource_id, role)

        store.logger.debug("Example dataset loaded", users=len(dataset.USERS))
        return store
