"""
Role assignment aggregation.

Collects every role assignment that could apply to a request: the principal
is the user or any usergroup in its closure, and the resource is the target
repo or any repogroup containing it. The four principal/resource shapes are
looked up separately, each against its own bounded id sets.
"""

from typing import Iterable, List, Set

from shared.logging import get_logger
from ..relationships.models import (
    AssignmentScope, RepogroupMembership, RoleAssignment, UsergroupRelationships
)
from ..relationships.store import StoreSnapshot


class RoleAssignmentAggregator:
    """Gathers the role assignments relevant to one user and repo."""

    def __init__(self):
        self.logger = get_logger("authz.aggregator")

    async def aggregate(
        self,
        snapshot: StoreSnapshot,
        user_id: int,
        relationships: UsergroupRelationships,
        repo_id: int,
        repogroup_memberships: Iterable[RepogroupMembership]
    ) -> List[RoleAssignment]:
        """Return the de-duplicated relevant assignments in lookup order.

        Decoding errors (e.g. an owner row on a repogroup) propagate.
        """
        user_ids: Set[int] = {user_id}
        usergroup_ids: Set[int] = set(relationships.usergroup_ids)
        repo_ids: Set[int] = {repo_id}
        repogroup_ids: Set[int] = {m.repogroup_id for m in repogroup_memberships if m.repo_id == repo_id}

        lookups = [
            (AssignmentScope.USER_REPO, user_ids, repo_ids),
            (AssignmentScope.USERGROUP_REPO, usergroup_ids, repo_ids),
            (AssignmentScope.USER_REPOGROUP, user_ids, repogroup_ids),
            (AssignmentScope.USERGROUP_REPOGROUP, usergroup_ids, repogroup_ids),
        ]

        assignments: List[RoleAssignment] = []
        seen: Set[RoleAssignment] = set()

        for scope, principal_ids, resource_ids in lookups:
            if not principal_ids or not resource_ids:
                continue

            rows = await snapshot.role_assignments(scope, principal_ids, resource_ids)
            for assignment in rows:
                if assignment in seen:
                    continue
                seen.add(assignment)
                assignments.append(assignment)

        self.logger.debug(
            "Role assignments aggregated",
            user_id=user_id,
            repo_id=repo_id,
            usergroups=len(usergroup_ids),
            repogroups=len(repogroup_ids),
            assignments=len(assignments)
        )

        return assignments
