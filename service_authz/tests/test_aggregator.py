"""
Unit tests for role assignment aggregation.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import InvalidRoleForResourceTypeError, UnknownRoleError
from service_authz.app.relationships.memory import InMemoryRelationshipStore
from service_authz.app.relationships.models import (
    AssignmentScope, RepogroupMembership, Role, UsergroupRelationships, build_assignment
)
from service_authz.app.resolution.aggregator import RoleAssignmentAggregator
from service_authz.app.resolution.closure import ClosureResolver


async def aggregate(store, user_id, repo_id):
    async with store.snapshot() as snapshot:
        relationships = await ClosureResolver().resolve(snapshot, user_id)
        repogroups = await snapshot.repogroups_containing(repo_id)
        return await RoleAssignmentAggregator().aggregate(snapshot, user_id, relationships, repo_id, repogroups)


class TestRoleAssignmentAggregator:
    """Test cases for RoleAssignmentAggregator."""

    @pytest.fixture
    def store(self):
        """Example relationship graph."""
        return InMemoryRelationshipStore.example_dataset()

    @pytest.mark.asyncio
    async def test_inherited_repogroup_assignment(self, store):
        """Test a nested group's repogroup role reaches a repo in the group."""
        assignments = await aggregate(store, 4, 2)

        assert assignments == [
            build_assignment(AssignmentScope.USERGROUP_REPOGROUP, 2, 1, "writer")
        ]

    @pytest.mark.asyncio
    async def test_direct_repo_assignment(self, store):
        """Test a user's own repo role is collected."""
        assignments = await aggregate(store, 2, 3)

        assert assignments == [build_assignment(AssignmentScope.USER_REPO, 2, 3, "owner")]

    @pytest.mark.asyncio
    async def test_unrelated_assignments_excluded(self, store):
        """Test roles on other repos do not leak in."""
        assignments = await aggregate(store, 1, 1)

        assert assignments == []

    @pytest.mark.asyncio
    async def test_all_four_scopes_in_lookup_order(self, store):
        """Test each principal/resource shape is consulted, in order."""
        store.assign_role("usergroup-repogroup", 1, 1, "reader")
        store.assign_role("user-repogroup", 4, 1, "reader")
        store.assign_role("usergroup-repo", 3, 2, "reader")
        store.assign_role("user-repo", 4, 2, "reader")

        assignments = await aggregate(store, 4, 2)

        assert [a.scope for a in assignments] == [
            AssignmentScope.USER_REPO,
            AssignmentScope.USERGROUP_REPO,
            AssignmentScope.USER_REPOGROUP,
            AssignmentScope.USERGROUP_REPOGROUP,
            AssignmentScope.USERGROUP_REPOGROUP,
        ]

    @pytest.mark.asyncio
    async def test_duplicate_rows_collapse(self, store):
        """Test the same grant stored twice is returned once."""
        store.assign_role("user-repo", 2, 3, "owner")

        assignments = await aggregate(store, 2, 3)

        assert len(assignments) == 1
        assert assignments[0].role == Role.OWNER

    @pytest.mark.asyncio
    async def test_owner_on_repogroup_surfaces(self, store):
        """Test an owner row against a repogroup is an error, not dropped."""
        store.assign_role("usergroup-repogroup", 2, 1, "owner")

        with pytest.raises(InvalidRoleForResourceTypeError) as exc_info:
            await aggregate(store, 4, 2)

        assert exc_info.value.details["scope"] == "usergroup-repogroup"

    @pytest.mark.asyncio
    async def test_unknown_role_surfaces(self, store):
        """Test an undecodable label is an error."""
        store.assign_role("user-repo", 1, 1, "superuser")

        with pytest.raises(UnknownRoleError):
            await aggregate(store, 1, 1)

    @pytest.mark.asyncio
    async def test_empty_id_sets_skip_lookups(self):
        """Test scopes with no candidate principals or resources are skipped."""
        snapshot = MagicMock()
        snapshot.role_assignments = AsyncMock(return_value=[])

        await RoleAssignmentAggregator().aggregate(snapshot, 1, UsergroupRelationships(), 1, set())

        snapshot.role_assignments.assert_awaited_once_with(AssignmentScope.USER_REPO, {1}, {1})

    @pytest.mark.asyncio
    async def test_foreign_repogroup_memberships_ignored(self):
        """Test memberships of other repos do not widen the resource set."""
        snapshot = MagicMock()
        snapshot.role_assignments = AsyncMock(return_value=[])

        await RoleAssignmentAggregator().aggregate(
            snapshot, 1, UsergroupRelationships(), 2,
            {RepogroupMembership(1, 2), RepogroupMembership(5, 3)}
        )

        scopes = {call.args[0]: call.args[2] for call in snapshot.role_assignments.await_args_list}
        assert scopes[AssignmentScope.USER_REPOGROUP] == {1}
