"""
Unit tests for the PostgreSQL relationship store.
"""

import asyncio

import asyncpg
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from shared.errors import (
    InvalidRoleForResourceTypeError, NotFoundError, StoreUnavailableError
)
from service_authz.app.relationships.models import (
    AssignmentScope, RepogroupMembership, Role, UsergroupMembership, UsergroupNesting
)
from service_authz.app.relationships import dataset
from service_authz.app.relationships.postgres import SCHEMA_STATEMENTS, PostgresRelationshipStore


def async_context(value=None):
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=value)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


class TestPostgresRelationshipStore:
    """Test cases for PostgresRelationshipStore."""

    @pytest.fixture
    def mock_conn(self):
        """Mock asyncpg connection."""
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[])
        conn.fetchval = AsyncMock(return_value=1)
        conn.execute = AsyncMock()
        conn.executemany = AsyncMock()
        conn.transaction = MagicMock(return_value=async_context())
        return conn

    @pytest.fixture
    def store(self, mock_conn):
        """Store wired to a mocked pool."""
        store = PostgresRelationshipStore("postgres://test/authz", timeout=0.5)
        store.pool = MagicMock()
        store.pool.acquire = MagicMock(return_value=async_context(mock_conn))
        store.pool.close = AsyncMock()
        return store

    @pytest.mark.asyncio
    async def test_start_creates_pool(self):
        """Test start opens a pool with the configured bounds."""
        store = PostgresRelationshipStore("postgres://test/authz", min_size=1, max_size=4, timeout=2.0)

        with patch("asyncpg.create_pool", new=AsyncMock(return_value=MagicMock())) as create_pool:
            await store.start()

        create_pool.assert_awaited_once_with(
            "postgres://test/authz", min_size=1, max_size=4, command_timeout=2.0
        )
        assert store.pool is not None

    @pytest.mark.asyncio
    async def test_start_failure(self):
        """Test an unreachable database is reported as unavailable."""
        store = PostgresRelationshipStore("postgres://test/authz")

        with patch("asyncpg.create_pool", new=AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(StoreUnavailableError):
                await store.start()

    @pytest.mark.asyncio
    async def test_stop_closes_pool(self, store):
        """Test stop closes and releases the pool."""
        pool = store.pool

        await store.stop()

        pool.close.assert_awaited_once()
        assert store.pool is None

    @pytest.mark.asyncio
    async def test_snapshot_uses_repeatable_read(self, store, mock_conn):
        """Test each snapshot runs in a read-only repeatable-read transaction."""
        async with store.snapshot():
            pass

        mock_conn.transaction.assert_called_once_with(isolation="repeatable_read", readonly=True)

    @pytest.mark.asyncio
    async def test_snapshot_requires_start(self):
        """Test a snapshot cannot be opened before start."""
        store = PostgresRelationshipStore("postgres://test/authz")

        with pytest.raises(StoreUnavailableError):
            async with store.snapshot():
                pass

    @pytest.mark.asyncio
    async def test_find_user(self, store, mock_conn):
        """Test user lookup."""
        mock_conn.fetch.return_value = [{"id": 4, "username": "Liam"}]

        async with store.snapshot() as snapshot:
            user = await snapshot.find_user(4)

        assert user.name == "Liam"
        assert mock_conn.fetch.await_args.args[1] == 4

    @pytest.mark.asyncio
    async def test_find_repo_missing(self, store, mock_conn):
        """Test a missing repo raises NotFoundError."""
        mock_conn.fetch.return_value = []

        with pytest.raises(NotFoundError) as exc_info:
            async with store.snapshot() as snapshot:
                await snapshot.find_repo("Delta")

        assert exc_info.value.identifier == "Delta"

    @pytest.mark.asyncio
    async def test_memberships_and_nestings(self, store, mock_conn):
        """Test membership rows map to relationship records."""
        mock_conn.fetch.side_effect = [
            [{"usergroup_id": 1, "user_id": 4}],
            [{"usergroup_id": 1, "child_usergroup_id": 2}],
            [{"repogroup_id": 1, "repo_id": 2}],
        ]

        async with store.snapshot() as snapshot:
            memberships = await snapshot.direct_usergroups(4)
            nestings = await snapshot.child_usergroups({2, 1})
            repogroups = await snapshot.repogroups_containing(2)

        assert memberships == {UsergroupMembership(user_id=4, usergroup_id=1)}
        assert nestings == {UsergroupNesting(1, 2)}
        assert repogroups == {RepogroupMembership(1, 2)}
        assert mock_conn.fetch.await_args_list[1].args[1] == [1, 2]

    @pytest.mark.asyncio
    async def test_child_usergroups_empty_frontier(self, store, mock_conn):
        """Test an empty frontier does not query."""
        async with store.snapshot() as snapshot:
            assert await snapshot.child_usergroups(set()) == set()

        mock_conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_role_assignments_query(self, store, mock_conn):
        """Test assignments are read from the scope's table and decoded."""
        mock_conn.fetch.return_value = [
            {"id": 3, "principal_id": 2, "resource_id": 1, "rolename": "writer"}
        ]

        async with store.snapshot() as snapshot:
            assignments = await snapshot.role_assignments(
                AssignmentScope.USERGROUP_REPOGROUP, {3, 1, 2}, {1}
            )

        query, principal_ids, resource_ids = mock_conn.fetch.await_args.args
        assert "repogroup_roles_membership_usergroups" in query
        assert "ANY($1::int[])" in query
        assert principal_ids == [1, 2, 3]
        assert resource_ids == [1]
        assert assignments[0].role == Role.WRITER
        assert assignments[0].scope == AssignmentScope.USERGROUP_REPOGROUP

    @pytest.mark.asyncio
    async def test_owner_row_on_repogroup(self, store, mock_conn):
        """Test an owner row on a repogroup is surfaced with its row id."""
        mock_conn.fetch.return_value = [
            {"id": 9, "principal_id": 2, "resource_id": 1, "rolename": "owner"}
        ]

        with pytest.raises(InvalidRoleForResourceTypeError) as exc_info:
            async with store.snapshot() as snapshot:
                await snapshot.role_assignments(AssignmentScope.USER_REPOGROUP, {2}, {1})

        assert exc_info.value.details["row_id"] == 9

    @pytest.mark.asyncio
    async def test_role_assignments_empty_sets(self, store, mock_conn):
        """Test empty id sets short-circuit."""
        async with store.snapshot() as snapshot:
            assert await snapshot.role_assignments(AssignmentScope.USER_REPO, set(), {1}) == []

        mock_conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_query_error_maps_to_unavailable(self, store, mock_conn):
        """Test driver errors surface as StoreUnavailableError."""
        mock_conn.fetch.side_effect = asyncpg.PostgresError("connection lost")

        with pytest.raises(StoreUnavailableError) as exc_info:
            async with store.snapshot() as snapshot:
                await snapshot.find_user(4)

        assert exc_info.value.details["operation"] == "find_user"

    @pytest.mark.asyncio
    async def test_query_timeout(self, store, mock_conn):
        """Test a slow lookup times out as StoreUnavailableError."""
        async def slow_fetch(*args):
            await asyncio.sleep(5)

        mock_conn.fetch.side_effect = slow_fetch

        with pytest.raises(StoreUnavailableError) as exc_info:
            async with store.snapshot() as snapshot:
                await snapshot.find_user(4)

        assert exc_info.value.details["timeout_seconds"] == 0.5

    @pytest.mark.asyncio
    async def test_health_check(self, store, mock_conn):
        """Test health check pings the database."""
        assert await store.health_check() is True

        mock_conn.fetchval.side_effect = asyncpg.PostgresError("down")
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_create_schema(self, store, mock_conn):
        """Test schema creation seeds both role enums."""
        await store.create_schema()

        assert mock_conn.execute.await_count >= 13
        seeded = [call.args[1] for call in mock_conn.executemany.await_args_list]
        assert [(1, "reader"), (2, "writer"), (3, "owner")] in seeded
        assert [(1, "reader"), (2, "writer")] in seeded

    @pytest.mark.asyncio
    async def test_load_example_dataset_is_idempotent(self, store, mock_conn):
        """Test reseeding skips rows that already exist."""
        await store.load_example_dataset()

        statements = [call.args[0] for call in mock_conn.executemany.await_args_list]
        statements += [call.args[0] for call in mock_conn.execute.await_args_list]
        assert len(statements) == 7 + len(dataset.ROLE_ASSIGNMENTS)
        assert all(statement.endswith("ON CONFLICT DO NOTHING") for statement in statements)

    def test_relationship_tables_are_unique(self):
        """Test relationship rows cannot be stored twice."""
        relationship_tables = [ddl for ddl in SCHEMA_STATEMENTS if "SERIAL PRIMARY KEY" in ddl]

        assert len(relationship_tables) == 7
        assert all("UNIQUE (" in ddl for ddl in relationship_tables)
