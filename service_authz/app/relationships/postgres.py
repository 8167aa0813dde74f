"""
PostgreSQL relationship store for the Authorization Service.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional, Set, Tuple

import asyncpg

from shared.errors import NotFoundError, StoreUnavailableError
from shared.logging import get_logger
from . import dataset
from .models import (
    AssignmentScope, Repo, RepogroupMembership, ResourceKind, RoleAssignment, User,
    UsergroupMembership, UsergroupNesting, build_assignment
)
from .store import RelationshipStore, StoreSnapshot, bounded

STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

# scope -> (table, principal column, resource column, role column, role enum table)
ASSIGNMENT_TABLES: Dict[AssignmentScope, Tuple[str, str, str, str, str]] = {
    AssignmentScope.USER_REPO: (
        "repo_roles_membership_users", "user_id", "repo_id", "repo_role", "repo_roles_enum"
    ),
    AssignmentScope.USERGROUP_REPO: (
        "repo_roles_membership_usergroups", "usergroup_id", "repo_id", "repo_role", "repo_roles_enum"
    ),
    AssignmentScope.USER_REPOGROUP: (
        "repogroup_roles_membership_users", "user_id", "repogroup_id", "repogroup_role", "repogroup_roles_enum"
    ),
    AssignmentScope.USERGROUP_REPOGROUP: (
        "repogroup_roles_membership_usergroups", "usergroup_id", "repogroup_id", "repogroup_role", "repogroup_roles_enum"
    ),
}

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY,
        username TEXT UNIQUE NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS usergroups (
        id INTEGER PRIMARY KEY,
        groupname TEXT UNIQUE NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repos (
        id INTEGER PRIMARY KEY,
        reponame TEXT UNIQUE NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repogroups (
        id INTEGER PRIMARY KEY,
        groupname TEXT UNIQUE NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repo_roles_enum (
        id INTEGER PRIMARY KEY,
        rolename TEXT UNIQUE NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repogroup_roles_enum (
        id INTEGER PRIMARY KEY,
        rolename TEXT UNIQUE NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS usergroup_membership_users (
        id SERIAL PRIMARY KEY,
        usergroup_id INTEGER NOT NULL REFERENCES usergroups (id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        UNIQUE (usergroup_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS usergroup_membership_usergroups (
        id SERIAL PRIMARY KEY,
        usergroup_id INTEGER NOT NULL REFERENCES usergroups (id) ON DELETE CASCADE,
        child_usergroup_id INTEGER NOT NULL REFERENCES usergroups (id) ON DELETE CASCADE,
        UNIQUE (usergroup_id, child_usergroup_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repogroup_membership (
        id SERIAL PRIMARY KEY,
        repogroup_id INTEGER NOT NULL REFERENCES repogroups (id) ON DELETE CASCADE,
        repo_id INTEGER NOT NULL REFERENCES repos (id) ON DELETE CASCADE,
        UNIQUE (repogroup_id, repo_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repo_roles_membership_users (
        id SERIAL PRIMARY KEY,
        repo_id INTEGER NOT NULL REFERENCES repos (id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        repo_role INTEGER NOT NULL REFERENCES repo_roles_enum (id),
        UNIQUE (repo_id, user_id, repo_role)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repo_roles_membership_usergroups (
        id SERIAL PRIMARY KEY,
        repo_id INTEGER NOT NULL REFERENCES repos (id) ON DELETE CASCADE,
        usergroup_id INTEGER NOT NULL REFERENCES usergroups (id) ON DELETE CASCADE,
        repo_role INTEGER NOT NULL REFERENCES repo_roles_enum (id),
        UNIQUE (repo_id, usergroup_id, repo_role)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repogroup_roles_membership_users (
        id SERIAL PRIMARY KEY,
        repogroup_id INTEGER NOT NULL REFERENCES repogroups (id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        repogroup_role INTEGER NOT NULL REFERENCES repogroup_roles_enum (id),
        UNIQUE (repogroup_id, user_id, repogroup_role)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS repogroup_roles_membership_usergroups (
        id SERIAL PRIMARY KEY,
        repogroup_id INTEGER NOT NULL REFERENCES repogroups (id) ON DELETE CASCADE,
        usergroup_id INTEGER NOT NULL REFERENCES usergroups (id) ON DELETE CASCADE,
        repogroup_role INTEGER NOT NULL REFERENCES repogroup_roles_enum (id),
        UNIQUE (repogroup_id, usergroup_id, repogroup_role)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_ugm_users_user ON usergroup_membership_users(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_ugm_usergroups_parent ON usergroup_membership_usergroups(usergroup_id);",
    "CREATE INDEX IF NOT EXISTS idx_rgm_repo ON repogroup_membership(repo_id);",
]

# Owner only exists for repos
REPO_ROLES = [(1, "reader"), (2, "writer"), (3, "owner")]
REPOGROUP_ROLES = [(1, "reader"), (2, "writer")]


class PostgresSnapshot(StoreSnapshot):
    """Lookups issued on one connection inside a repeatable-read transaction."""

    def __init__(self, conn, timeout: float):
        self.conn = conn
        self.timeout = timeout
        self.logger = get_logger("authz.store.postgres")

    async def _fetch(self, operation: str, query: str, *args) -> list:
        try:
            return await bounded(self.conn.fetch(query, *args), self.timeout, operation)
        except STORE_ERRORS as e:
            self.logger.error("Relationship lookup failed", operation=operation, error=str(e))
            raise StoreUnavailableError(
                f"Lookup {operation} failed", details={"operation": operation, "error": str(e)}
            ) from e

    async def _fetchrow(self, operation: str, query: str, *args):
        rows = await self._fetch(operation, query, *args)
        return rows[0] if rows else None

    async def find_user(self, user_id: int) -> User:
        row = await self._fetchrow(
            "find_user", "SELECT id, username FROM users WHERE id = $1", user_id
        )
        if row is None:
            raise NotFoundError("user", user_id)
        return User(row["id"], row["username"])

    async def find_repo(self, name: str) -> Repo:
        row = await self._fetchrow(
            "find_repo", "SELECT id, reponame FROM repos WHERE reponame = $1", name
        )
        if row is None:
            raise NotFoundError("repo", name)
        return Repo(row["id"], row["reponame"])

    async def direct_usergroups(self, user_id: int) -> Set[UsergroupMembership]:
        rows = await self._fetch(
            "direct_usergroups",
            "SELECT usergroup_id, user_id FROM usergroup_membership_users WHERE user_id = $1",
            user_id
        )
        return {UsergroupMembership(user_id=row["user_id"], usergroup_id=row["usergroup_id"]) for row in rows}

    async def child_usergroups(self, parent_ids: Iterable[int]) -> Set[UsergroupNesting]:
        parents = sorted(set(parent_ids))
        if not parents:
            return set()

        rows = await self._fetch(
            "child_usergroups",
            """
            SELECT usergroup_id, child_usergroup_id
            FROM usergroup_membership_usergroups
            WHERE usergroup_id = ANY($1::int[])
            """,
            parents
        )
        return {UsergroupNesting(row["usergroup_id"], row["child_usergroup_id"]) for row in rows}

    async def repogroups_containing(self, repo_id: int) -> Set[RepogroupMembership]:
        rows = await self._fetch(
            "repogroups_containing",
            "SELECT repogroup_id, repo_id FROM repogroup_membership WHERE repo_id = $1",
            repo_id
        )
        return {RepogroupMembership(row["repogroup_id"], row["repo_id"]) for row in rows}

    async def role_assignments(
        self,
        scope: AssignmentScope,
        principal_ids: Set[int],
        resource_ids: Set[int]
    ) -> List[RoleAssignment]:
        if not principal_ids or not resource_ids:
            return []

        table, principal_col, resource_col, role_col, enum_table = ASSIGNMENT_TABLES[scope]
        rows = await self._fetch(
            f"role_assignments[{scope.value}]",
            f"""
            SELECT m.id, m.{principal_col} AS principal_id, m.{resource_col} AS resource_id, r.rolename
            FROM {table} m
            INNER JOIN {enum_table} r ON r.id = m.{role_col}
            WHERE m.{principal_col} = ANY($1::int[])
              AND m.{resource_col} = ANY($2::int[])
            ORDER BY m.id
            """,
            sorted(principal_ids),
            sorted(resource_ids)
        )
        return [
            build_assignment(scope, row["principal_id"], row["resource_id"], row["rolename"], row_id=row["id"])
            for row in rows
        ]


class PostgresRelationshipStore(RelationshipStore):
    """Relationship store backed by PostgreSQL."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10, timeout: float = 5.0):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.logger = get_logger("authz.store.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.timeout
            )
            self.logger.info("PostgreSQL relationship store started")

        except STORE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL relationship store", error=str(e))
            raise StoreUnavailableError("Failed to start PostgreSQL relationship store", details={"error": str(e)}) from e

    async def stop(self):
        """Stop the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL relationship store stopped")

    @asynccontextmanager
    async def snapshot(self):
        """Open a read-only repeatable-read transaction for one decision request."""
        if self.pool is None:
            raise StoreUnavailableError("Relationship store is not started")

        try:
            async with self.pool.acquire(timeout=self.timeout) as conn:
                async with conn.transaction(isolation="repeatable_read", readonly=True):
                    yield PostgresSnapshot(conn, self.timeout)
        except STORE_ERRORS as e:
            self.logger.error("Relationship snapshot failed", error=str(e))
            raise StoreUnavailableError("Relationship snapshot failed", details={"error": str(e)}) from e

    async def create_schema(self):
        """Create relationship tables and role enums if missing."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)
                await conn.executemany(
                    "INSERT INTO repo_roles_enum (id, rolename) VALUES ($1, $2) ON CONFLICT DO NOTHING",
                    REPO_ROLES
                )
                await conn.executemany(
                    "INSERT INTO repogroup_roles_enum (id, rolename) VALUES ($1, $2) ON CONFLICT DO NOTHING",
                    REPOGROUP_ROLES
                )
        self.logger.info("Relationship schema ensured")

    async def load_example_dataset(self):
        """Seed the example relationship graph."""
        repo_role_ids = {name: role_id for role_id, name in REPO_ROLES}
        repogroup_role_ids = {name: role_id for role_id, name in REPOGROUP_ROLES}

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    "INSERT INTO users (id, username) VALUES ($1, $2) ON CONFLICT DO NOTHING", dataset.USERS
                )
                await conn.executemany(
                    "INSERT INTO usergroups (id, groupname) VALUES ($1, $2) ON CONFLICT DO NOTHING", dataset.USERGROUPS
                )
                await conn.executemany(
                    "INSERT INTO repos (id, reponame) VALUES ($1, $2) ON CONFLICT DO NOTHING", dataset.REPOS
                )
                await conn.executemany(
                    "INSERT INTO repogroups (id, groupname) VALUES ($1, $2) ON CONFLICT DO NOTHING", dataset.REPOGROUPS
                )
                await conn.executemany(
                    "INSERT INTO usergroup_membership_users (usergroup_id, user_id) VALUES ($1, $2) "
                    "ON CONFLICT DO NOTHING",
                    dataset.USERGROUP_MEMBERSHIPS
                )
                await conn.executemany(
                    "INSERT INTO usergroup_membership_usergroups (usergroup_id, child_usergroup_id) VALUES ($1, $2) "
                    "ON CONFLICT DO NOTHING",
                    dataset.USERGROUP_NESTINGS
                )
                await conn.executemany(
                    "INSERT INTO repogroup_membership (repogroup_id, repo_id) VALUES ($1, $2) ON CONFLICT DO NOTHING",
                    dataset.REPOGROUP_MEMBERSHIPS
                )
                for scope_label, principal_id, resource_id, role in dataset.ROLE_ASSIGNMENTS:
                    scope = AssignmentScope(scope_label)
                    table, principal_col, resource_col, role_col, _ = ASSIGNMENT_TABLES[scope]
                    role_ids = repo_role_ids if scope.resource_kind == ResourceKind.REPO else repogroup_role_ids
                    await conn.execute(
                        f"INSERT INTO {table} ({principal_col}, {resource_col}, {role_col}) VALUES ($1, $2, $3) "
                        "ON CONFLICT DO NOTHING",
                        principal_id, resource_id, role_ids[role]
                    )

        self.logger.info("Example relationship dataset loaded")

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except STORE_ERRORS:
            return False
