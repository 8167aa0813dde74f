"""
Relationship store contract.

A store hands out snapshots; every lookup made through one snapshot observes
the same point-in-time view of the relationship graph.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Awaitable, Iterable, List, Set, TypeVar

from shared.errors import StoreUnavailableError
from .models import (
    AssignmentScope, Repo, RepogroupMembership, RoleAssignment, User,
    UsergroupMembership, UsergroupNesting
)

T = TypeVar("T")


class StoreSnapshot(ABC):
    """Read-only view of the relationship graph at one point in time."""

    @abstractmethod
    async def find_user(self, user_id: int) -> User:
        """Return the user or raise NotFoundError."""

    @abstractmethod
    async def find_repo(self, name: str) -> Repo:
        """Return the repo with this name or raise NotFoundError."""

    @abstractmethod
    async def direct_usergroups(self, user_id: int) -> Set[UsergroupMembership]:
        """Usergroups the user is a direct member of."""

    @abstractmethod
    async def child_usergroups(self, parent_ids: Iterable[int]) -> Set[UsergroupNesting]:
        """Nesting edges whose parent is one of ``parent_ids``."""

    @abstractmethod
    async def repogroups_containing(self, repo_id: int) -> Set[RepogroupMembership]:
        """Repogroups the repo belongs to."""

    @abstractmethod
    async def role_assignments(
        self,
        scope: AssignmentScope,
        principal_ids: Set[int],
        resource_ids: Set[int]
    ) -> List[RoleAssignment]:
        """Decoded role assignments of one scope between the two id sets."""


class RelationshipStore(ABC):
    """Source of consistent relationship snapshots."""

    async def start(self):
        """Start the store."""

    async def stop(self):
        """Stop the store."""

    async def health_check(self) -> bool:
        return True

    @abstractmethod
    def snapshot(self) -> AsyncContextManager[StoreSnapshot]:
        """Open a consistent read-only snapshot."""


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await a store lookup, reporting a timeout as StoreUnavailableError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise StoreUnavailableError(
            f"Timed out after {timeout}s during {operation}",
            details={"operation": operation, "timeout_seconds": timeout}
        ) from None
