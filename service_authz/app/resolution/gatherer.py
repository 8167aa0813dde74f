"""
Request detail gathering.

All lookups for one decision request run inside a single store snapshot so
the closure, the repo's groups, and the role assignments agree on one
point-in-time view. Any failure abandons the snapshot and the request.
"""

import time
from typing import Optional

from shared.logging import get_logger, elapsed_ms
from ..relationships.models import RequestDetails
from ..relationships.store import RelationshipStore
from .aggregator import RoleAssignmentAggregator
from .closure import ClosureResolver


class RequestGatherer:
    """Resolves a (user, repo, action) request into RequestDetails."""

    def __init__(
        self,
        store: RelationshipStore,
        closure_resolver: Optional[ClosureResolver] = None,
        aggregator: Optional[RoleAssignmentAggregator] = None
    ):
        self.store = store
        self.closure_resolver = closure_resolver or ClosureResolver()
        self.aggregator = aggregator or RoleAssignmentAggregator()
        self.logger = get_logger("authz.gatherer")

    async def gather(self, user_id: int, repo_name: str, action: str) -> RequestDetails:
        start_time = time.time()

        async with self.store.snapshot() as snapshot:
            user = await snapshot.find_user(user_id)
            # Resolve the repo before the closure so unknown repos fail fast
            repo = await snapshot.find_repo(repo_name)

            relationships = await self.closure_resolver.resolve(snapshot, user.id)
            repogroup_memberships = await snapshot.repogroups_containing(repo.id)

            assignments = await self.aggregator.aggregate(
                snapshot,
                user.id,
                relationships,
                repo.id,
                repogroup_memberships
            )

        details = RequestDetails(
            user_id=user.id,
            username=user.name,
            repo_id=repo.id,
            repo_name=repo.name,
            action=action,
            usergroup_relationships=relationships,
            repogroup_memberships=set(repogroup_memberships),
            role_assignments=assignments
        )

        self.logger.info(
            "Request details gathered",
            user_id=user.id,
            repo=repo.name,
            usergroups=len(relationships.usergroup_ids),
            repogroups=len(details.repogroup_ids),
            assignments=len(assignments),
            duration_ms=elapsed_ms(start_time)
        )

        return details
