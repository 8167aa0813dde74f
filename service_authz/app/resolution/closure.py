"""
Usergroup closure resolution.

A user is present in every usergroup it is a direct member of and, through
nesting, in every child usergroup beneath those. The closure is computed as
an explicit fixed point over the nesting edges rather than a recursive query,
so termination does not depend on the storage engine: each group is expanded
at most once, which also makes cyclic nesting safe.
"""

import time
from typing import Set

from shared.logging import get_logger, elapsed_ms
from ..relationships.models import UsergroupNesting, UsergroupRelationships
from ..relationships.store import StoreSnapshot


class ClosureResolver:
    """Expands a user's direct usergroup memberships through nesting edges."""

    def __init__(self):
        self.logger = get_logger("authz.closure")

    async def resolve(self, snapshot: StoreSnapshot, user_id: int) -> UsergroupRelationships:
        """Resolve the usergroup closure of ``user_id`` within one snapshot."""
        start_time = time.time()

        memberships = await snapshot.direct_usergroups(user_id)
        nestings: Set[UsergroupNesting] = set()

        visited: Set[int] = set()
        frontier: Set[int] = {m.usergroup_id for m in memberships}
        iterations = 0

        while frontier:
            iterations += 1
            visited.update(frontier)

            edges = await snapshot.child_usergroups(frontier)
            nestings.update(edges)

            frontier = {edge.child_usergroup_id for edge in edges} - visited

        relationships = UsergroupRelationships(memberships=set(memberships), nestings=nestings)

        self.logger.debug(
            "Usergroup closure resolved",
            user_id=user_id,
            direct_groups=len(memberships),
            closure_size=len(visited),
            nesting_edges=len(nestings),
            iterations=iterations,
            duration_ms=elapsed_ms(start_time)
        )

        return relationships
