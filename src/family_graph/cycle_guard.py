"""Pre-write validation for parent-child edges."""
from __future__ import annotations

import logging
from collections import deque
from uuid import UUID

from .cancellation import CancellationToken
from .exceptions import GraphValidationError, ValidationReason
from .store import (
    CYCLE_MESSAGE,
    DUPLICATE_EDGE_MESSAGE,
    EdgeStore,
    ParentChildKind,
    Person,
    check_biological_slot,
)

logger = logging.getLogger(__name__)


class CycleGuard:
    """Validates a proposed parent -> child edge against the current graph.

    Checks run in a fixed order and the first failure wins:
    duplicate, cycle, biological parent count, same-sex biological parent.
    Nothing is written here; on success the caller inserts through the
    store, which re-checks the same invariants atomically.
    """

    def __init__(self, store: EdgeStore) -> None:
        self.store = store

    async def would_create_cycle(
        self,
        parent_id: UUID,
        child_id: UUID,
        token: CancellationToken | None = None,
    ) -> bool:
        """True if ``parent_id`` is ``child_id`` or one of its descendants.

        Walks forward (parent -> child) edges from the child only.
        """
        token = token or CancellationToken()
        visited = {child_id}
        queue = deque([child_id])

        while queue:
            await token.checkpoint()
            current = queue.popleft()
            if current == parent_id:
                return True
            for _, child in self.store.get_children(current):
                if child.person_id not in visited:
                    visited.add(child.person_id)
                    queue.append(child.person_id)

        return False

    async def validate(
        self,
        parent: Person,
        child: Person,
        kind: ParentChildKind = ParentChildKind.BIOLOGICAL,
        token: CancellationToken | None = None,
    ) -> None:
        """Raise GraphValidationError if the edge must not be created."""
        if self.store.get_edge(parent.person_id, child.person_id) is not None:
            raise GraphValidationError(ValidationReason.DUPLICATE_EDGE, DUPLICATE_EDGE_MESSAGE)

        if await self.would_create_cycle(parent.person_id, child.person_id, token):
            logger.info("Rejected cyclic edge %s -> %s", parent.person_id, child.person_id)
            raise GraphValidationError(ValidationReason.CYCLE, CYCLE_MESSAGE)

        if kind is ParentChildKind.BIOLOGICAL:
            check_biological_slot(parent, self.store.get_parents(child.person_id))
