"""Common ancestor resolution.

Two modes:
- whole-ancestor-set: BFS upward from both persons and intersect
- path pivot: read the ancestor straight off an already-found path
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from uuid import UUID

from .cancellation import CancellationToken
from .models import EdgeKind
from .store import EdgeStore


@dataclass(frozen=True)
class AncestorMatch:
    """A shared ancestor and its distance from each person."""
    ancestor_id: UUID
    generations_from_person1: int
    generations_from_person2: int

    @property
    def total_distance(self) -> int:
        return self.generations_from_person1 + self.generations_from_person2


@dataclass(frozen=True)
class PathPivot:
    index: int
    generations_from_person1: int
    generations_from_person2: int


class CommonAncestorResolver:
    """Finds nearest shared ancestors by walking parent edges only."""

    def __init__(self, store: EdgeStore) -> None:
        self.store = store

    async def ancestor_distances(
        self,
        person_id: UUID,
        token: CancellationToken | None = None,
    ) -> dict[UUID, int]:
        """Map of ancestor ID to minimum generation distance.

        The person is included at distance 0, which lets direct-line pairs
        resolve with one side at zero. Keys are in discovery order, and
        BFS discovery order guarantees the first distance seen is minimal.
        """
        token = token or CancellationToken()
        distances = {person_id: 0}
        queue = deque([person_id])

        while queue:
            await token.checkpoint()
            current = queue.popleft()
            for _, parent in self.store.get_parents(current):
                if parent.person_id not in distances:
                    distances[parent.person_id] = distances[current] + 1
                    queue.append(parent.person_id)

        return distances

    async def nearest_common_ancestors(
        self,
        person1_id: UUID,
        person2_id: UUID,
        token: CancellationToken | None = None,
    ) -> list[AncestorMatch]:
        """All common ancestors at the minimum combined distance.

        The first entry is the chosen nearest ancestor: ties go to whichever
        was discovered first from person 1. An empty list means no blood
        relation.
        """
        ancestors1 = await self.ancestor_distances(person1_id, token)
        ancestors2 = await self.ancestor_distances(person2_id, token)

        common = [a for a in ancestors1 if a in ancestors2]
        if not common:
            return []

        best = min(ancestors1[a] + ancestors2[a] for a in common)
        return [
            AncestorMatch(a, ancestors1[a], ancestors2[a])
            for a in common
            if ancestors1[a] + ancestors2[a] == best
        ]


def pivot_from_path(kinds: list[EdgeKind | None]) -> PathPivot | None:
    """Locate the turning point of a climb-then-descend path.

    ``kinds[i]`` is the edge kind that reached node ``i``. The pivot ends a
    non-empty run of PARENT edges from the source and is followed only by
    CHILD edges to the target. Spouse chains, monotonic paths and paths
    mixing in spouse edges have no pivot.
    """
    edges = kinds[1:]
    climb = 0
    while climb < len(edges) and edges[climb] is EdgeKind.PARENT:
        climb += 1

    if climb == 0 or climb == len(edges):
        return None
    if any(kind is not EdgeKind.CHILD for kind in edges[climb:]):
        return None
    return PathPivot(index=climb, generations_from_person1=climb, generations_from_person2=len(edges) - climb)
