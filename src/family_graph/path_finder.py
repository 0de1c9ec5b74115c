"""Shortest relationship path search.

The graph is searched as if every person had three kinds of edges:
to each parent, to each child and to each union co-member. Plain BFS
over those edges gives a path with the fewest steps; it does not weigh
blood links above marriages.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import assert_never
from uuid import UUID

from .ancestry import pivot_from_path
from .cancellation import CancellationToken
from .config import CONFIG, GraphConfig
from .kinship import name_path
from .models import CommonAncestor, EdgeKind, PathPersonNode, PersonSummary, RelationshipPath
from .store import EdgeStore, Person, Sex

logger = logging.getLogger(__name__)

NOT_RELATED_LABEL = "Not related"
NO_PATH_MESSAGE = (
    "No relationship path found between these individuals. "
    "They are not connected through any parent, child or spouse link."
)


@dataclass(frozen=True)
class PathStep:
    """A person on a search path and the edge kind that reached them."""
    person: Person
    edge_kind: EdgeKind | None

    @property
    def person_id(self) -> UUID:
        return self.person.person_id


def step_label(kind: EdgeKind, next_sex: Sex) -> str:
    """Label for one step, read as '<next node> is the ... of <this node>'.

    The sex is always the *next* node's: a PARENT step to a woman is
    "mother of" whatever the sex of the person the step started from.
    """
    if kind is EdgeKind.PARENT:
        terms = ("father of", "mother of", "parent of")
    elif kind is EdgeKind.CHILD:
        terms = ("son of", "daughter of", "child of")
    elif kind is EdgeKind.SPOUSE:
        return "spouse of"
    else:
        assert_never(kind)

    if next_sex is Sex.MALE:
        return terms[0]
    if next_sex is Sex.FEMALE:
        return terms[1]
    return terms[2]


class PathFinder:
    """Breadth-first relationship path search over parent, child and spouse edges."""

    def __init__(self, store: EdgeStore, config: GraphConfig = CONFIG) -> None:
        self.store = store
        self.config = config

    def neighbors(self, person_id: UUID) -> list[PathStep]:
        """Parents, then children, then distinct union co-members."""
        steps = [PathStep(p, EdgeKind.PARENT) for _, p in self.store.get_parents(person_id)]
        steps.extend(PathStep(c, EdgeKind.CHILD) for _, c in self.store.get_children(person_id))

        seen: set[UUID] = set()
        for union in self.store.get_unions_for(person_id):
            for _, member in self.store.get_union_members(union.union_id):
                if member.person_id != person_id and member.person_id not in seen:
                    seen.add(member.person_id)
                    steps.append(PathStep(member, EdgeKind.SPOUSE))
        return steps

    async def search(
        self,
        source: Person,
        target_id: UUID,
        max_depth: int | None = None,
        token: CancellationToken | None = None,
    ) -> list[PathStep] | None:
        """Shortest path from ``source`` to ``target_id`` or None.

        Paths that already have ``max_depth`` edges are not expanded;
        the rest of the queue carries on.
        """
        if max_depth is None:
            max_depth = self.config.max_search_depth
        token = token or CancellationToken()

        start = PathStep(source, None)
        if source.person_id == target_id:
            return [start]

        visited = {source.person_id}
        queue: deque[list[PathStep]] = deque([[start]])

        while queue:
            await token.checkpoint()
            path = queue.popleft()
            if len(path) - 1 >= max_depth:
                continue
            for step in self.neighbors(path[-1].person_id):
                if step.person_id in visited:
                    continue
                extended = path + [step]
                if step.person_id == target_id:
                    return extended
                visited.add(step.person_id)
                queue.append(extended)

        logger.debug("No path from %s to %s within %d steps", source.person_id, target_id, max_depth)
        return None

    async def find(
        self,
        person1: Person,
        person2: Person,
        max_depth: int | None = None,
        token: CancellationToken | None = None,
    ) -> RelationshipPath:
        """Search and label the path from ``person1`` to ``person2``."""
        steps = await self.search(person1, person2.person_id, max_depth, token)
        if steps is None:
            return RelationshipPath(
                person1_id=person1.person_id,
                person2_id=person2.person_id,
                path_found=False,
                relationship_label=NOT_RELATED_LABEL,
                message=NO_PATH_MESSAGE,
            )

        nodes = []
        for current, following in zip(steps, steps[1:] + [None]):
            node = PathPersonNode.from_person(current.person)
            if following is not None:
                node.edge_to_next = following.edge_kind
                node.relationship_to_next = step_label(following.edge_kind, following.person.sex)
            nodes.append(node)

        kinds = [s.edge_kind for s in steps]
        name = name_path(kinds, nodes[0], nodes[-1])

        common_ancestors = []
        pivot = pivot_from_path(kinds)
        if pivot is not None:
            common_ancestors.append(
                CommonAncestor(
                    person=PersonSummary.from_person(steps[pivot.index].person),
                    generations_from_person1=pivot.generations_from_person1,
                    generations_from_person2=pivot.generations_from_person2,
                )
            )

        return RelationshipPath(
            person1_id=person1.person_id,
            person2_id=person2.person_id,
            path_found=True,
            path=nodes,
            relationship_key=name.key,
            relationship_label=name.label,
            description=name.description,
            common_ancestors=common_ancestors,
        )
