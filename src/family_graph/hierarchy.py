"""Hierarchical tree views for a family graph.

Provides depth-bounded views rooted at one person:
- Pedigree (ancestors only)
- Descendants
- Hourglass (ancestors above, descendants below the same root)
- Family group, siblings and root-person listings

The graph may contain diamonds (cousin marriages, pedigree collapse), so
each build threads an explicit ``visited`` set through its recursion. A
person met a second time in the same build comes back as a bare leaf.
"""
from __future__ import annotations

import logging
from collections import deque
from datetime import date
from uuid import UUID

from .cancellation import CancellationToken
from .config import CONFIG, GraphConfig
from .models import (
    FamilyGroup,
    PersonSummary,
    RootPersonsResult,
    RootPersonSummary,
    SiblingInfo,
    SpouseInfo,
    TreeNode,
    UnionNode,
)
from .store import EdgeStore, Person

logger = logging.getLogger(__name__)


class HierarchyBuilder:
    """Builds tree views by expanding one person at a time from the store.

    Example:
        >>> builder = HierarchyBuilder(store)
        >>> tree = await builder.pedigree(person, generations=4)
        >>> [p.name for p in tree.parents]
        ['John Smith', 'Mary Jones']
    """

    def __init__(self, store: EdgeStore, config: GraphConfig = CONFIG) -> None:
        self.store = store
        self.config = config

    # ---- tree views ----

    async def pedigree(
        self,
        person: Person,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> TreeNode:
        """Ancestor tree of ``person`` up to ``generations`` levels.

        Nodes at the top boundary carry ``has_more_ancestors`` when they
        have parents that were not built.
        """
        if generations is None:
            generations = self.config.pedigree_generations
        return await self._build_pedigree(person, 0, generations, set(), token or CancellationToken())

    async def descendants(
        self,
        person: Person,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> TreeNode:
        """Descendant tree of ``person`` down to ``generations`` levels."""
        if generations is None:
            generations = self.config.descendant_generations
        return await self._build_descendants(person, 0, generations, set(), token or CancellationToken())

    async def hourglass(
        self,
        person: Person,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> TreeNode:
        """Pedigree above and descendants below the same root node.

        The descendant half gets its own visited set, seeded with the root
        so the root is never embedded twice.
        """
        if generations is None:
            generations = self.config.hourglass_generations
        token = token or CancellationToken()

        root = await self._build_pedigree(person, 0, generations, set(), token)
        root.children, root.has_more_descendants = await self._expand_children(
            person, 0, generations, {person.person_id}, token
        )
        return root

    async def _build_pedigree(
        self,
        person: Person,
        current_gen: int,
        max_gen: int,
        visited: set[UUID],
        token: CancellationToken,
    ) -> TreeNode:
        await token.checkpoint()
        node = TreeNode.from_person(person)
        if person.person_id in visited:
            return node
        visited.add(person.person_id)

        if current_gen < max_gen:
            for _, parent in self.store.get_parents(person.person_id):
                node.parents.append(
                    await self._build_pedigree(parent, current_gen + 1, max_gen, visited, token)
                )
        else:
            node.has_more_ancestors = self.store.has_parents(person.person_id)

        node.unions = self.unions_for(person.person_id)
        return node

    async def _build_descendants(
        self,
        person: Person,
        current_gen: int,
        max_gen: int,
        visited: set[UUID],
        token: CancellationToken,
    ) -> TreeNode:
        await token.checkpoint()
        node = TreeNode.from_person(person)
        if person.person_id in visited:
            return node
        visited.add(person.person_id)

        node.children, node.has_more_descendants = await self._expand_children(
            person, current_gen, max_gen, visited, token
        )
        node.unions = self.unions_for(person.person_id)
        return node

    async def _expand_children(
        self,
        person: Person,
        current_gen: int,
        max_gen: int,
        visited: set[UUID],
        token: CancellationToken,
    ) -> tuple[list[TreeNode], bool]:
        """Children of ``person`` below ``current_gen``, or the has-more flag at the boundary."""
        if current_gen >= max_gen:
            return [], self.store.has_children(person.person_id)

        children = []
        for _, child in self.store.get_children(person.person_id):
            children.append(
                await self._build_descendants(child, current_gen + 1, max_gen, visited, token)
            )
        return children, False

    def unions_for(self, person_id: UUID) -> list[UnionNode]:
        """Unions containing the person, listing co-members as partners."""
        nodes = []
        for union in self.store.get_unions_for(person_id):
            partners = [
                PersonSummary.from_person(member)
                for _, member in self.store.get_union_members(union.union_id)
                if member.person_id != person_id
            ]
            nodes.append(
                UnionNode(
                    union_id=union.union_id,
                    union_type=union.union_type,
                    start_date=union.start_date,
                    start_precision=union.start_precision,
                    end_date=union.end_date,
                    end_precision=union.end_precision,
                    partners=partners,
                )
            )
        return nodes

    # ---- flat views ----

    def family_group(self, person: Person) -> FamilyGroup:
        """Person with immediate parents, spouses and children."""
        spouses = []
        for union in self.store.get_unions_for(person.person_id):
            for _, member in self.store.get_union_members(union.union_id):
                if member.person_id == person.person_id:
                    continue
                spouses.append(
                    SpouseInfo(
                        person=PersonSummary.from_person(member),
                        union_id=union.union_id,
                        union_type=union.union_type,
                        start_date=union.start_date,
                        end_date=union.end_date,
                    )
                )

        return FamilyGroup(
            person=PersonSummary.from_person(person),
            parents=[PersonSummary.from_person(p) for _, p in self.store.get_parents(person.person_id)],
            spouses=spouses,
            children=[PersonSummary.from_person(c) for _, c in self.store.get_children(person.person_id)],
        )

    def siblings(self, person: Person) -> list[SiblingInfo]:
        """Everyone sharing at least one parent with ``person``.

        Full siblings share every one of the person's parents (at least
        two); anyone else is a half sibling.
        """
        parent_ids = [p.person_id for _, p in self.store.get_parents(person.person_id)]
        shared: dict[UUID, list[UUID]] = {}
        records: dict[UUID, Person] = {}

        for parent_id in parent_ids:
            for _, child in self.store.get_children(parent_id):
                if child.person_id == person.person_id:
                    continue
                records[child.person_id] = child
                shared.setdefault(child.person_id, [])
                if parent_id not in shared[child.person_id]:
                    shared[child.person_id].append(parent_id)

        return [
            SiblingInfo(
                person=PersonSummary.from_person(records[sibling_id]),
                shared_parent_ids=common,
                is_full_sibling=len(parent_ids) >= 2 and set(common) == set(parent_ids),
            )
            for sibling_id, common in shared.items()
        ]

    async def root_persons(
        self,
        tree_id: UUID | None,
        token: CancellationToken | None = None,
    ) -> RootPersonsResult:
        """Founding ancestors of a tree, largest lineage first.

        Persons without descendants are dropped unless no root has any.
        """
        token = token or CancellationToken()
        candidates = [
            p for p in self.store.list_persons(tree_id) if not self.store.has_parents(p.person_id)
        ][: self.config.max_root_persons]

        roots = []
        for person in candidates:
            descendant_count, depth = await self._lineage_stats(person.person_id, token)
            roots.append(
                RootPersonSummary(
                    person=PersonSummary.from_person(person),
                    child_count=len(self.store.get_children(person.person_id)),
                    descendant_count=descendant_count,
                    generation_depth=depth,
                )
            )

        with_descendants = [r for r in roots if r.descendant_count > 0]
        if with_descendants:
            roots = with_descendants
        roots.sort(
            key=lambda r: (-r.descendant_count, -r.generation_depth, r.person.birth_date or date.max)
        )
        logger.debug("Found %d root persons in tree %s", len(roots), tree_id)
        return RootPersonsResult(tree_id=tree_id, roots=roots, total_roots=len(roots))

    async def _lineage_stats(self, person_id: UUID, token: CancellationToken) -> tuple[int, int]:
        """Distinct descendant count and deepest generation, capped in depth."""
        visited = {person_id}
        queue = deque([(person_id, 0)])
        max_depth = 0

        while queue:
            await token.checkpoint()
            current, depth = queue.popleft()
            max_depth = max(max_depth, depth)
            if depth >= self.config.max_descendant_depth:
                continue
            for _, child in self.store.get_children(current):
                if child.person_id not in visited:
                    visited.add(child.person_id)
                    queue.append((child.person_id, depth + 1))

        return len(visited) - 1, max_depth
