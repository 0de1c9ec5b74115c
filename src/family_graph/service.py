"""Family tree service: the operations exposed to callers.

Every operation takes a ``TreeScope`` that the caller has already
resolved (authentication and tree access are outside this package).
Reads consult the tree cache first; writes validate through the Cycle
Guard, insert through the store and then publish a ``MutationEvent``
that invalidates cached views of the tree.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError

from .ancestry import CommonAncestorResolver
from .cache import CacheKeyBuilder, TreeCache, build_cache
from .cancellation import CancellationToken
from .config import CONFIG, GraphConfig
from .cycle_guard import CycleGuard
from .exceptions import (
    FamilyGraphError,
    ForbiddenError,
    GraphValidationError,
    InternalError,
    NotFoundError,
    ValidationReason,
)
from .hierarchy import HierarchyBuilder
from .kinship import (
    NO_BLOOD_RELATION_DESCRIPTION,
    NO_BLOOD_RELATION_LABEL,
    Kinship,
    KinshipCategory,
    classify,
)
from .logging import get_logger
from .models import (
    CommonAncestor,
    FamilyGroup,
    HierarchyQuery,
    MutationEvent,
    MutationType,
    ParentChildRequest,
    PathQuery,
    PersonSummary,
    RelationshipPath,
    RelationshipResult,
    RootPersonsResult,
    SiblingInfo,
    TreeNode,
    UnionChildResult,
)
from .path_finder import PathFinder
from .store import (
    ALREADY_MEMBER_MESSAGE,
    EdgeStore,
    ParentChildEdge,
    ParentChildKind,
    Person,
    Union,
    UnionMember,
    UnionType,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class TreeScope:
    """Tree the caller may see, and whether they may change it.

    ``tree_id`` None means unscoped (single-tree stores, the CLI).
    """
    tree_id: UUID | None = None
    can_edit: bool = True


MutationListener = Callable[[MutationEvent], None]


class FamilyTreeService:
    """Facade over the hierarchy builder, path finder and cycle guard.

    Example:
        >>> service = FamilyTreeService(InMemoryEdgeStore())
        >>> scope = TreeScope(tree_id)
        >>> tree = await service.get_pedigree(person_id, scope, generations=3)
        >>> result = await service.get_relationship(a_id, b_id, scope)
        >>> result.relationship_type
        'First cousin'
    """

    def __init__(
        self,
        store: EdgeStore,
        cache: TreeCache | None = None,
        config: GraphConfig = CONFIG,
    ) -> None:
        self.store = store
        self.config = config
        self.cache = cache if cache is not None else build_cache(config)
        self.guard = CycleGuard(store)
        self.hierarchy = HierarchyBuilder(store, config)
        self.paths = PathFinder(store, config)
        self.ancestry = CommonAncestorResolver(store)
        self._listeners: list[MutationListener] = [self.cache.handle_mutation]

    # ---- plumbing ----

    def subscribe(self, listener: MutationListener) -> None:
        """Register a callback invoked after every successful write."""
        self._listeners.append(listener)

    def _publish(self, event: MutationEvent) -> None:
        for listener in self._listeners:
            listener(event)
        logger.debug("mutation.published", **event.to_dict())

    @contextmanager
    def _storage_errors(self, operation: str):
        try:
            yield
        except FamilyGraphError:
            raise
        except Exception as e:
            logger.exception("storage.failure", operation=operation)
            raise InternalError(f"Unexpected storage failure during {operation}", e) from e

    @staticmethod
    def _validated(model: type[M], **values) -> M:
        try:
            return model(**values)
        except ValidationError as e:
            raise GraphValidationError(ValidationReason.INVALID_ARGUMENT, str(e)) from e

    @staticmethod
    def _require_edit(scope: TreeScope) -> None:
        if not scope.can_edit:
            raise ForbiddenError("This tree scope does not allow changes")

    def _person(self, person_id: UUID, scope: TreeScope) -> Person:
        person = self.store.get_person(person_id)
        if person is None or (scope.tree_id is not None and person.tree_id != scope.tree_id):
            raise NotFoundError("person", person_id)
        return person

    def _union(self, union_id: UUID, scope: TreeScope) -> Union:
        union = self.store.get_union(union_id)
        if union is None or (scope.tree_id is not None and union.tree_id != scope.tree_id):
            raise NotFoundError("union", union_id)
        return union

    def _generations(self, person_id: UUID, generations: int | None, default: int) -> int:
        query = self._validated(
            HierarchyQuery,
            person_id=person_id,
            generations=default if generations is None else generations,
        )
        return min(query.generations, self.config.max_generations)

    async def _cached(
        self,
        scope: TreeScope,
        key: str,
        operation: str,
        compute: Callable[[], Awaitable[M]],
    ) -> M:
        cached = self.cache.get(scope.tree_id, key)
        if cached is not None:
            logger.debug(f"{operation}.cache_hit", key=key)
            return cached  # type: ignore[return-value]

        with self._storage_errors(operation):
            result = await compute()
        self.cache.set(scope.tree_id, key, result)
        return result

    # ---- tree views ----

    async def get_pedigree(
        self,
        person_id: UUID,
        scope: TreeScope,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> TreeNode:
        generations = self._generations(person_id, generations, self.config.pedigree_generations)

        async def compute() -> TreeNode:
            return await self.hierarchy.pedigree(self._person(person_id, scope), generations, token)

        return await self._cached(scope, CacheKeyBuilder.pedigree(person_id, generations), "pedigree", compute)

    async def get_descendants(
        self,
        person_id: UUID,
        scope: TreeScope,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> TreeNode:
        generations = self._generations(person_id, generations, self.config.descendant_generations)

        async def compute() -> TreeNode:
            return await self.hierarchy.descendants(self._person(person_id, scope), generations, token)

        return await self._cached(scope, CacheKeyBuilder.descendants(person_id, generations), "descendants", compute)

    async def get_hourglass(
        self,
        person_id: UUID,
        scope: TreeScope,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> TreeNode:
        generations = self._generations(person_id, generations, self.config.hourglass_generations)

        async def compute() -> TreeNode:
            return await self.hierarchy.hourglass(self._person(person_id, scope), generations, token)

        return await self._cached(scope, CacheKeyBuilder.hourglass(person_id, generations), "hourglass", compute)

    async def get_family_group(self, person_id: UUID, scope: TreeScope) -> FamilyGroup:
        async def compute() -> FamilyGroup:
            return self.hierarchy.family_group(self._person(person_id, scope))

        return await self._cached(scope, CacheKeyBuilder.family_group(person_id), "family_group", compute)

    async def get_siblings(self, person_id: UUID, scope: TreeScope) -> list[SiblingInfo]:
        with self._storage_errors("siblings"):
            return self.hierarchy.siblings(self._person(person_id, scope))

    async def get_root_persons(
        self,
        scope: TreeScope,
        token: CancellationToken | None = None,
    ) -> RootPersonsResult:
        with self._storage_errors("root_persons"):
            return await self.hierarchy.root_persons(scope.tree_id, token)

    # ---- relationships ----

    async def get_relationship(
        self,
        person1_id: UUID,
        person2_id: UUID,
        scope: TreeScope,
        token: CancellationToken | None = None,
    ) -> RelationshipResult:
        """Kinship from the nearest common ancestor of the two persons.

        Marriage links are ignored here; two spouses with no shared
        ancestor get "No blood relation found" even though a path exists.
        """
        async def compute() -> RelationshipResult:
            person1 = self._person(person1_id, scope)
            person2 = self._person(person2_id, scope)
            matches = await self.ancestry.nearest_common_ancestors(person1_id, person2_id, token)
            if not matches:
                return RelationshipResult(
                    person1_id=person1_id,
                    person2_id=person2_id,
                    relationship_type=NO_BLOOD_RELATION_LABEL,
                    description=NO_BLOOD_RELATION_DESCRIPTION,
                )

            nearest = matches[0]
            kinship = classify(nearest.generations_from_person1, nearest.generations_from_person2)
            common = []
            for match in matches:
                ancestor = self.store.get_person(match.ancestor_id)
                if ancestor is None:
                    continue
                common.append(
                    CommonAncestor(
                        person=PersonSummary.from_person(ancestor),
                        generations_from_person1=match.generations_from_person1,
                        generations_from_person2=match.generations_from_person2,
                    )
                )
            return RelationshipResult(
                person1_id=person1_id,
                person2_id=person2_id,
                relationship_type=kinship.label,
                description=self._describe(kinship, person1, person2),
                category=kinship.category.value,
                generations_from_person1=kinship.generations_from_person1,
                generations_from_person2=kinship.generations_from_person2,
                common_ancestors=common,
            )

        key = CacheKeyBuilder.relationship(person1_id, person2_id)
        return await self._cached(scope, key, "relationship", compute)

    @staticmethod
    def _describe(kinship: Kinship, person1: Person, person2: Person) -> str:
        if kinship.category is KinshipCategory.SAME_PERSON:
            return f"{person1.primary_name} is the same person"
        return f"{person1.primary_name} is the {kinship.description.lower()} of {person2.primary_name}"

    async def find_relationship_path(
        self,
        person1_id: UUID,
        person2_id: UUID,
        scope: TreeScope,
        max_depth: int | None = None,
        token: CancellationToken | None = None,
    ) -> RelationshipPath:
        """Shortest path through parent, child and spouse links."""
        query = self._validated(
            PathQuery,
            person1_id=person1_id,
            person2_id=person2_id,
            max_depth=self.config.max_search_depth if max_depth is None else max_depth,
        )

        async def compute() -> RelationshipPath:
            person1 = self._person(query.person1_id, scope)
            person2 = self._person(query.person2_id, scope)
            return await self.paths.find(person1, person2, query.max_depth, token)

        key = CacheKeyBuilder.path(person1_id, person2_id, query.max_depth)
        return await self._cached(scope, key, "relationship_path", compute)

    # ---- parent-child mutations ----

    async def add_parent_child_edge(
        self,
        parent_id: UUID,
        child_id: UUID,
        scope: TreeScope,
        kind: ParentChildKind = ParentChildKind.BIOLOGICAL,
        notes: str | None = None,
        token: CancellationToken | None = None,
    ) -> ParentChildEdge:
        """Validate and insert a parent -> child edge.

        Raises:
            GraphValidationError: duplicate, cycle or biological-parent rule
            NotFoundError: either person is not in scope
        """
        self._require_edit(scope)
        request = self._validated(
            ParentChildRequest, parent_id=parent_id, child_id=child_id, kind=kind, notes=notes
        )

        with self._storage_errors("add_parent_child_edge"):
            parent = self._person(request.parent_id, scope)
            child = self._person(request.child_id, scope)
            try:
                await self.guard.validate(parent, child, request.kind, token)
                edge = self.store.insert_edge(
                    ParentChildEdge(
                        parent_id=request.parent_id, child_id=request.child_id, kind=request.kind, notes=request.notes
                    )
                )
            except GraphValidationError as e:
                logger.warning(
                    "edge.rejected",
                    parent_id=str(parent_id),
                    child_id=str(child_id),
                    reason=e.reason.value,
                )
                raise

        logger.info(
            "edge.created",
            edge_id=str(edge.edge_id),
            parent_id=str(parent_id),
            child_id=str(child_id),
            kind=request.kind.value,
        )
        self._publish(MutationEvent(MutationType.EDGE_ADDED, scope.tree_id, [parent_id, child_id]))
        return edge

    async def remove_parent_child_edge(
        self,
        parent_id: UUID,
        child_id: UUID,
        scope: TreeScope,
    ) -> ParentChildEdge:
        """Soft-delete the active edge between two persons."""
        self._require_edit(scope)
        with self._storage_errors("remove_parent_child_edge"):
            self._person(parent_id, scope)
            self._person(child_id, scope)
            edge = self.store.get_edge(parent_id, child_id)
            removed = self.store.soft_delete_edge(edge.edge_id) if edge else None
            if removed is None:
                raise NotFoundError("relationship", f"{parent_id}->{child_id}")

        logger.info("edge.removed", edge_id=str(removed.edge_id))
        self._publish(MutationEvent(MutationType.EDGE_REMOVED, scope.tree_id, [parent_id, child_id]))
        return removed

    # ---- union mutations ----

    async def create_union(
        self,
        scope: TreeScope,
        member_ids: list[UUID],
        union_type: UnionType = UnionType.MARRIAGE,
        start_date: date | None = None,
        end_date: date | None = None,
        notes: str | None = None,
    ) -> Union:
        self._require_edit(scope)
        member_ids = list(dict.fromkeys(member_ids))
        if not member_ids:
            raise GraphValidationError(ValidationReason.INVALID_ARGUMENT, "A union needs at least one member")

        with self._storage_errors("create_union"):
            for person_id in member_ids:
                self._person(person_id, scope)
            union = self.store.add_union(
                Union(
                    tree_id=scope.tree_id,
                    union_type=union_type,
                    start_date=start_date,
                    end_date=end_date,
                    notes=notes,
                )
            )
            for person_id in member_ids:
                self.store.add_union_member(UnionMember(union_id=union.union_id, person_id=person_id))

        logger.info("union.created", union_id=str(union.union_id), members=len(member_ids))
        self._publish(MutationEvent(MutationType.UNION_CREATED, scope.tree_id, member_ids, union.union_id))
        return union

    async def add_union_member(
        self,
        union_id: UUID,
        person_id: UUID,
        scope: TreeScope,
        role: str = "spouse",
    ) -> UnionMember:
        self._require_edit(scope)
        with self._storage_errors("add_union_member"):
            self._union(union_id, scope)
            self._person(person_id, scope)
            if any(m.person_id == person_id for m, _ in self.store.get_union_members(union_id)):
                raise GraphValidationError(ValidationReason.ALREADY_MEMBER, ALREADY_MEMBER_MESSAGE)
            member = self.store.add_union_member(UnionMember(union_id=union_id, person_id=person_id, role=role))

        logger.info("union.member_added", union_id=str(union_id), person_id=str(person_id))
        self._publish(MutationEvent(MutationType.MEMBER_ADDED, scope.tree_id, [person_id], union_id))
        return member

    async def remove_union_member(self, union_id: UUID, person_id: UUID, scope: TreeScope) -> UnionMember:
        self._require_edit(scope)
        with self._storage_errors("remove_union_member"):
            self._union(union_id, scope)
            member = self.store.soft_delete_union_member(union_id, person_id)
            if member is None:
                raise NotFoundError("union member", person_id)

        logger.info("union.member_removed", union_id=str(union_id), person_id=str(person_id))
        self._publish(MutationEvent(MutationType.MEMBER_REMOVED, scope.tree_id, [person_id], union_id))
        return member

    async def get_union_children(self, union_id: UUID, scope: TreeScope) -> list[PersonSummary]:
        """Distinct children of any active member of the union."""
        with self._storage_errors("union_children"):
            self._union(union_id, scope)
            children: dict[UUID, PersonSummary] = {}
            for _, member in self.store.get_union_members(union_id):
                for _, child in self.store.get_children(member.person_id):
                    children.setdefault(child.person_id, PersonSummary.from_person(child))
            return list(children.values())

    async def add_union_child(
        self,
        union_id: UUID,
        child_id: UUID,
        scope: TreeScope,
        kind: ParentChildKind = ParentChildKind.BIOLOGICAL,
        token: CancellationToken | None = None,
    ) -> UnionChildResult:
        """Make ``child_id`` a child of every member of the union.

        Members whose edge would break a rule are skipped with the reason;
        the others still get their edge.
        """
        self._require_edit(scope)
        try:
            kind = ParentChildKind(kind)
        except ValueError as e:
            raise GraphValidationError(ValidationReason.INVALID_ARGUMENT, str(e)) from e
        result = UnionChildResult(union_id=union_id, child_id=child_id)

        try:
            with self._storage_errors("add_union_child"):
                self._union(union_id, scope)
                child = self._person(child_id, scope)
                for _, member in self.store.get_union_members(union_id):
                    try:
                        await self.guard.validate(member, child, kind, token)
                        self.store.insert_edge(
                            ParentChildEdge(parent_id=member.person_id, child_id=child_id, kind=kind)
                        )
                    except GraphValidationError as e:
                        result.skipped[member.person_id] = e.message
                        logger.info(
                            "union_child.member_skipped",
                            union_id=str(union_id),
                            parent_id=str(member.person_id),
                            reason=e.reason.value,
                        )
                        continue
                    result.created.append(member.person_id)
        finally:
            # Edges inserted before a failure stay committed
            if result.created:
                self._publish(
                    MutationEvent(MutationType.EDGE_ADDED, scope.tree_id, [*result.created, child_id], union_id)
                )
        return result

    async def remove_union_child(self, union_id: UUID, child_id: UUID, scope: TreeScope) -> list[ParentChildEdge]:
        """Soft-delete every member's edge to the child."""
        self._require_edit(scope)
        removed = []
        with self._storage_errors("remove_union_child"):
            self._union(union_id, scope)
            self._person(child_id, scope)
            for _, member in self.store.get_union_members(union_id):
                edge = self.store.get_edge(member.person_id, child_id)
                if edge is None:
                    continue
                deleted = self.store.soft_delete_edge(edge.edge_id)
                if deleted is not None:
                    removed.append(deleted)
            if not removed:
                raise NotFoundError("union child", child_id)

        logger.info("union_child.removed", union_id=str(union_id), child_id=str(child_id), edges=len(removed))
        self._publish(
            MutationEvent(
                MutationType.EDGE_REMOVED,
                scope.tree_id,
                [*(e.parent_id for e in removed), child_id],
                union_id,
            )
        )
        return removed
