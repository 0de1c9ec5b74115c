"""Tests for the family tree service facade."""
from __future__ import annotations

from uuid import uuid4

import pytest

from family_graph import (
    CancellationToken,
    FamilyTreeService,
    ForbiddenError,
    GraphValidationError,
    InMemoryEdgeStore,
    InternalError,
    MemoryTreeCache,
    NotFoundError,
    OperationCancelledError,
    ParentChildKind,
    Sex,
    TreeScope,
    ValidationReason,
)
from family_graph.config import GraphConfig
from family_graph.models import MutationType


class _CancelAfter(CancellationToken):
    """Token that fires once the given number of checkpoints have passed."""

    def __init__(self, checkpoints: int) -> None:
        super().__init__()
        self.remaining = checkpoints

    async def checkpoint(self) -> None:
        if self.remaining == 0:
            self.cancel("stopped mid-write")
        self.remaining -= 1
        await super().checkpoint()


@pytest.fixture
def service(store):
    return FamilyTreeService(store, cache=MemoryTreeCache(ttl_seconds=60, max_entries=100))


@pytest.fixture
def scope(tree_id):
    return TreeScope(tree_id)


class TestParentChildEdges:
    """Tests for validated edge writes."""

    @pytest.mark.asyncio
    async def test_third_parent_and_duplicate_rejected(self, service, builder, scope):
        a = builder.person("A", Sex.MALE)
        b = builder.person("B", Sex.FEMALE)
        c = builder.person("C")
        d = builder.person("D")
        await service.add_parent_child_edge(a.person_id, c.person_id, scope)
        await service.add_parent_child_edge(b.person_id, c.person_id, scope)

        with pytest.raises(GraphValidationError) as exc:
            await service.add_parent_child_edge(d.person_id, c.person_id, scope)
        assert exc.value.reason is ValidationReason.MAX_BIOLOGICAL_PARENTS

        with pytest.raises(GraphValidationError) as exc:
            await service.add_parent_child_edge(a.person_id, c.person_id, scope)
        assert exc.value.reason is ValidationReason.DUPLICATE_EDGE

    @pytest.mark.asyncio
    async def test_chain_cycle_rejected(self, service, builder, scope):
        a, b, c, d = (builder.person(n, Sex.MALE) for n in "ABCD")
        for parent, child in ((a, b), (b, c), (c, d)):
            await service.add_parent_child_edge(parent.person_id, child.person_id, scope)

        with pytest.raises(GraphValidationError, match="cycle") as exc:
            await service.add_parent_child_edge(d.person_id, a.person_id, scope, ParentChildKind.ADOPTIVE)
        assert exc.value.reason is ValidationReason.CYCLE

    @pytest.mark.asyncio
    async def test_edge_fields_and_event(self, service, builder, scope):
        parent = builder.person("Parent", Sex.FEMALE)
        child = builder.person("Child")
        events = []
        service.subscribe(events.append)

        edge = await service.add_parent_child_edge(
            parent.person_id, child.person_id, scope, ParentChildKind.FOSTER, notes="Placed in 1961"
        )

        assert edge.kind is ParentChildKind.FOSTER
        assert edge.notes == "Placed in 1961"
        assert [e.mutation_type for e in events] == [MutationType.EDGE_ADDED]
        assert events[0].person_ids == [parent.person_id, child.person_id]

    @pytest.mark.asyncio
    async def test_kind_given_as_string(self, service, store, builder, scope):
        parent = builder.person("Parent", Sex.FEMALE)
        child = builder.person("Child")
        before = await service.get_pedigree(child.person_id, scope)
        assert before.parents == []

        edge = await service.add_parent_child_edge(parent.person_id, child.person_id, scope, "adoptive")

        assert edge.kind is ParentChildKind.ADOPTIVE
        assert store.get_edge(parent.person_id, child.person_id).kind is ParentChildKind.ADOPTIVE
        after = await service.get_pedigree(child.person_id, scope)
        assert [p.name for p in after.parents] == ["Parent"]

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, service, builder, scope):
        parent = builder.person("Parent")
        child = builder.person("Child")

        with pytest.raises(GraphValidationError) as exc:
            await service.add_parent_child_edge(parent.person_id, child.person_id, scope, "godparent")
        assert exc.value.reason is ValidationReason.INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_overlong_notes_rejected(self, service, builder, scope):
        parent = builder.person("Parent")
        child = builder.person("Child")

        with pytest.raises(GraphValidationError) as exc:
            await service.add_parent_child_edge(parent.person_id, child.person_id, scope, notes="x" * 2001)
        assert exc.value.reason is ValidationReason.INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_remove_edge(self, service, store, scope, family):
        removed = await service.remove_parent_child_edge(family["sam"].person_id, family["dan"].person_id, scope)

        assert removed.is_deleted is True
        assert store.get_parents(family["dan"].person_id) == []
        with pytest.raises(NotFoundError):
            await service.remove_parent_child_edge(family["sam"].person_id, family["dan"].person_id, scope)


class TestScope:
    """Tests for tree scoping and edit permission."""

    @pytest.mark.asyncio
    async def test_person_in_other_tree_not_found(self, service, family):
        with pytest.raises(NotFoundError, match="Person .* not found"):
            await service.get_pedigree(family["sam"].person_id, TreeScope(uuid4()))

    @pytest.mark.asyncio
    async def test_unknown_person(self, service, scope):
        with pytest.raises(NotFoundError):
            await service.get_family_group(uuid4(), scope)

    @pytest.mark.asyncio
    async def test_read_only_scope_cannot_write(self, service, store, tree_id, builder):
        parent = builder.person("Parent")
        child = builder.person("Child")

        with pytest.raises(ForbiddenError):
            await service.add_parent_child_edge(parent.person_id, child.person_id, TreeScope(tree_id, can_edit=False))
        assert store.get_parents(child.person_id) == []

    @pytest.mark.asyncio
    async def test_unscoped_reads_any_tree(self, service, family):
        tree = await service.get_pedigree(family["sam"].person_id, TreeScope(), generations=1)
        assert [p.name for p in tree.parents] == ["Frank", "Mary"]


class TestTreeViews:
    """Tests for generation handling and caching of tree views."""

    @pytest.mark.asyncio
    async def test_negative_generations_rejected(self, service, scope, family):
        with pytest.raises(GraphValidationError) as exc:
            await service.get_pedigree(family["sam"].person_id, scope, generations=-1)
        assert exc.value.reason is ValidationReason.INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_generations_clamped_to_maximum(self, store, scope, family):
        service = FamilyTreeService(store, config=GraphConfig(max_generations=2, cache_enabled=False))
        tree = await service.get_pedigree(family["dan"].person_id, scope, generations=50)

        assert tree.depth("parents") == 2
        assert tree.parents[0].parents[0].has_more_ancestors is True

    @pytest.mark.asyncio
    async def test_cached_view_is_invalidated_by_write(self, service, builder, scope, family):
        dan = family["dan"]
        before = await service.get_descendants(dan.person_id, scope)
        assert before.children == []

        baby = builder.person("Baby")
        await service.add_parent_child_edge(dan.person_id, baby.person_id, scope)

        after = await service.get_descendants(dan.person_id, scope)
        assert [c.name for c in after.children] == ["Baby"]

    @pytest.mark.asyncio
    async def test_cached_view_cannot_be_mutated_by_caller(self, service, scope, family):
        first = await service.get_pedigree(family["sam"].person_id, scope, generations=1)
        first.parents.clear()

        second = await service.get_pedigree(family["sam"].person_id, scope, generations=1)
        assert len(second.parents) == 2

    @pytest.mark.asyncio
    async def test_hourglass_and_family_group(self, service, scope, family):
        tree = await service.get_hourglass(family["frank"].person_id, scope, generations=1)
        group = await service.get_family_group(family["frank"].person_id, scope)

        assert [p.name for p in tree.parents] == ["George", "Helen"]
        assert [c.name for c in tree.children] == ["Sam", "Tina"]
        assert [s.person.name for s in group.spouses] == ["Mary"]

    @pytest.mark.asyncio
    async def test_siblings_and_roots(self, service, scope, family):
        siblings = await service.get_siblings(family["frank"].person_id, scope)
        roots = await service.get_root_persons(scope)

        assert [s.person.name for s in siblings] == ["Alice"]
        assert siblings[0].is_full_sibling is True
        assert roots.roots[0].person.name == "George"

    @pytest.mark.asyncio
    async def test_cancelled_token(self, service, scope, family):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            await service.get_descendants(family["george"].person_id, scope, token=token)


class TestRelationships:
    """Tests for kinship and path queries."""

    @pytest.mark.asyncio
    async def test_first_cousins(self, service, scope, family):
        result = await service.get_relationship(family["sam"].person_id, family["carl"].person_id, scope)

        assert result.relationship_type == "First cousin"
        assert result.description == "Sam is the first cousin of Carl"
        assert result.category == "cousin"
        assert [a.person.name for a in result.common_ancestors] == ["George", "Helen"]
        assert result.has_common_ancestor is True

    @pytest.mark.asyncio
    async def test_aunt(self, service, scope, family):
        result = await service.get_relationship(family["alice"].person_id, family["sam"].person_id, scope)

        assert result.relationship_type == "Aunt/Uncle"
        assert result.description == "Alice is the aunt or uncle of Sam"

    @pytest.mark.asyncio
    async def test_direct_ancestor(self, service, scope, family):
        result = await service.get_relationship(family["george"].person_id, family["dan"].person_id, scope)
        assert result.relationship_type == "Great-grandparent"
        assert (result.generations_from_person1, result.generations_from_person2) == (0, 3)

    @pytest.mark.asyncio
    async def test_same_person(self, service, scope, family):
        result = await service.get_relationship(family["sam"].person_id, family["sam"].person_id, scope)
        assert result.relationship_type == "Same person"
        assert result.description == "Sam is the same person"

    @pytest.mark.asyncio
    async def test_married_strangers_have_path_but_no_blood_relation(self, service, builder, scope):
        c = builder.person("C", Sex.MALE)
        d = builder.person("D", Sex.FEMALE)
        e = builder.person("E")
        await service.create_union(scope, [c.person_id, d.person_id])
        await service.add_parent_child_edge(c.person_id, e.person_id, scope)
        await service.add_parent_child_edge(d.person_id, e.person_id, scope)

        kinship = await service.get_relationship(c.person_id, d.person_id, scope)
        path = await service.find_relationship_path(c.person_id, d.person_id, scope)

        assert kinship.relationship_type == "No blood relation found"
        assert kinship.has_common_ancestor is False
        assert path.path_found is True
        assert path.path_length == 1
        assert path.relationship_label == "wife"

    @pytest.mark.asyncio
    async def test_path_max_depth_validated(self, service, scope, family):
        with pytest.raises(GraphValidationError):
            await service.find_relationship_path(family["sam"].person_id, family["carl"].person_id, scope, max_depth=0)

    @pytest.mark.asyncio
    async def test_path_respects_max_depth(self, service, scope, family):
        result = await service.find_relationship_path(
            family["sam"].person_id, family["carl"].person_id, scope, max_depth=3
        )
        assert result.path_found is False


class TestUnions:
    """Tests for unions and union children."""

    @pytest.mark.asyncio
    async def test_create_union_and_members(self, service, builder, scope):
        first = builder.person("First", Sex.MALE)
        second = builder.person("Second", Sex.FEMALE)
        third = builder.person("Third")

        union = await service.create_union(scope, [first.person_id, second.person_id, first.person_id])
        await service.add_union_member(union.union_id, third.person_id, scope)

        group = await service.get_family_group(first.person_id, scope)
        assert [s.person.name for s in group.spouses] == ["Second", "Third"]

        with pytest.raises(GraphValidationError) as exc:
            await service.add_union_member(union.union_id, third.person_id, scope)
        assert exc.value.reason is ValidationReason.ALREADY_MEMBER

        await service.remove_union_member(union.union_id, third.person_id, scope)
        with pytest.raises(NotFoundError):
            await service.remove_union_member(union.union_id, third.person_id, scope)

    @pytest.mark.asyncio
    async def test_empty_union_rejected(self, service, scope):
        with pytest.raises(GraphValidationError):
            await service.create_union(scope, [])

    @pytest.mark.asyncio
    async def test_union_in_other_tree_not_found(self, service, scope, family):
        union = await service.create_union(scope, [family["sam"].person_id])
        with pytest.raises(NotFoundError):
            await service.get_union_children(union.union_id, TreeScope(uuid4()))

    @pytest.mark.asyncio
    async def test_union_child_added_for_every_member(self, service, store, builder, scope):
        father = builder.person("Father", Sex.MALE)
        mother = builder.person("Mother", Sex.FEMALE)
        child = builder.person("Child")
        union = await service.create_union(scope, [father.person_id, mother.person_id])

        result = await service.add_union_child(union.union_id, child.person_id, scope)

        assert result.created == [father.person_id, mother.person_id]
        assert result.skipped == {}
        assert [c.name for c in await service.get_union_children(union.union_id, scope)] == ["Child"]

    @pytest.mark.asyncio
    async def test_union_child_skips_rejected_member(self, service, store, builder, scope):
        """The child already has a biological father, so only the mother gets an edge."""
        stepfather = builder.person("Stepfather", Sex.MALE)
        mother = builder.person("Mother", Sex.FEMALE)
        child = builder.person("Child")
        builder.parent(builder.person("Father", Sex.MALE), child)
        union = await service.create_union(scope, [stepfather.person_id, mother.person_id])

        result = await service.add_union_child(union.union_id, child.person_id, scope)

        assert result.created == [mother.person_id]
        assert result.skipped == {stepfather.person_id: "This person already has a biological father"}
        assert [p.primary_name for _, p in store.get_parents(child.person_id)] == ["Father", "Mother"]

    @pytest.mark.asyncio
    async def test_cancelled_fan_out_still_invalidates(self, service, store, builder, scope):
        """The father's edge is committed before the token fires on the mother."""
        father = builder.person("Father", Sex.MALE)
        mother = builder.person("Mother", Sex.FEMALE)
        child = builder.person("Child")
        union = await service.create_union(scope, [father.person_id, mother.person_id])
        before = await service.get_pedigree(child.person_id, scope)
        assert before.parents == []
        events = []
        service.subscribe(events.append)

        with pytest.raises(OperationCancelledError):
            await service.add_union_child(union.union_id, child.person_id, scope, token=_CancelAfter(1))

        assert [p.primary_name for _, p in store.get_parents(child.person_id)] == ["Father"]
        assert events[0].person_ids == [father.person_id, child.person_id]
        after = await service.get_pedigree(child.person_id, scope)
        assert [p.name for p in after.parents] == ["Father"]

    @pytest.mark.asyncio
    async def test_union_child_kind_given_as_string(self, service, store, builder, scope):
        guardian = builder.person("Guardian")
        child = builder.person("Child")
        union = await service.create_union(scope, [guardian.person_id])

        result = await service.add_union_child(union.union_id, child.person_id, scope, "foster")

        assert result.created == [guardian.person_id]
        assert store.get_edge(guardian.person_id, child.person_id).kind is ParentChildKind.FOSTER

    @pytest.mark.asyncio
    async def test_remove_union_child(self, service, store, builder, scope):
        father = builder.person("Father", Sex.MALE)
        mother = builder.person("Mother", Sex.FEMALE)
        child = builder.person("Child")
        union = await service.create_union(scope, [father.person_id, mother.person_id])
        await service.add_union_child(union.union_id, child.person_id, scope)

        removed = await service.remove_union_child(union.union_id, child.person_id, scope)

        assert len(removed) == 2
        assert store.get_parents(child.person_id) == []
        with pytest.raises(NotFoundError):
            await service.remove_union_child(union.union_id, child.person_id, scope)


class _BrokenStore(InMemoryEdgeStore):
    def get_parents(self, child_id):
        raise RuntimeError("disk on fire")


class TestStorageFailures:
    """Tests for wrapping unexpected store errors."""

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, make_builder):
        store = _BrokenStore()
        person = make_builder(store).person("Someone")
        service = FamilyTreeService(store)

        with pytest.raises(InternalError) as exc:
            await service.get_pedigree(person.person_id, TreeScope())
        assert isinstance(exc.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_domain_errors_pass_through(self, make_builder):
        store = _BrokenStore()
        service = FamilyTreeService(store)

        with pytest.raises(NotFoundError):
            await service.get_pedigree(uuid4(), TreeScope())
