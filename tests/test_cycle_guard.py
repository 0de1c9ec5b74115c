"""Tests for parent-child edge validation."""
from __future__ import annotations

import pytest

from family_graph import (
    CancellationToken,
    CycleGuard,
    GraphValidationError,
    OperationCancelledError,
    ParentChildKind,
    Sex,
    ValidationReason,
)


@pytest.fixture
def chain(builder):
    """A -> B -> C -> D, each the biological parent of the next."""
    a = builder.person("A", Sex.MALE)
    b = builder.person("B", Sex.MALE)
    c = builder.person("C", Sex.MALE)
    d = builder.person("D", Sex.MALE)
    builder.parent(a, b)
    builder.parent(b, c)
    builder.parent(c, d)
    return a, b, c, d


class TestWouldCreateCycle:
    """Tests for descendant reachability."""

    @pytest.mark.asyncio
    async def test_descendant_as_parent_is_cycle(self, store, chain):
        """D cannot become the parent of A."""
        a, _, _, d = chain
        guard = CycleGuard(store)
        assert await guard.would_create_cycle(d.person_id, a.person_id) is True

    @pytest.mark.asyncio
    async def test_self_parent_is_cycle(self, store, chain):
        a, *_ = chain
        guard = CycleGuard(store)
        assert await guard.would_create_cycle(a.person_id, a.person_id) is True

    @pytest.mark.asyncio
    async def test_ancestor_as_parent_is_not_cycle(self, store, chain):
        """A grandparent may gain a further (adoptive) edge downward."""
        a, _, c, _ = chain
        guard = CycleGuard(store)
        assert await guard.would_create_cycle(a.person_id, c.person_id) is False

    @pytest.mark.asyncio
    async def test_unrelated_person_is_not_cycle(self, store, builder, chain):
        a, *_ = chain
        stranger = builder.person("Stranger")
        guard = CycleGuard(store)
        assert await guard.would_create_cycle(stranger.person_id, a.person_id) is False

    @pytest.mark.asyncio
    async def test_soft_deleted_edges_are_ignored(self, store, chain):
        """Removing B -> C breaks the path from A down to D."""
        a, b, c, d = chain
        store.soft_delete_edge(store.get_edge(b.person_id, c.person_id).edge_id)
        guard = CycleGuard(store)
        assert await guard.would_create_cycle(d.person_id, a.person_id) is False

    @pytest.mark.asyncio
    async def test_diamond_is_not_cycle(self, store, builder):
        """Converging lines are allowed and terminate."""
        top = builder.person("Top")
        left = builder.person("Left", Sex.MALE)
        right = builder.person("Right", Sex.FEMALE)
        bottom = builder.person("Bottom")
        builder.parent(top, left)
        builder.parent(top, right)
        builder.parent(left, bottom)
        builder.parent(right, bottom)

        guard = CycleGuard(store)
        assert await guard.would_create_cycle(bottom.person_id, top.person_id) is True
        assert await guard.would_create_cycle(left.person_id, right.person_id) is False

    @pytest.mark.asyncio
    async def test_cancelled_token_raises(self, store, chain):
        a, _, _, d = chain
        token = CancellationToken()
        token.cancel()
        guard = CycleGuard(store)
        with pytest.raises(OperationCancelledError):
            await guard.would_create_cycle(d.person_id, a.person_id, token)


class TestValidate:
    """Tests for the ordered pre-write checks."""

    @pytest.fixture
    def parents(self, builder):
        father = builder.person("Father", Sex.MALE)
        mother = builder.person("Mother", Sex.FEMALE)
        child = builder.person("Child", Sex.FEMALE)
        builder.parent(father, child)
        builder.parent(mother, child)
        return father, mother, child

    @pytest.mark.asyncio
    async def test_third_biological_parent_rejected(self, store, builder, parents):
        _, _, child = parents
        third = builder.person("Third", Sex.UNKNOWN)
        guard = CycleGuard(store)

        with pytest.raises(GraphValidationError, match="at most 2 biological parents") as exc:
            await guard.validate(third, child)
        assert exc.value.reason is ValidationReason.MAX_BIOLOGICAL_PARENTS

    @pytest.mark.asyncio
    async def test_duplicate_rejected_before_other_checks(self, store, parents):
        father, _, child = parents
        guard = CycleGuard(store)

        with pytest.raises(GraphValidationError, match="already exists") as exc:
            await guard.validate(father, child)
        assert exc.value.reason is ValidationReason.DUPLICATE_EDGE

    @pytest.mark.asyncio
    async def test_cycle_rejected(self, store, chain):
        a, _, _, d = chain
        guard = CycleGuard(store)

        with pytest.raises(GraphValidationError, match="cycle") as exc:
            await guard.validate(d, a)
        assert exc.value.reason is ValidationReason.CYCLE

    @pytest.mark.asyncio
    async def test_same_sex_biological_parent_rejected(self, store, builder):
        child = builder.person("Child")
        builder.parent(builder.person("Father", Sex.MALE), child)
        other = builder.person("Other Father", Sex.MALE)
        guard = CycleGuard(store)

        with pytest.raises(GraphValidationError, match="biological father") as exc:
            await guard.validate(other, child)
        assert exc.value.reason is ValidationReason.SAME_SEX_BIOLOGICAL_PARENT

    @pytest.mark.asyncio
    async def test_two_unknown_sex_parents_count_as_same_sex(self, store, builder):
        child = builder.person("Child")
        builder.parent(builder.person("Parent 1"), child)
        guard = CycleGuard(store)

        with pytest.raises(GraphValidationError, match="biological parent") as exc:
            await guard.validate(builder.person("Parent 2"), child)
        assert exc.value.reason is ValidationReason.SAME_SEX_BIOLOGICAL_PARENT

    @pytest.mark.asyncio
    async def test_adoptive_parent_ignores_biological_limits(self, store, builder, parents):
        _, _, child = parents
        guardian = builder.person("Guardian", Sex.MALE)
        guard = CycleGuard(store)

        await guard.validate(guardian, child, ParentChildKind.ADOPTIVE)

    @pytest.mark.asyncio
    async def test_adoptive_parents_do_not_fill_biological_slots(self, store, builder):
        child = builder.person("Child")
        builder.parent(builder.person("Adopter", Sex.MALE), child, ParentChildKind.ADOPTIVE)
        guard = CycleGuard(store)

        await guard.validate(builder.person("Birth Father", Sex.MALE), child)

    @pytest.mark.asyncio
    async def test_validation_does_not_write(self, store, builder, parents):
        _, _, child = parents
        third = builder.person("Third", Sex.UNKNOWN)
        guard = CycleGuard(store)

        with pytest.raises(GraphValidationError):
            await guard.validate(third, child)
        assert len(store.get_parents(child.person_id)) == 2
