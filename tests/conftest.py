"""Shared fixtures: small family graphs built on the in-memory store."""
from __future__ import annotations

from uuid import UUID, uuid4

import pytest

from family_graph import (
    InMemoryEdgeStore,
    ParentChildEdge,
    ParentChildKind,
    Person,
    Sex,
    Union,
    UnionMember,
)


class FamilyBuilder:
    """Writes persons, edges and unions straight into a store."""

    def __init__(self, store, tree_id: UUID | None = None) -> None:
        self.store = store
        self.tree_id = tree_id

    def person(self, name: str, sex: Sex = Sex.UNKNOWN, **fields) -> Person:
        return self.store.add_person(Person(primary_name=name, sex=sex, tree_id=self.tree_id, **fields))

    def parent(self, parent: Person, child: Person, kind: ParentChildKind = ParentChildKind.BIOLOGICAL) -> ParentChildEdge:
        return self.store.insert_edge(ParentChildEdge(parent_id=parent.person_id, child_id=child.person_id, kind=kind))

    def marry(self, *persons: Person) -> Union:
        union = self.store.add_union(Union(tree_id=self.tree_id))
        for person in persons:
            self.store.add_union_member(UnionMember(union_id=union.union_id, person_id=person.person_id))
        return union


@pytest.fixture
def store():
    return InMemoryEdgeStore()


@pytest.fixture
def tree_id():
    return uuid4()


@pytest.fixture
def builder(store, tree_id):
    return FamilyBuilder(store, tree_id)


@pytest.fixture
def family(builder):
    """Three generations below George and Helen.

        George + Helen
        ├── Frank + Mary
        │   ├── Sam ── Dan
        │   └── Tina
        └── Alice + Bob
            └── Carl
    """
    p = {}
    p["george"] = builder.person("George", Sex.MALE)
    p["helen"] = builder.person("Helen", Sex.FEMALE)
    p["frank"] = builder.person("Frank", Sex.MALE)
    p["alice"] = builder.person("Alice", Sex.FEMALE)
    p["mary"] = builder.person("Mary", Sex.FEMALE)
    p["bob"] = builder.person("Bob", Sex.MALE)
    p["sam"] = builder.person("Sam", Sex.MALE)
    p["tina"] = builder.person("Tina", Sex.FEMALE)
    p["carl"] = builder.person("Carl", Sex.MALE)
    p["dan"] = builder.person("Dan", Sex.MALE)

    builder.marry(p["george"], p["helen"])
    builder.marry(p["frank"], p["mary"])
    builder.marry(p["alice"], p["bob"])

    for parent in ("george", "helen"):
        builder.parent(p[parent], p["frank"])
        builder.parent(p[parent], p["alice"])
    for parent in ("frank", "mary"):
        builder.parent(p[parent], p["sam"])
        builder.parent(p[parent], p["tina"])
    for parent in ("alice", "bob"):
        builder.parent(p[parent], p["carl"])
    builder.parent(p["sam"], p["dan"])
    return p


@pytest.fixture
def make_builder():
    return FamilyBuilder
