"""Edge store contract and in-memory reference implementation.

The store holds person records, directed parent-child edges and union
memberships. Removal is always a soft delete so historical queries stay
consistent; every read method returns active rows only, in insertion
order.

Stores enforce the edge invariants inside ``insert_edge`` as a last
line of defence against concurrent writers. Callers are still expected to
run the Cycle Guard first so rejections carry a clean validation error
before anything touches storage.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from .exceptions import (
    EdgeConstraintError,
    GraphValidationError,
    NotFoundError,
    ValidationReason,
)

MAX_BIOLOGICAL_PARENTS = 2

DUPLICATE_EDGE_MESSAGE = "This parent-child relationship already exists"
CYCLE_MESSAGE = "This relationship would create a cycle in the family tree"
MAX_PARENTS_MESSAGE = "A person can have at most 2 biological parents"
ALREADY_MEMBER_MESSAGE = "Person is already a member of this union"


class Sex(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class DatePrecision(str, Enum):
    EXACT = "exact"
    APPROXIMATE = "approximate"
    UNKNOWN = "unknown"


class ParentChildKind(str, Enum):
    BIOLOGICAL = "biological"
    ADOPTIVE = "adoptive"
    STEP = "step"
    FOSTER = "foster"


class UnionType(str, Enum):
    MARRIAGE = "marriage"
    CIVIL_UNION = "civil_union"
    PARTNERSHIP = "partnership"
    UNKNOWN = "unknown"


def _date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Person:
    """A person record owned by a tree."""
    primary_name: str
    sex: Sex = Sex.UNKNOWN
    person_id: UUID = field(default_factory=uuid4)
    tree_id: UUID | None = None
    localized_names: dict[str, str] = field(default_factory=dict)
    birth_date: date | None = None
    birth_precision: DatePrecision = DatePrecision.EXACT
    death_date: date | None = None
    death_precision: DatePrecision = DatePrecision.EXACT
    occupation: str | None = None

    @property
    def is_living(self) -> bool:
        return self.death_date is None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "person_id": str(self.person_id),
            "tree_id": str(self.tree_id) if self.tree_id else None,
            "primary_name": self.primary_name,
            "localized_names": dict(self.localized_names),
            "sex": self.sex.value,
            "birth_date": _iso(self.birth_date),
            "birth_precision": self.birth_precision.value,
            "death_date": _iso(self.death_date),
            "death_precision": self.death_precision.value,
            "occupation": self.occupation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Person:
        """Deserialize from dictionary."""
        return cls(
            person_id=UUID(data["person_id"]) if data.get("person_id") else uuid4(),
            tree_id=UUID(data["tree_id"]) if data.get("tree_id") else None,
            primary_name=data["primary_name"],
            localized_names=data.get("localized_names", {}),
            sex=Sex(data.get("sex", "unknown")),
            birth_date=_date(data.get("birth_date")),
            birth_precision=DatePrecision(data.get("birth_precision", "exact")),
            death_date=_date(data.get("death_date")),
            death_precision=DatePrecision(data.get("death_precision", "exact")),
            occupation=data.get("occupation"),
        )


@dataclass
class ParentChildEdge:
    """Directed parent -> child edge."""
    parent_id: UUID
    child_id: UUID
    kind: ParentChildKind = ParentChildKind.BIOLOGICAL
    edge_id: UUID = field(default_factory=uuid4)
    notes: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_deleted: bool = False
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "edge_id": str(self.edge_id),
            "parent_id": str(self.parent_id),
            "child_id": str(self.child_id),
            "kind": self.kind.value,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "is_deleted": self.is_deleted,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParentChildEdge:
        """Deserialize from dictionary."""
        return cls(
            edge_id=UUID(data["edge_id"]) if data.get("edge_id") else uuid4(),
            parent_id=UUID(data["parent_id"]),
            child_id=UUID(data["child_id"]),
            kind=ParentChildKind(data.get("kind", "biological")),
            notes=data.get("notes"),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now(UTC),
            is_deleted=data.get("is_deleted", False),
            deleted_at=datetime.fromisoformat(data["deleted_at"]) if data.get("deleted_at") else None,
        )


@dataclass
class Union:
    """An undirected grouping of persons, normally a couple."""
    union_id: UUID = field(default_factory=uuid4)
    tree_id: UUID | None = None
    union_type: UnionType = UnionType.MARRIAGE
    start_date: date | None = None
    start_precision: DatePrecision = DatePrecision.EXACT
    end_date: date | None = None
    end_precision: DatePrecision = DatePrecision.EXACT
    notes: str | None = None
    is_deleted: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Union:
        """Deserialize from dictionary."""
        return cls(
            union_id=UUID(data["union_id"]) if data.get("union_id") else uuid4(),
            tree_id=UUID(data["tree_id"]) if data.get("tree_id") else None,
            union_type=UnionType(data.get("union_type", "marriage")),
            start_date=_date(data.get("start_date")),
            start_precision=DatePrecision(data.get("start_precision", "exact")),
            end_date=_date(data.get("end_date")),
            end_precision=DatePrecision(data.get("end_precision", "exact")),
            notes=data.get("notes"),
        )


@dataclass
class UnionMember:
    """Soft-deletable membership of a person in a union."""
    union_id: UUID
    person_id: UUID
    role: str = "spouse"
    member_id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_deleted: bool = False
    deleted_at: datetime | None = None


def parent_term(sex: Sex) -> str:
    if sex is Sex.MALE:
        return "father"
    if sex is Sex.FEMALE:
        return "mother"
    return "parent"


def check_biological_slot(
    candidate: Person,
    parents: list[tuple[ParentChildEdge, Person]],
    error: type[GraphValidationError] = GraphValidationError,
) -> None:
    """Reject a biological parent the child has no room for.

    A child holds at most two biological parents and at most one of each
    sex. Two parents of unknown sex also count as the same sex.
    """
    biological = [p for e, p in parents if e.kind is ParentChildKind.BIOLOGICAL]
    if len(biological) >= MAX_BIOLOGICAL_PARENTS:
        raise error(ValidationReason.MAX_BIOLOGICAL_PARENTS, MAX_PARENTS_MESSAGE)
    if any(p.sex is candidate.sex for p in biological):
        raise error(
            ValidationReason.SAME_SEX_BIOLOGICAL_PARENT,
            f"This person already has a biological {parent_term(candidate.sex)}",
        )


class EdgeStore(ABC):
    """Abstract base class for person and edge storage."""

    @abstractmethod
    def add_person(self, person: Person) -> Person:
        """Add or replace a person record."""
        ...

    @abstractmethod
    def get_person(self, person_id: UUID) -> Person | None:
        """Get a person by ID."""
        ...

    @abstractmethod
    def list_persons(self, tree_id: UUID | None = None) -> list[Person]:
        """List persons, optionally restricted to one tree."""
        ...

    @abstractmethod
    def get_parents(self, child_id: UUID) -> list[tuple[ParentChildEdge, Person]]:
        """Active parent edges of a person with the parent records."""
        ...

    @abstractmethod
    def get_children(self, parent_id: UUID) -> list[tuple[ParentChildEdge, Person]]:
        """Active child edges of a person with the child records."""
        ...

    def has_parents(self, person_id: UUID) -> bool:
        return bool(self.get_parents(person_id))

    def has_children(self, person_id: UUID) -> bool:
        return bool(self.get_children(person_id))

    @abstractmethod
    def get_edge(self, parent_id: UUID, child_id: UUID) -> ParentChildEdge | None:
        """The active edge between two persons, if any."""
        ...

    @abstractmethod
    def insert_edge(self, edge: ParentChildEdge) -> ParentChildEdge:
        """Insert an edge, raising EdgeConstraintError on any invariant breach."""
        ...

    @abstractmethod
    def soft_delete_edge(self, edge_id: UUID) -> ParentChildEdge | None:
        """Mark an edge deleted. Returns None when no active edge matches."""
        ...

    @abstractmethod
    def add_union(self, union: Union) -> Union:
        ...

    @abstractmethod
    def get_union(self, union_id: UUID) -> Union | None:
        ...

    @abstractmethod
    def get_unions_for(self, person_id: UUID) -> list[Union]:
        """Active unions the person is an active member of."""
        ...

    @abstractmethod
    def get_union_members(self, union_id: UUID) -> list[tuple[UnionMember, Person]]:
        ...

    @abstractmethod
    def add_union_member(self, member: UnionMember) -> UnionMember:
        """Add a membership, raising EdgeConstraintError if already a member."""
        ...

    @abstractmethod
    def soft_delete_union_member(self, union_id: UUID, person_id: UUID) -> UnionMember | None:
        ...

    def close(self) -> None:
        """Release any held resources."""
        return None


class InMemoryEdgeStore(EdgeStore):
    """Dictionary-backed store for tests, the CLI and small trees.

    Adjacency is kept as ordered lists of edge IDs per person so that
    neighbour order always matches insertion order. All mutations run
    under one lock, which makes check-then-insert atomic.
    """

    def __init__(self) -> None:
        self._persons: dict[UUID, Person] = {}
        self._edges: dict[UUID, ParentChildEdge] = {}
        self._adj_out: dict[UUID, list[UUID]] = {}  # parent_id -> edge_ids
        self._adj_in: dict[UUID, list[UUID]] = {}   # child_id -> edge_ids
        self._unions: dict[UUID, Union] = {}
        self._members: dict[UUID, list[UnionMember]] = {}  # union_id -> members
        self._person_unions: dict[UUID, list[UUID]] = {}  # person_id -> union_ids
        self._lock = threading.RLock()

    def add_person(self, person: Person) -> Person:
        with self._lock:
            self._persons[person.person_id] = person
            self._adj_out.setdefault(person.person_id, [])
            self._adj_in.setdefault(person.person_id, [])
        return person

    def get_person(self, person_id: UUID) -> Person | None:
        return self._persons.get(person_id)

    def list_persons(self, tree_id: UUID | None = None) -> list[Person]:
        with self._lock:
            return [p for p in self._persons.values() if tree_id is None or p.tree_id == tree_id]

    def _active(self, edge_ids: list[UUID]) -> list[ParentChildEdge]:
        return [self._edges[eid] for eid in edge_ids if not self._edges[eid].is_deleted]

    def get_parents(self, child_id: UUID) -> list[tuple[ParentChildEdge, Person]]:
        with self._lock:
            return [(e, self._persons[e.parent_id]) for e in self._active(self._adj_in.get(child_id, []))]

    def get_children(self, parent_id: UUID) -> list[tuple[ParentChildEdge, Person]]:
        with self._lock:
            return [(e, self._persons[e.child_id]) for e in self._active(self._adj_out.get(parent_id, []))]

    def get_edge(self, parent_id: UUID, child_id: UUID) -> ParentChildEdge | None:
        with self._lock:
            for edge in self._active(self._adj_out.get(parent_id, [])):
                if edge.child_id == child_id:
                    return edge
        return None

    def _reaches(self, start_id: UUID, target_id: UUID) -> bool:
        """True if target is start or one of its descendants."""
        visited = {start_id}
        queue = deque([start_id])
        while queue:
            current = queue.popleft()
            if current == target_id:
                return True
            for edge in self._active(self._adj_out.get(current, [])):
                if edge.child_id not in visited:
                    visited.add(edge.child_id)
                    queue.append(edge.child_id)
        return False

    def insert_edge(self, edge: ParentChildEdge) -> ParentChildEdge:
        with self._lock:
            parent = self._persons.get(edge.parent_id)
            if parent is None:
                raise NotFoundError("person", edge.parent_id)
            if edge.child_id not in self._persons:
                raise NotFoundError("person", edge.child_id)

            if self.get_edge(edge.parent_id, edge.child_id) is not None:
                raise EdgeConstraintError(ValidationReason.DUPLICATE_EDGE, DUPLICATE_EDGE_MESSAGE)
            if self._reaches(edge.child_id, edge.parent_id):
                raise EdgeConstraintError(ValidationReason.CYCLE, CYCLE_MESSAGE)
            if edge.kind is ParentChildKind.BIOLOGICAL:
                check_biological_slot(parent, self.get_parents(edge.child_id), EdgeConstraintError)

            self._edges[edge.edge_id] = edge
            self._adj_out.setdefault(edge.parent_id, []).append(edge.edge_id)
            self._adj_in.setdefault(edge.child_id, []).append(edge.edge_id)
        return edge

    def soft_delete_edge(self, edge_id: UUID) -> ParentChildEdge | None:
        with self._lock:
            edge = self._edges.get(edge_id)
            if edge is None or edge.is_deleted:
                return None
            edge.is_deleted = True
            edge.deleted_at = datetime.now(UTC)
            return edge

    def add_union(self, union: Union) -> Union:
        with self._lock:
            self._unions[union.union_id] = union
            self._members.setdefault(union.union_id, [])
        return union

    def get_union(self, union_id: UUID) -> Union | None:
        union = self._unions.get(union_id)
        if union is None or union.is_deleted:
            return None
        return union

    def get_unions_for(self, person_id: UUID) -> list[Union]:
        with self._lock:
            unions = []
            for union_id in self._person_unions.get(person_id, []):
                union = self.get_union(union_id)
                if union is not None and self._active_member(union_id, person_id) is not None:
                    unions.append(union)
            return unions

    def _active_member(self, union_id: UUID, person_id: UUID) -> UnionMember | None:
        for member in self._members.get(union_id, []):
            if member.person_id == person_id and not member.is_deleted:
                return member
        return None

    def get_union_members(self, union_id: UUID) -> list[tuple[UnionMember, Person]]:
        with self._lock:
            return [
                (m, self._persons[m.person_id])
                for m in self._members.get(union_id, [])
                if not m.is_deleted
            ]

    def add_union_member(self, member: UnionMember) -> UnionMember:
        with self._lock:
            if self.get_union(member.union_id) is None:
                raise NotFoundError("union", member.union_id)
            if member.person_id not in self._persons:
                raise NotFoundError("person", member.person_id)
            if self._active_member(member.union_id, member.person_id) is not None:
                raise EdgeConstraintError(ValidationReason.ALREADY_MEMBER, ALREADY_MEMBER_MESSAGE)

            self._members[member.union_id].append(member)
            union_ids = self._person_unions.setdefault(member.person_id, [])
            if member.union_id not in union_ids:
                union_ids.append(member.union_id)
        return member

    def soft_delete_union_member(self, union_id: UUID, person_id: UUID) -> UnionMember | None:
        with self._lock:
            member = self._active_member(union_id, person_id)
            if member is None:
                return None
            member.is_deleted = True
            member.deleted_at = datetime.now(UTC)
            return member
