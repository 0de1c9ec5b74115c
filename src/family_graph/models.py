"""Query and result models for family graph traversal.

Provides the shapes returned by the read operations:
- Hierarchical tree nodes for pedigree/descendants/hourglass views
- Family groups and sibling listings
- Relationship paths with per-step labels
- Kinship results with common ancestors

Domain records (Person, ParentChildEdge, Union) live in ``store``; the
models here are computed views and are never persisted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field

from .store import DatePrecision, ParentChildKind, Person, Sex, UnionType


class EdgeKind(str, Enum):
    """Edge kinds followed by the relationship path search.

    The kind is the edge that *reached* a node: PARENT means the node is
    a parent of the previous node in the path.
    """
    PARENT = "parent"
    CHILD = "child"
    SPOUSE = "spouse"


class MutationType(str, Enum):
    EDGE_ADDED = "edge_added"
    EDGE_REMOVED = "edge_removed"
    UNION_CREATED = "union_created"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"


class PersonSummary(BaseModel):
    """Flat view of a person used in every result."""
    person_id: UUID
    name: str
    localized_names: dict[str, str] = Field(default_factory=dict)
    sex: Sex = Sex.UNKNOWN
    birth_date: date | None = None
    birth_precision: DatePrecision = DatePrecision.EXACT
    death_date: date | None = None
    death_precision: DatePrecision = DatePrecision.EXACT
    is_living: bool = True

    @classmethod
    def from_person(cls, person: Person, **extra: Any) -> PersonSummary:
        return cls(
            person_id=person.person_id,
            name=person.primary_name,
            localized_names=dict(person.localized_names),
            sex=person.sex,
            birth_date=person.birth_date,
            birth_precision=person.birth_precision,
            death_date=person.death_date,
            death_precision=person.death_precision,
            is_living=person.is_living,
            **extra,
        )

    @property
    def display_name(self) -> str:
        return self.localized_names.get("en") or self.name


class UnionNode(BaseModel):
    """A union attached to a tree node. Partners exclude the node itself."""
    union_id: UUID
    union_type: UnionType
    start_date: date | None = None
    start_precision: DatePrecision = DatePrecision.EXACT
    end_date: date | None = None
    end_precision: DatePrecision = DatePrecision.EXACT
    partners: list[PersonSummary] = Field(default_factory=list)


class TreeNode(PersonSummary):
    """A node in a pedigree, descendants or hourglass tree.

    ``has_more_ancestors`` / ``has_more_descendants`` are only ever set on
    boundary nodes, where the build stopped but further edges exist.
    """
    parents: list[TreeNode] = Field(default_factory=list)
    children: list[TreeNode] = Field(default_factory=list)
    unions: list[UnionNode] = Field(default_factory=list)
    has_more_ancestors: bool = False
    has_more_descendants: bool = False

    def walk(self):
        """Yield every node reachable through parents and children, depth first."""
        yield self
        for parent in self.parents:
            yield from parent.walk()
        for child in self.children:
            yield from child.walk()

    def depth(self, direction: str = "parents") -> int:
        """Number of generations below this node in one direction."""
        branches = self.parents if direction == "parents" else self.children
        if not branches:
            return 0
        return 1 + max(b.depth(direction) for b in branches)


class SpouseInfo(BaseModel):
    person: PersonSummary
    union_id: UUID
    union_type: UnionType
    start_date: date | None = None
    end_date: date | None = None


class FamilyGroup(BaseModel):
    """A person with their parents, spouses and children."""
    person: PersonSummary
    parents: list[PersonSummary] = Field(default_factory=list)
    spouses: list[SpouseInfo] = Field(default_factory=list)
    children: list[PersonSummary] = Field(default_factory=list)


class SiblingInfo(BaseModel):
    person: PersonSummary
    shared_parent_ids: list[UUID] = Field(default_factory=list)
    is_full_sibling: bool = False

    @computed_field
    @property
    def is_half_sibling(self) -> bool:
        return not self.is_full_sibling


class RootPersonSummary(BaseModel):
    """A founding ancestor with no recorded parents."""
    person: PersonSummary
    child_count: int = 0
    descendant_count: int = 0
    generation_depth: int = 0


class RootPersonsResult(BaseModel):
    tree_id: UUID | None = None
    roots: list[RootPersonSummary] = Field(default_factory=list)
    total_roots: int = 0


class PathPersonNode(PersonSummary):
    """A person on a relationship path.

    ``edge_to_next`` / ``relationship_to_next`` describe the step to the
    following node and are None on the last node.
    """
    edge_to_next: EdgeKind | None = None
    relationship_to_next: str | None = None


class CommonAncestor(BaseModel):
    person: PersonSummary
    generations_from_person1: int = Field(ge=0)
    generations_from_person2: int = Field(ge=0)


class RelationshipPath(BaseModel):
    """Result of a shortest relationship path search.

    A missing path is a successful result with ``path_found`` False.
    ``common_ancestors`` comes from the path pivot only: it is empty for
    paths that never climb then descend (spouse chains, direct lines).
    """
    person1_id: UUID
    person2_id: UUID
    path_found: bool
    path: list[PathPersonNode] = Field(default_factory=list)
    relationship_key: str | None = None
    relationship_label: str
    description: str | None = None
    common_ancestors: list[CommonAncestor] = Field(default_factory=list)
    message: str | None = None

    @computed_field
    @property
    def path_length(self) -> int:
        return max(len(self.path) - 1, 0)

    @computed_field
    @property
    def has_common_ancestor(self) -> bool:
        return bool(self.common_ancestors)


class RelationshipResult(BaseModel):
    """Kinship between two persons from their nearest common ancestor."""
    person1_id: UUID
    person2_id: UUID
    relationship_type: str
    description: str
    category: str | None = None
    generations_from_person1: int | None = None
    generations_from_person2: int | None = None
    common_ancestors: list[CommonAncestor] = Field(default_factory=list)

    @computed_field
    @property
    def has_common_ancestor(self) -> bool:
        return bool(self.common_ancestors)


class UnionChildResult(BaseModel):
    """Outcome of attaching a child to every member of a union."""
    union_id: UUID
    child_id: UUID
    created: list[UUID] = Field(default_factory=list, description="Parent IDs that gained an edge")
    skipped: dict[UUID, str] = Field(default_factory=dict, description="Parent ID -> rejection message")


class HierarchyQuery(BaseModel):
    """Query for a pedigree, descendants or hourglass tree."""
    person_id: UUID
    generations: int = Field(default=4, ge=0)


class PathQuery(BaseModel):
    """Query for a relationship path between two persons."""
    person1_id: UUID
    person2_id: UUID
    max_depth: int = Field(default=20, ge=1, le=100)


class ParentChildRequest(BaseModel):
    parent_id: UUID
    child_id: UUID
    kind: ParentChildKind = ParentChildKind.BIOLOGICAL
    notes: str | None = Field(default=None, max_length=2000)


@dataclass
class MutationEvent:
    """Published after every successful graph write."""
    mutation_type: MutationType
    tree_id: UUID | None
    person_ids: list[UUID] = field(default_factory=list)
    union_id: UUID | None = None
    event_id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "event_id": str(self.event_id),
            "mutation_type": self.mutation_type.value,
            "tree_id": str(self.tree_id) if self.tree_id else None,
            "person_ids": [str(p) for p in self.person_ids],
            "union_id": str(self.union_id) if self.union_id else None,
            "timestamp": self.timestamp.isoformat(),
        }


TreeNode.model_rebuild()
