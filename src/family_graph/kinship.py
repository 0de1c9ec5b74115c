"""Kinship classification and relationship naming.

Two entry points:

- ``classify(gen1, gen2)`` maps generation distances to a common
  ancestor onto a kinship label. The label describes person 1's role
  towards person 2: ``classify(0, 1)`` is "Parent" because person 1 *is*
  the common ancestor, one generation above person 2.
- ``name_path(kinds, person1, person2)`` names the relationship along an
  already-found path, with gendered terms for person 2 ("Bob is Ann's
  nephew"). This matches the per-step labels, which also describe the
  later node relative to the earlier one.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import assert_never

from .exceptions import GraphValidationError, ValidationReason
from .models import EdgeKind, PersonSummary
from .store import Sex

NO_BLOOD_RELATION_LABEL = "No blood relation found"
NO_BLOOD_RELATION_DESCRIPTION = "These individuals do not share any common ancestors in the tree."
SAME_PERSON_LABEL = "Same person"


class KinshipCategory(str, Enum):
    SAME_PERSON = "same_person"
    ANCESTOR = "ancestor"
    DESCENDANT = "descendant"
    SIBLING = "sibling"
    AUNT_UNCLE = "aunt_uncle"
    NIECE_NEPHEW = "niece_nephew"
    COUSIN = "cousin"


@dataclass(frozen=True)
class Kinship:
    """Classification of a pair by generation distance."""
    category: KinshipCategory
    label: str
    description: str
    generations_from_person1: int
    generations_from_person2: int
    cousin_degree: int | None = None
    removed: int = 0


@dataclass(frozen=True)
class RelationshipName:
    """Name of the relationship along a path. ``key`` is a stable i18n key."""
    key: str
    label: str
    description: str


def ordinal(n: int) -> str:
    """First, Second, Third, then 4th, 5th ... 11th, 21st, 22nd."""
    words = {1: "First", 2: "Second", 3: "Third"}
    if n in words:
        return words[n]
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _ladder(distance: int, one: str, two: str, three: str, many: str) -> str:
    if distance == 1:
        return one
    if distance == 2:
        return two
    if distance == 3:
        return three
    return f"{distance - 2}× {many}"


def classify(gen1: int, gen2: int) -> Kinship:
    """Classify two persons by their distances to a common ancestor.

    Args:
        gen1: Generations from person 1 up to the common ancestor
        gen2: Generations from person 2 up to the common ancestor

    Returns:
        Kinship describing person 1's role towards person 2
    """
    if gen1 < 0 or gen2 < 0:
        raise GraphValidationError(
            ValidationReason.INVALID_ARGUMENT,
            f"Generation distances must be non-negative, got ({gen1}, {gen2})",
        )

    def result(category: KinshipCategory, label: str, description: str | None = None, **extra) -> Kinship:
        return Kinship(category, label, description or label, gen1, gen2, **extra)

    if gen1 == 0 and gen2 == 0:
        return result(KinshipCategory.SAME_PERSON, SAME_PERSON_LABEL)

    if gen1 == 0:
        label = _ladder(gen2, "Parent", "Grandparent", "Great-grandparent", "great-grandparent")
        return result(KinshipCategory.ANCESTOR, label)

    if gen2 == 0:
        label = _ladder(gen1, "Child", "Grandchild", "Great-grandchild", "great-grandchild")
        return result(KinshipCategory.DESCENDANT, label)

    if gen1 == 1 and gen2 == 1:
        return result(KinshipCategory.SIBLING, "Sibling")

    if gen1 == 1:
        label = _ladder(gen2, "", "Aunt/Uncle", "Great-Aunt/Uncle", "great-aunt/uncle")
        description = {2: "Aunt or Uncle", 3: "Great-Aunt or Great-Uncle"}.get(gen2, label)
        return result(KinshipCategory.AUNT_UNCLE, label, description)

    if gen2 == 1:
        label = _ladder(gen1, "", "Niece/Nephew", "Great-Niece/Nephew", "great-niece/nephew")
        description = {2: "Niece or Nephew", 3: "Great-Niece or Great-Nephew"}.get(gen1, label)
        return result(KinshipCategory.NIECE_NEPHEW, label, description)

    degree = min(gen1, gen2) - 1
    removed = abs(gen1 - gen2)
    label = f"{ordinal(degree)} cousin"
    if removed > 0:
        label = f"{label}, {removed}× removed"
    return result(KinshipCategory.COUSIN, label, cousin_degree=degree, removed=removed)


# ---- path naming ----

_GENDERED_TERMS: dict[str, tuple[str, str, str]] = {
    # base: (male, female, unknown)
    "parent": ("father", "mother", "parent"),
    "child": ("son", "daughter", "child"),
    "grandparent": ("grandfather", "grandmother", "grandparent"),
    "grandchild": ("grandson", "granddaughter", "grandchild"),
    "sibling": ("brother", "sister", "sibling"),
    "pibling": ("uncle", "aunt", "aunt/uncle"),
    "nibling": ("nephew", "niece", "niece/nephew"),
    "spouse": ("husband", "wife", "spouse"),
    "parent_in_law": ("father-in-law", "mother-in-law", "parent-in-law"),
    "child_in_law": ("son-in-law", "daughter-in-law", "child-in-law"),
    "sibling_in_law": ("brother-in-law", "sister-in-law", "sibling-in-law"),
    "step_parent": ("stepfather", "stepmother", "step-parent"),
    "step_child": ("stepson", "stepdaughter", "stepchild"),
}


def gendered_term(base: str, sex: Sex) -> str:
    male, female, unknown = _GENDERED_TERMS[base]
    if sex is Sex.MALE:
        return male
    if sex is Sex.FEMALE:
        return female
    return unknown


def great_prefix(count: int) -> str:
    if count <= 0:
        return ""
    if count == 1:
        return "great-"
    if count == 2:
        return "great-great-"
    return f"{count}× great-"


@dataclass
class PathShape:
    """Up/down/spouse structure of a relationship path."""
    up: int = 0
    down: int = 0
    spouse_edges: int = 0
    edges: int = 0
    ascends_after_descent: bool = False
    spouse_first: bool = False
    spouse_last: bool = False

    @property
    def blood_only(self) -> bool:
        return self.spouse_edges == 0


def analyze_path(kinds: list[EdgeKind | None]) -> PathShape:
    """Count climbs and descents along a path.

    ``kinds[0]`` belongs to the source node and is ignored.
    """
    shape = PathShape(edges=max(len(kinds) - 1, 0))
    descending = False
    for kind in kinds[1:]:
        if kind is None:
            continue
        if kind is EdgeKind.SPOUSE:
            shape.spouse_edges += 1
        elif kind is EdgeKind.PARENT:
            if descending:
                shape.ascends_after_descent = True
            else:
                shape.up += 1
        elif kind is EdgeKind.CHILD:
            descending = True
            shape.down += 1
        else:
            assert_never(kind)
    if shape.edges:
        shape.spouse_first = kinds[1] is EdgeKind.SPOUSE
        shape.spouse_last = kinds[-1] is EdgeKind.SPOUSE
    return shape


def name_path(
    kinds: list[EdgeKind | None],
    person1: PersonSummary,
    person2: PersonSummary,
) -> RelationshipName:
    """Name person 2's relationship to person 1 from the path between them."""
    name1, name2 = person1.display_name, person2.display_name

    def named(key: str, term: str) -> RelationshipName:
        return RelationshipName(f"relationship.{key}", term, f"{name2} is {name1}'s {term}")

    if len(kinds) <= 1:
        return RelationshipName("relationship.samePerson", SAME_PERSON_LABEL, SAME_PERSON_LABEL)

    shape = analyze_path(kinds)

    if shape.edges == 1 and shape.spouse_edges == 1:
        term = gendered_term("spouse", person2.sex)
        return RelationshipName("relationship.spouse", term, f"{name1} is married to {name2}")

    if shape.ascends_after_descent:
        # Two people linked only through a shared descendant
        return RelationshipName(
            "relationship.relatedThroughDescendant",
            "relative",
            f"{name2} and {name1} share a descendant",
        )

    if not shape.blood_only:
        return _name_in_law(shape, person2, named, name1, name2)

    if shape.up == 0 or shape.down == 0:
        return _name_direct_line(shape, person2, named)

    if shape.up == 1 and shape.down == 1:
        term = gendered_term("sibling", person2.sex)
        return named(term, term)

    return _name_collateral(shape, person2, named)


def _name_direct_line(shape: PathShape, person2: PersonSummary, named) -> RelationshipName:
    if shape.up > 0:
        generations, near, far = shape.up, "parent", "grandparent"
    else:
        generations, near, far = shape.down, "child", "grandchild"

    if generations == 1:
        term = gendered_term(near, person2.sex)
        return named(term, term)
    base = gendered_term(far, person2.sex)
    term = f"{great_prefix(generations - 2)}{base}"
    return named(f"{base}{generations - 2}" if generations > 2 else base, term)


def _name_collateral(shape: PathShape, person2: PersonSummary, named) -> RelationshipName:
    # person2 sits ``down`` generations below the ancestor, person1 sits ``up``
    if shape.up == 1:
        greats = shape.down - 2
        base = gendered_term("nibling", person2.sex)
        return named(f"nibling{greats}", f"{great_prefix(greats)}{base}")

    if shape.down == 1:
        greats = shape.up - 2
        base = gendered_term("pibling", person2.sex)
        return named(f"pibling{greats}", f"{great_prefix(greats)}{base}")

    degree = min(shape.up, shape.down) - 1
    removed = abs(shape.up - shape.down)
    term = f"{ordinal(degree).lower()} cousin"
    key = f"cousin{degree}"
    if removed:
        term += f", {removed} time{'s' if removed > 1 else ''} removed"
        key += f"x{removed}removed"
    return named(key, term)


def _name_in_law(shape: PathShape, person2: PersonSummary, named, name1: str, name2: str) -> RelationshipName:
    if shape.spouse_edges == 1:
        if shape.up == 1 and shape.down == 0:
            base = "parent_in_law" if shape.spouse_first else "step_parent"
            return named(base, gendered_term(base, person2.sex))
        if shape.up == 0 and shape.down == 1:
            base = "step_child" if shape.spouse_first else "child_in_law"
            return named(base, gendered_term(base, person2.sex))
        if shape.up == 1 and shape.down == 1 and (shape.spouse_first or shape.spouse_last):
            return named("sibling_in_law", gendered_term("sibling_in_law", person2.sex))

    return RelationshipName(
        "relationship.relatedByMarriage",
        "related by marriage",
        f"{name2} is related to {name1} by marriage",
    )
