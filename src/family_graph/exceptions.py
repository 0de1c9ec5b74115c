"""Error taxonomy for family graph operations.

"No relationship" and "no path" are not errors; they come back as
successful results with a negative payload. Everything here is a real
failure the caller must handle.
"""
from __future__ import annotations

from enum import Enum
from uuid import UUID


class ValidationReason(str, Enum):
    """Why a proposed graph mutation was rejected."""
    CYCLE = "cycle"
    DUPLICATE_EDGE = "duplicate_edge"
    MAX_BIOLOGICAL_PARENTS = "max_biological_parents"
    SAME_SEX_BIOLOGICAL_PARENT = "same_sex_biological_parent"
    ALREADY_MEMBER = "already_member"
    INVALID_ARGUMENT = "invalid_argument"


class FamilyGraphError(Exception):
    """Base class for all family graph errors."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(FamilyGraphError):
    """A referenced person, union or edge does not exist in scope."""

    code = "not_found"

    def __init__(self, kind: str, entity_id: UUID | str) -> None:
        super().__init__(f"{kind.capitalize()} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class GraphValidationError(FamilyGraphError):
    """A mutation would break a graph invariant. The graph is unchanged."""

    code = "validation"

    def __init__(self, reason: ValidationReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class EdgeConstraintError(GraphValidationError):
    """Raised by a store when its own constraint check rejects an insert.

    This is the storage-level backstop for races between concurrent
    writers that both passed the pre-write validation.
    """


class ForbiddenError(FamilyGraphError):
    """The caller's scope does not allow this operation."""

    code = "forbidden"


class InternalError(FamilyGraphError):
    """Unexpected storage failure."""

    code = "internal"

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class OperationCancelledError(FamilyGraphError):
    """A traversal was abandoned because its cancellation token fired."""

    code = "cancelled"

    def __init__(self, message: str = "Operation was cancelled") -> None:
        super().__init__(message)
