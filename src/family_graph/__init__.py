"""Family graph engine.

Provides:
- Edge store contract with in-memory and SQLite implementations
- Cycle guard enforcing acyclicity and biological-parent rules on write
- Pedigree, descendants and hourglass tree views
- Shortest relationship path search with per-step labels
- Common ancestor resolution and kinship classification
- A service facade with caching and mutation events
"""
from .ancestry import AncestorMatch, CommonAncestorResolver, pivot_from_path
from .cache import CacheKeyBuilder, MemoryTreeCache, NullTreeCache, TreeCache
from .cancellation import CancellationToken
from .config import CONFIG, GraphConfig
from .cycle_guard import CycleGuard
from .exceptions import (
    EdgeConstraintError,
    FamilyGraphError,
    ForbiddenError,
    GraphValidationError,
    InternalError,
    NotFoundError,
    OperationCancelledError,
    ValidationReason,
)
from .hierarchy import HierarchyBuilder
from .kinship import Kinship, KinshipCategory, classify, name_path
from .models import (
    CommonAncestor,
    EdgeKind,
    FamilyGroup,
    MutationEvent,
    PathPersonNode,
    PersonSummary,
    RelationshipPath,
    RelationshipResult,
    SiblingInfo,
    TreeNode,
    UnionChildResult,
    UnionNode,
)
from .path_finder import PathFinder, step_label
from .service import FamilyTreeService, TreeScope
from .sqlite_store import SQLiteEdgeStore
from .store import (
    DatePrecision,
    EdgeStore,
    InMemoryEdgeStore,
    ParentChildEdge,
    ParentChildKind,
    Person,
    Sex,
    Union,
    UnionMember,
    UnionType,
)

__all__ = [
    # Service
    "FamilyTreeService",
    "TreeScope",
    # Store
    "EdgeStore",
    "InMemoryEdgeStore",
    "SQLiteEdgeStore",
    "Person",
    "ParentChildEdge",
    "ParentChildKind",
    "Union",
    "UnionMember",
    "UnionType",
    "Sex",
    "DatePrecision",
    # Algorithms
    "CycleGuard",
    "HierarchyBuilder",
    "PathFinder",
    "step_label",
    "CommonAncestorResolver",
    "AncestorMatch",
    "pivot_from_path",
    "classify",
    "name_path",
    "Kinship",
    "KinshipCategory",
    # Models
    "TreeNode",
    "UnionNode",
    "PersonSummary",
    "FamilyGroup",
    "SiblingInfo",
    "EdgeKind",
    "PathPersonNode",
    "RelationshipPath",
    "RelationshipResult",
    "CommonAncestor",
    "UnionChildResult",
    "MutationEvent",
    # Cache
    "TreeCache",
    "MemoryTreeCache",
    "NullTreeCache",
    "CacheKeyBuilder",
    # Ambient
    "CancellationToken",
    "CONFIG",
    "GraphConfig",
    "FamilyGraphError",
    "NotFoundError",
    "GraphValidationError",
    "EdgeConstraintError",
    "ForbiddenError",
    "InternalError",
    "OperationCancelledError",
    "ValidationReason",
]
