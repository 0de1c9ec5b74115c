from __future__ import annotations

import os
from dataclasses import dataclass


def _i(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _b(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _s(name: str, default: str) -> str:
    return os.getenv(name, default)


@dataclass(frozen=True)
class GraphConfig:
    # Default generation depths per view
    pedigree_generations: int = _i("FAMILY_GRAPH_PEDIGREE_GENERATIONS", 4)
    descendant_generations: int = _i("FAMILY_GRAPH_DESCENDANT_GENERATIONS", 4)
    hourglass_generations: int = _i("FAMILY_GRAPH_HOURGLASS_GENERATIONS", 3)
    max_generations: int = _i("FAMILY_GRAPH_MAX_GENERATIONS", 10)

    # Relationship path search
    max_search_depth: int = _i("FAMILY_GRAPH_MAX_SEARCH_DEPTH", 20)

    # Root person discovery
    max_root_persons: int = _i("FAMILY_GRAPH_MAX_ROOT_PERSONS", 50)
    max_descendant_depth: int = _i("FAMILY_GRAPH_MAX_DESCENDANT_DEPTH", 50)

    # Tree view cache
    cache_enabled: bool = _b("FAMILY_GRAPH_CACHE_ENABLED", True)
    cache_ttl_seconds: int = _i("FAMILY_GRAPH_CACHE_TTL", 3600)
    cache_max_entries: int = _i("FAMILY_GRAPH_CACHE_MAX_ENTRIES", 1024)

    log_level: str = _s("FAMILY_GRAPH_LOG_LEVEL", "INFO").upper()


CONFIG = GraphConfig()
