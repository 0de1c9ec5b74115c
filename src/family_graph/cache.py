"""Cache for computed tree views.

Entries are partitioned by tree. Any write to a tree drops every entry
for that tree: one new edge changes the pedigree of every descendant and
the descendant view of every ancestor, so per-person invalidation would
leave stale views behind.

Cached values are pydantic models. They are copied on the way in and
on the way out so callers can never mutate a cached view.
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from pydantic import BaseModel

from .config import CONFIG, GraphConfig
from .logging import get_logger
from .models import MutationEvent

logger = get_logger(__name__)

ScopeKey = tuple[UUID | None, str]


class CacheKeyBuilder:
    """Builds cache keys for each read operation.

    Keys keep argument order: a path or relationship from A to B is
    labelled differently from B to A.
    """

    @staticmethod
    def pedigree(person_id: UUID, generations: int) -> str:
        return f"pedigree:{person_id}:{generations}"

    @staticmethod
    def descendants(person_id: UUID, generations: int) -> str:
        return f"descendants:{person_id}:{generations}"

    @staticmethod
    def hourglass(person_id: UUID, generations: int) -> str:
        return f"hourglass:{person_id}:{generations}"

    @staticmethod
    def family_group(person_id: UUID) -> str:
        return f"family:{person_id}"

    @staticmethod
    def relationship(person1_id: UUID, person2_id: UUID) -> str:
        return f"relationship:{person1_id}:{person2_id}"

    @staticmethod
    def path(person1_id: UUID, person2_id: UUID, max_depth: int) -> str:
        return f"path:{person1_id}:{person2_id}:{max_depth}"


class TreeCache(Protocol):
    """Cache consulted by the service before recomputing a view."""

    def get(self, tree_id: UUID | None, key: str) -> BaseModel | None: ...

    def set(self, tree_id: UUID | None, key: str, value: BaseModel) -> None: ...

    def invalidate_tree(self, tree_id: UUID | None) -> int: ...

    def handle_mutation(self, event: MutationEvent) -> None: ...


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0
    size: int = 0


@dataclass
class _Entry:
    value: BaseModel
    expires_at: float

    @property
    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class MemoryTreeCache:
    """Thread-safe in-process LRU cache with a fixed TTL."""

    def __init__(self, ttl_seconds: float | None = None, max_entries: int | None = None, config: GraphConfig = CONFIG) -> None:
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.cache_ttl_seconds
        self.max_entries = max_entries if max_entries is not None else config.cache_max_entries
        self._entries: OrderedDict[ScopeKey, _Entry] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()

    def get(self, tree_id: UUID | None, key: str) -> BaseModel | None:
        with self._lock:
            entry = self._entries.get((tree_id, key))
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.is_expired:
                del self._entries[(tree_id, key)]
                self._stats.misses += 1
                return None
            self._entries.move_to_end((tree_id, key))
            self._stats.hits += 1
            return entry.value.model_copy(deep=True)

    def set(self, tree_id: UUID | None, key: str, value: BaseModel) -> None:
        with self._lock:
            self._entries[(tree_id, key)] = _Entry(
                value=value.model_copy(deep=True),
                expires_at=time.monotonic() + self.ttl_seconds,
            )
            self._entries.move_to_end((tree_id, key))
            while self.max_entries > 0 and len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats.evictions += 1

    def invalidate_tree(self, tree_id: UUID | None) -> int:
        with self._lock:
            stale = [k for k in self._entries if k[0] == tree_id]
            for k in stale:
                del self._entries[k]
            self._stats.invalidations += len(stale)
            return len(stale)

    def handle_mutation(self, event: MutationEvent) -> None:
        removed = self.invalidate_tree(event.tree_id)
        logger.debug(
            "cache.invalidated",
            tree_id=str(event.tree_id),
            mutation=event.mutation_type.value,
            removed=removed,
        )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                invalidations=self._stats.invalidations,
                size=len(self._entries),
            )


class NullTreeCache:
    """No-op cache for when caching is disabled."""

    def get(self, tree_id: UUID | None, key: str) -> BaseModel | None:
        return None

    def set(self, tree_id: UUID | None, key: str, value: BaseModel) -> None:
        return None

    def invalidate_tree(self, tree_id: UUID | None) -> int:
        return 0

    def handle_mutation(self, event: MutationEvent) -> None:
        return None


def build_cache(config: GraphConfig = CONFIG) -> TreeCache:
    if config.cache_enabled:
        return MemoryTreeCache(config=config)
    return NullTreeCache()
