"""
TTL snapshot cache with single-flight recomputation.

Every externally visible read (wallet fumble results, leaderboard snapshots,
raw price histories) goes through one ``SnapshotCache`` instance injected
into the components that need it.

Concurrency policy: callers that miss on a key that is already being
computed await the in-flight computation instead of starting another one.
Stale values are never served. Reads are plain dict lookups against the last
committed value; only the in-flight leader for a key writes it.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .redis_client import RedisClient

logger = logging.getLogger(__name__)

# Distinguishes a miss from a cached None
_MISSING = object()


@dataclass(frozen=True)
class _Entry:
    value: Any
    expires_at: float


class SnapshotCache:
    """
    In-process TTL cache with optional Redis mirroring.

    Usage:
        cache = SnapshotCache(default_ttl=300)
        result = await cache.get_or_compute("fumbles:0xabc:weekly", compute)
        cache.invalidate_prefix("fumbles:0xabc:")
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        max_entries: int = 5000,
        store: Optional[RedisClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: TTL in seconds when a call does not pass one
            max_entries: Capacity before oldest entries are evicted
            store: Optional shared key-value store mirrored as JSON
            clock: Monotonic time source (injectable for tests)
        """
        self.default_ttl = default_ttl
        self.max_entries = max(1, max_entries)
        self.store = store
        self._clock = clock

        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Future] = {}
        # Keyed by task: after invalidation an old and a new task can share a key
        self._waiters: Dict[asyncio.Future, int] = {}
        self._generation: Dict[str, int] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "store_hits": 0,
            "computations": 0,
            "coalesced": 0,
            "evictions": 0,
            "invalidations": 0,
        }

    # ------------------------------------------------------------------
    # Plain reads/writes
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Last committed value for ``key`` or ``default`` if missing/expired."""
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._clock() >= entry.expires_at:
            self._entries.pop(key, None)
            return default
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """Commit ``value`` under ``key`` (and mirror it when a store is attached)."""
        ttl = self.default_ttl if ttl is None else ttl
        self._commit(key, value, ttl)
        if self.store is not None and hasattr(value, "to_dict"):
            self.store.set_json(key, value.to_dict(), ttl)

    def _commit(self, key: str, value: Any, ttl: float):
        self._entries.pop(key, None)
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)
        self._evict()

    def _evict(self):
        if len(self._entries) <= self.max_entries:
            return
        now = self._clock()
        for k in [k for k, e in self._entries.items() if now >= e.expires_at]:
            del self._entries[k]
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._stats["evictions"] += 1

    def invalidate(self, key: str):
        """Drop ``key`` locally and in the store; an in-flight result for it is discarded."""
        self._entries.pop(key, None)
        self._bump_generation(key)
        if self.store is not None:
            self.store.delete(key)
        self._stats["invalidations"] += 1

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``; returns the number of local entries removed."""
        keys = [k for k in self._entries if k.startswith(prefix)]
        for k in keys:
            del self._entries[k]
        for k in [k for k in self._inflight if k.startswith(prefix)]:
            self._bump_generation(k)
        if self.store is not None:
            self.store.delete_prefix(prefix)
        self._stats["invalidations"] += len(keys)
        return len(keys)

    def clear(self):
        self._entries.clear()
        for k in list(self._inflight):
            self._bump_generation(k)
        if self.store is not None:
            self.store.clear()

    def _bump_generation(self, key: str):
        self._generation[key] = self._generation.get(key, 0) + 1
        # Next caller starts a fresh computation; the old one can no longer commit
        self._inflight.pop(key, None)

    def stats(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        lookups = stats["hits"] + stats["misses"]
        stats["hit_rate"] = stats["hits"] / lookups if lookups else 0.0
        stats["entries"] = len(self._entries)
        stats["inflight"] = len(self._inflight)
        return stats

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Single-flight
    # ------------------------------------------------------------------

    async def get_or_compute(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        loader: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> Any:
        """
        Return the cached value for ``key`` or compute it exactly once.

        Args:
            key: Cache key
            factory: Zero-arg coroutine function producing the value
            ttl: TTL for the computed value (defaults to ``default_ttl``)
            loader: Rebuilds a value from its mirrored JSON form on a local miss

        Raises:
            Whatever ``factory`` raised; failures are not cached.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            self._stats["hits"] += 1
            logger.debug(f"Cache hit: {key}")
            return value

        if loader is not None and self.store is not None:
            value = self._load_from_store(key, loader, ttl)
            if value is not None:
                self._stats["store_hits"] += 1
                return value

        self._stats["misses"] += 1
        task = self._inflight.get(key)
        if task is None:
            self._stats["computations"] += 1
            logger.debug(f"Cache miss, computing: {key}")
            generation = self._generation.get(key, 0)
            task = asyncio.ensure_future(self._compute(key, factory, ttl, generation))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._finish(k, t))
        else:
            self._stats["coalesced"] += 1
            logger.debug(f"Awaiting in-flight computation: {key}")

        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        finally:
            remaining = self._waiters.get(task, 1) - 1
            if remaining > 0:
                self._waiters[task] = remaining
            else:
                self._waiters.pop(task, None)
                # Last interested caller went away (cancelled): stop the work
                if not task.done():
                    task.cancel()

    async def _compute(self, key: str, factory: Callable[[], Awaitable[Any]], ttl: Optional[float], generation: int) -> Any:
        value = await factory()
        if self._generation.get(key, 0) == generation:
            self.set(key, value, ttl)
        else:
            logger.debug(f"Discarding result for invalidated key: {key}")
        return value

    def _finish(self, key: str, task: asyncio.Future):
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Computation failed for {key}: {task.exception()!r}")

    def _load_from_store(self, key: str, loader: Callable[[Dict[str, Any]], Any], ttl: Optional[float]) -> Optional[Any]:
        data = self.store.get_json(key)
        if data is None:
            return None
        try:
            value = loader(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed mirrored entry {key}: {e}")
            self.store.delete(key)
            return None
        remaining = self.store.ttl_remaining(key)
        self._commit(key, value, remaining if remaining else (self.default_ttl if ttl is None else ttl))
        return value
