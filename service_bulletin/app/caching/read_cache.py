"""
Process-local read cache with single-flight loading.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Tuple, Union, TYPE_CHECKING

from shared.logging import get_logger
from .keys import normalize_tags

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


Loader = Callable[[], Union[Any, Awaitable[Any]]]


class CacheMode(str, Enum):
    """Lifetime of cached entries."""
    PER_CYCLE = "per_cycle"
    UNTIL_INVALIDATED = "until_invalidated"


@dataclass(frozen=True)
class CacheEntry:
    """A memoized read result."""
    key: str
    value: Any
    created_at: float
    scope_tags: FrozenSet[str]

    def age(self, now: float) -> float:
        return now - self.created_at


class ReadCache:
    """Memoizes read results by query key.

    A hit is served only from a fresh entry. On a miss the loader runs once
    per key no matter how many callers are waiting: later callers join the
    in-flight load. Failed loads are never stored.

    Entries leave the cache when a matching tag is invalidated, when they
    outlive ``ttl_seconds`` (if set), or at cycle end in ``PER_CYCLE`` mode.
    """

    def __init__(
        self,
        name: str = "read_cache",
        mode: Union[CacheMode, str] = CacheMode.UNTIL_INVALIDATED,
        ttl_seconds: Optional[float] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.name = name
        self.mode = CacheMode(mode)
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("bulletin.cache.read")
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, Tuple["asyncio.Task", FrozenSet[str]]] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "loads": 0,
            "shared_loads": 0,
            "failed_loads": 0,
            "discarded_loads": 0,
            "expired": 0,
            "invalidated": 0,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._is_fresh(entry)

    async def get(self, key: str, scope_tags: Iterable[str], loader: Loader) -> Any:
        """Return the cached value for ``key`` or load, store and return it."""
        tags = normalize_tags(scope_tags)

        entry = self._entries.get(key)
        if entry is not None:
            if self._is_fresh(entry):
                self._stats["hits"] += 1
                self._count("cache_hits_total")
                self.logger.debug("Cache hit", cache=self.name, key=key)
                return entry.value

            del self._entries[key]
            self._stats["expired"] += 1
            self._update_size()
            self.logger.debug("Cache entry expired", cache=self.name, key=key, ttl=self.ttl_seconds)

        inflight = self._inflight.get(key)
        if inflight is not None:
            self._stats["shared_loads"] += 1
            self._count("cache_shared_loads_total")
            self.logger.debug("Joining in-flight load", cache=self.name, key=key)
            return await asyncio.shield(inflight[0])

        self._stats["misses"] += 1
        self._count("cache_misses_total")
        self.logger.debug("Cache miss", cache=self.name, key=key, tags=sorted(tags))

        task = asyncio.ensure_future(self._run_loader(loader))
        self._inflight[key] = (task, tags)
        started = time.perf_counter()
        task.add_done_callback(lambda done: self._finish_load(key, tags, done, started))

        # Shielded so a caller that gives up does not cancel a load others share.
        return await asyncio.shield(task)

    def mark_stale(self, matches: Callable[[str], bool]) -> int:
        """Drop every entry with a tag accepted by ``matches``.

        Loads in flight for matching tags are detached: their callers still
        receive the value, but it is not stored and new callers load again.
        Returns the number of entries dropped.
        """
        stale_keys = [
            key for key, entry in self._entries.items()
            if any(matches(tag) for tag in entry.scope_tags)
        ]
        for key in stale_keys:
            del self._entries[key]

        detached = [
            key for key, (_, tags) in self._inflight.items()
            if any(matches(tag) for tag in tags)
        ]
        for key in detached:
            del self._inflight[key]

        self._stats["invalidated"] += len(stale_keys)
        self._update_size()
        return len(stale_keys)

    def clear(self) -> int:
        """Drop all entries and detach all in-flight loads."""
        dropped = len(self._entries)
        self._entries.clear()
        self._inflight.clear()
        self._update_size()
        return dropped

    def end_cycle(self) -> None:
        """Close a request cycle; per-cycle caches forget everything."""
        if self.mode is CacheMode.PER_CYCLE:
            dropped = self.clear()
            self.logger.debug("Cleared per-cycle cache", cache=self.name, dropped=dropped)

    def tags(self) -> FrozenSet[str]:
        """All tags carried by live entries."""
        return frozenset(tag for entry in self._entries.values() for tag in entry.scope_tags)

    def stats(self) -> Dict[str, Any]:
        """Counters plus current size."""
        return {
            "name": self.name,
            "mode": self.mode.value,
            "ttl_seconds": self.ttl_seconds,
            "size": len(self._entries),
            "in_flight": len(self._inflight),
            **self._stats,
        }

    @staticmethod
    async def _run_loader(loader: Loader) -> Any:
        result = loader()
        if inspect.isawaitable(result):
            result = await result
        return result

    def _finish_load(self, key: str, tags: FrozenSet[str], task: "asyncio.Task", started: float) -> None:
        current = self._inflight.get(key)
        is_current = current is not None and current[0] is task
        if is_current:
            del self._inflight[key]

        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            self._stats["failed_loads"] += 1
            self.logger.warning("Cache load failed", cache=self.name, key=key, error=str(error))
            return

        self._stats["loads"] += 1
        if self.metrics:
            self.metrics.observe_histogram(
                "cache_load_duration_seconds", time.perf_counter() - started, cache=self.name
            )

        if not is_current:
            self._stats["discarded_loads"] += 1
            self.logger.debug("Discarding load invalidated in flight", cache=self.name, key=key)
            return

        self._entries[key] = CacheEntry(
            key=key,
            value=task.result(),
            created_at=self._clock(),
            scope_tags=tags,
        )
        self._update_size()

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if self.ttl_seconds is None:
            return True
        return entry.age(self._clock()) < self.ttl_seconds

    def _count(self, metric_name: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, cache=self.name)

    def _update_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self._entries), cache=self.name)
