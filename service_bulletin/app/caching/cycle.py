"""
Request cycles: the explicit unit of read memoization.

A cycle is opened per HTTP request and closed once the response is built.
Reads made through a cycle are pinned for its lifetime, so two reads of one
key inside a request always observe the same object even when another
request mutates the store in between. The cycle's own mutations drop its
pins for the scopes they invalidate, so a request reads its own writes.
"""

import uuid
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Tuple, Union, TYPE_CHECKING

from shared.logging import get_logger
from .invalidation import Granularity, InvalidationController, tag_matcher
from .keys import normalize_tags
from .read_cache import CacheMode, Loader, ReadCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class CacheCycle:
    """One request's view of the read cache."""

    def __init__(
        self,
        cache: ReadCache,
        controller: InvalidationController,
        *,
        owns_cache: bool = False,
        cycle_id: Optional[str] = None,
    ):
        self.cache = cache
        self.controller = controller
        self.owns_cache = owns_cache
        self.cycle_id = cycle_id or uuid.uuid4().hex[:12]
        self.closed = False
        self.logger = get_logger("bulletin.cache.cycle")
        self._pinned: Dict[str, Tuple[Any, FrozenSet[str]]] = {}

    async def __aenter__(self) -> "CacheCycle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def get(self, key: str, scope_tags: Iterable[str], loader: Loader) -> Any:
        """Read through the cache, pinning the value for the rest of the cycle."""
        if self.closed:
            raise RuntimeError(f"Cache cycle {self.cycle_id} is closed")

        pinned = self._pinned.get(key)
        if pinned is not None:
            return pinned[0]

        tags = normalize_tags(scope_tags)
        value = await self.cache.get(key, tags, loader)
        self._pinned[key] = (value, tags)
        return value

    def on_mutation_success(
        self,
        tags: Iterable[str],
        granularity: Union[Granularity, str] = Granularity.EXACT,
    ) -> int:
        """Invalidate ``tags`` everywhere and forget this cycle's pinned reads of them."""
        tags = normalize_tags(tags)
        dropped = self.controller.on_mutation_success(tags, granularity)

        for tag in tags:
            matches = tag_matcher(tag, granularity)
            if self.owns_cache:
                dropped += self.cache.mark_stale(matches)
            for key in [k for k, (_, pin_tags) in self._pinned.items() if any(matches(t) for t in pin_tags)]:
                del self._pinned[key]

        return dropped

    async def run_mutation(
        self,
        mutate: Callable[[], Awaitable[Any]],
        tags: Iterable[str] = (),
        subtree_tags: Iterable[str] = (),
    ) -> Any:
        """Await ``mutate``; on success invalidate ``tags`` exactly and ``subtree_tags`` as subtrees."""
        tags = normalize_tags(tags)
        subtree_tags = normalize_tags(subtree_tags)
        result = await mutate()
        self.on_mutation_success(tags, Granularity.EXACT)
        self.on_mutation_success(subtree_tags, Granularity.SUBTREE)
        return result

    def close(self) -> None:
        """End the cycle. Per-cycle caches are cleared unconditionally."""
        if self.closed:
            return
        self.closed = True
        self._pinned.clear()
        self.cache.end_cycle()
        self.logger.debug("Closed cache cycle", cycle_id=self.cycle_id)


class CacheCycleFactory:
    """Opens cycles over either a private or a shared read cache.

    ``PER_CYCLE`` gives every cycle its own cache that dies with it.
    ``UNTIL_INVALIDATED`` shares one cache, registered with the controller,
    across cycles until a mutation invalidates its entries.
    """

    def __init__(
        self,
        controller: Optional[InvalidationController] = None,
        mode: Union[CacheMode, str] = CacheMode.UNTIL_INVALIDATED,
        ttl_seconds: Optional[float] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        name: str = "bulletin",
    ):
        self.mode = CacheMode(mode)
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.name = name
        self.controller = controller or InvalidationController(metrics=metrics)
        self.logger = get_logger("bulletin.cache.cycle")
        self.shared_cache: Optional[ReadCache] = None
        self._opened = 0

        if self.mode is CacheMode.UNTIL_INVALIDATED:
            self.shared_cache = ReadCache(name, self.mode, ttl_seconds, metrics=metrics)
            self.controller.register(self.shared_cache)

    def open(self, cycle_id: Optional[str] = None) -> CacheCycle:
        """Start a new cycle."""
        self._opened += 1
        if self.shared_cache is not None:
            return CacheCycle(self.shared_cache, self.controller, cycle_id=cycle_id)

        private = ReadCache(f"{self.name}.cycle", self.mode, self.ttl_seconds, metrics=self.metrics)
        return CacheCycle(private, self.controller, owns_cache=True, cycle_id=cycle_id)

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "mode": self.mode.value,
            "ttl_seconds": self.ttl_seconds,
            "cycles_opened": self._opened,
        }
        if self.shared_cache is not None:
            stats["shared_cache"] = self.shared_cache.stats()
        return stats
