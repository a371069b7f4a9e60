"""
Invalidation controller fired by successful mutations.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union, TYPE_CHECKING

from shared.logging import get_logger
from .keys import is_within_scope, normalize_tags
from .read_cache import ReadCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class Granularity(str, Enum):
    """How far an invalidation reaches."""
    EXACT = "exact"
    SUBTREE = "subtree"


def tag_matcher(tag: str, granularity: Union[Granularity, str]) -> Callable[[str], bool]:
    """Predicate accepting the tags an invalidation of ``tag`` covers."""
    if Granularity(granularity) is Granularity.SUBTREE:
        return lambda candidate: is_within_scope(candidate, tag)
    return lambda candidate: candidate == tag


class InvalidationController:
    """Marks cache scopes stale after a mutation has been persisted.

    Invalidating an unknown or already-stale tag is a silent no-op.
    """

    def __init__(self, *caches: ReadCache, metrics: Optional["MetricsCollector"] = None):
        self.logger = get_logger("bulletin.cache.invalidation")
        self.metrics = metrics
        self._caches: List[ReadCache] = list(caches)

    def register(self, cache: ReadCache) -> None:
        """Start sending invalidations to ``cache``."""
        if not any(existing is cache for existing in self._caches):
            self._caches.append(cache)

    def unregister(self, cache: ReadCache) -> None:
        """Stop sending invalidations to ``cache``."""
        self._caches = [existing for existing in self._caches if existing is not cache]

    @property
    def caches(self) -> List[ReadCache]:
        return list(self._caches)

    def invalidate(self, tag: str, granularity: Union[Granularity, str] = Granularity.EXACT) -> int:
        """Mark every entry carrying ``tag`` (or, for subtrees, a descendant) stale.

        Returns how many entries were dropped across registered caches.
        """
        granularity = Granularity(granularity)
        matches = tag_matcher(tag, granularity)

        dropped = sum(cache.mark_stale(matches) for cache in self._caches)

        if self.metrics:
            self.metrics.increment_counter("cache_invalidations_total", granularity=granularity.value)

        self.logger.info(
            "Invalidated scope",
            tag=tag,
            granularity=granularity.value,
            dropped=dropped,
        )
        return dropped

    def on_mutation_success(
        self,
        tags: Iterable[str],
        granularity: Union[Granularity, str] = Granularity.EXACT,
    ) -> int:
        """Trigger interface for mutation handlers once their write is durable."""
        return sum(self.invalidate(tag, granularity) for tag in sorted(normalize_tags(tags)))

    async def run_mutation(
        self,
        mutate: Callable[[], Awaitable[Any]],
        tags: Iterable[str] = (),
        subtree_tags: Iterable[str] = (),
    ) -> Any:
        """Await ``mutate`` and, only if it succeeded, invalidate its scopes.

        ``tags`` are invalidated exactly, ``subtree_tags`` together with
        everything nested below them. A failing mutation invalidates nothing.
        """
        tags = normalize_tags(tags)
        subtree_tags = normalize_tags(subtree_tags)
        result = await mutate()
        self.on_mutation_success(tags, Granularity.EXACT)
        self.on_mutation_success(subtree_tags, Granularity.SUBTREE)
        return result
