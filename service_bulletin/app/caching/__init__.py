"""
Bulletin caching package.

Provides the process-local read cache used to memoize row-store queries,
the invalidation controller fired by successful mutations, and the
per-request cycle that ties both to an HTTP request. Prefer short-lived,
cycle-scoped caches and explicit invalidation.
"""

from .keys import make_query_key, is_within_scope, SCOPE_SEPARATOR
from .read_cache import CacheEntry, CacheMode, ReadCache
from .invalidation import Granularity, InvalidationController
from .cycle import CacheCycle, CacheCycleFactory

__all__ = [
    "CacheCycle",
    "CacheCycleFactory",
    "CacheEntry",
    "CacheMode",
    "Granularity",
    "InvalidationController",
    "ReadCache",
    "SCOPE_SEPARATOR",
    "is_within_scope",
    "make_query_key",
]
