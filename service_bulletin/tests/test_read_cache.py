"""
Unit tests for the Bulletin read cache.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from service_bulletin.app.caching.invalidation import Granularity, InvalidationController
from service_bulletin.app.caching.read_cache import CacheMode, ReadCache
from shared.errors import StoreUnavailable
from shared.metrics import MetricsCollector


class CountingLoader:
    """Loader stub recording how often the store would be queried."""

    def __init__(self, *values):
        self.values = list(values) or [["hello"]]
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        value = self.values[min(self.calls, len(self.values)) - 1]
        if isinstance(value, Exception):
            raise value
        return value


class GatedLoader(CountingLoader):
    """Loader that blocks until the test opens the gate."""

    def __init__(self, *values):
        super().__init__(*values)
        self.gate = asyncio.Event()
        self.started = asyncio.Event()

    async def __call__(self):
        self.started.set()
        await self.gate.wait()
        return await super().__call__()


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestReadCache:
    """Test cases for ReadCache."""

    @pytest.fixture
    def cache(self):
        return ReadCache("test")

    @pytest.fixture
    def controller(self, cache):
        return InvalidationController(cache)

    @pytest.mark.asyncio
    async def test_repeated_get_returns_same_object(self, cache):
        """Repeated reads without invalidation hit the cache and keep identity."""
        loader = CountingLoader([{"id": 1, "text": "hi"}])

        first = await cache.get("all-messages", ["messages"], loader)
        second = await cache.get("all-messages", ["messages"], loader)

        assert first is second
        assert loader.calls == 1
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_sync_loader_supported(self, cache):
        """Plain callables work as loaders."""
        calls = []

        def loader():
            calls.append(1)
            return 42

        assert await cache.get("answer", ["numbers"], loader) == 42
        assert await cache.get("answer", ["numbers"], loader) == 42
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_fresh_load(self, cache, controller):
        """A read after invalidating its tag reloads from the store."""
        loader = CountingLoader(["a"], ["a", "b"])

        assert await cache.get("all-messages", ["messages"], loader) == ["a"]
        controller.invalidate("messages")

        assert "all-messages" not in cache
        assert await cache.get("all-messages", ["messages"], loader) == ["a", "b"]
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_twice_equals_once(self, cache, controller):
        """Invalidation is idempotent."""
        loader = CountingLoader(["a"], ["b"])
        await cache.get("k", ["messages"], loader)

        assert controller.invalidate("messages") == 1
        assert controller.invalidate("messages") == 0

        assert await cache.get("k", ["messages"], loader) == ["b"]
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_unknown_tag_is_noop(self, cache, controller):
        """Invalidating a tag nobody carries is silent."""
        loader = CountingLoader(["a"])
        await cache.get("k", ["messages"], loader)

        assert controller.invalidate("no-such-tag") == 0
        assert "k" in cache

    @pytest.mark.asyncio
    async def test_entry_with_several_tags(self, cache, controller):
        """Any one of an entry's tags invalidates it."""
        loader = CountingLoader(["x"])
        await cache.get("post:1", ["posts", "posts/1"], loader)

        controller.invalidate("posts/1")

        assert "post:1" not in cache

    @pytest.mark.asyncio
    async def test_concurrent_gets_share_one_load(self, cache):
        """Two simultaneous misses for one key query the store once."""
        loader = GatedLoader([1, 2, 3])

        first = asyncio.ensure_future(cache.get("k", ["t"], loader))
        second = asyncio.ensure_future(cache.get("k", ["t"], loader))
        await loader.started.wait()
        loader.gate.set()

        a, b = await asyncio.gather(first, second)

        assert a is b
        assert loader.calls == 1
        assert cache.stats()["shared_loads"] == 1

    @pytest.mark.asyncio
    async def test_failed_load_is_not_cached(self, cache):
        """A store failure propagates and the next read retries."""
        loader = CountingLoader(StoreUnavailable("down"), ["ok"])

        with pytest.raises(StoreUnavailable):
            await cache.get("k", ["t"], loader)

        assert "k" not in cache
        assert await cache.get("k", ["t"], loader) == ["ok"]
        assert loader.calls == 2
        assert cache.stats()["failed_loads"] == 1

    @pytest.mark.asyncio
    async def test_shared_failure_reaches_every_waiter(self, cache):
        """Callers that joined a failing load all see the failure."""
        loader = GatedLoader(StoreUnavailable("down"))

        first = asyncio.ensure_future(cache.get("k", ["t"], loader))
        second = asyncio.ensure_future(cache.get("k", ["t"], loader))
        await loader.started.wait()
        loader.gate.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(result, StoreUnavailable) for result in results)
        assert loader.calls == 1
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_load_invalidated_in_flight_is_not_stored(self, cache, controller):
        """A value loaded before a mutation's invalidation never becomes a hit."""
        loader = GatedLoader(["old"], ["new"])

        pending = asyncio.ensure_future(cache.get("k", ["messages"], loader))
        await loader.started.wait()
        controller.invalidate("messages")
        loader.gate.set()

        assert await pending == ["old"]
        assert "k" not in cache
        assert await cache.get("k", ["messages"], loader) == ["new"]
        assert cache.stats()["discarded_loads"] == 1

    @pytest.mark.asyncio
    async def test_read_after_invalidation_does_not_join_stale_load(self, cache, controller):
        """Invalidation detaches the in-flight load so new readers start over."""
        loader = GatedLoader(["old"], ["new"])

        stale = asyncio.ensure_future(cache.get("k", ["messages"], loader))
        await loader.started.wait()
        controller.invalidate("messages")
        fresh = asyncio.ensure_future(cache.get("k", ["messages"], loader))
        loader.gate.set()

        assert await stale == ["old"]
        assert await fresh == ["new"]
        assert loader.calls == 2
        assert await cache.get("k", ["messages"], loader) == ["new"]

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_load(self, cache):
        """One waiter giving up leaves the load running for the others."""
        loader = GatedLoader(["v"])

        quitter = asyncio.ensure_future(cache.get("k", ["t"], loader))
        stayer = asyncio.ensure_future(cache.get("k", ["t"], loader))
        await loader.started.wait()
        quitter.cancel()
        loader.gate.set()

        assert await stayer == ["v"]
        with pytest.raises(asyncio.CancelledError):
            await quitter
        assert "k" in cache

    @pytest.mark.asyncio
    async def test_ttl_window_expires_entries(self):
        """Entries older than ttl_seconds are reloaded."""
        clock = FakeClock()
        cache = ReadCache("ttl", ttl_seconds=10, clock=clock)
        loader = CountingLoader(["a"], ["b"])

        assert await cache.get("k", ["t"], loader) == ["a"]
        clock.now += 9.9
        assert await cache.get("k", ["t"], loader) == ["a"]
        clock.now += 0.2
        assert await cache.get("k", ["t"], loader) == ["b"]
        assert cache.stats()["expired"] == 1

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValueError):
            ReadCache("bad", ttl_seconds=0)

    @pytest.mark.asyncio
    async def test_per_cycle_mode_clears_at_cycle_end(self):
        cache = ReadCache("cycle", CacheMode.PER_CYCLE)
        loader = CountingLoader(["a"])
        await cache.get("k", ["t"], loader)

        cache.end_cycle()

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_until_invalidated_mode_survives_cycle_end(self, cache):
        loader = CountingLoader(["a"])
        await cache.get("k", ["t"], loader)

        cache.end_cycle()

        assert "k" in cache
        await cache.get("k", ["t"], loader)
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_empty_tag_rejected(self, cache):
        with pytest.raises(ValueError):
            await cache.get("k", [""], CountingLoader())

    @pytest.mark.asyncio
    async def test_metrics_recorded(self):
        """Hits, misses and size are exported to Prometheus."""
        registry = CollectorRegistry()
        metrics = MetricsCollector("bulletin", registry)
        cache = ReadCache("metered", metrics=metrics)
        loader = CountingLoader(["a"])

        await cache.get("k", ["t"], loader)
        await cache.get("k", ["t"], loader)

        assert registry.get_sample_value("cache_hits_total", {"cache": "metered"}) == 1.0
        assert registry.get_sample_value("cache_misses_total", {"cache": "metered"}) == 1.0
        assert registry.get_sample_value("cache_entries", {"cache": "metered"}) == 1.0

        InvalidationController(cache, metrics=metrics).invalidate("t", Granularity.EXACT)
        assert registry.get_sample_value("cache_entries", {"cache": "metered"}) == 0.0
        assert registry.get_sample_value("cache_invalidations_total", {"granularity": "exact"}) == 1.0

    @pytest.mark.asyncio
    async def test_expired_entry_leaves_size_gauge(self):
        registry = CollectorRegistry()
        metrics = MetricsCollector("bulletin", registry)
        clock = FakeClock()
        cache = ReadCache("ttl", ttl_seconds=10, metrics=metrics, clock=clock)
        loader = CountingLoader(["a"], StoreUnavailable("Store call failed"))

        await cache.get("k", ["t"], loader)
        assert registry.get_sample_value("cache_entries", {"cache": "ttl"}) == 1.0

        clock.now += 11
        with pytest.raises(StoreUnavailable):
            await cache.get("k", ["t"], loader)

        assert "k" not in cache
        assert registry.get_sample_value("cache_entries", {"cache": "ttl"}) == 0.0
