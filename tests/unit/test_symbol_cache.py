from datetime import datetime, timedelta, timezone

import pytest

from tradesim.core.config import DataConfig
from tradesim.data.symbol_cache import SymbolCache


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 8, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


class CountingLoader:
    def __init__(self, symbols):
        self.symbols = symbols
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.symbols


class TestSymbolCache:
    async def test_loads_lazily_and_upper_cases(self):
        """The first lookup loads symbols; lookups ignore case."""
        loader = CountingLoader(["spy", "QQQ"])
        cache = SymbolCache(loader, ttl_seconds=60, clock=FakeClock())
        assert cache.is_stale()
        assert await cache.contains("SPY")
        assert await cache.contains("qqq")
        assert not await cache.contains("IWM")
        assert loader.calls == 1

    async def test_reloads_after_ttl(self):
        """Symbols reload once the TTL has lapsed."""
        clock = FakeClock()
        loader = CountingLoader(["SPY"])
        cache = SymbolCache(loader, ttl_seconds=60, clock=clock)
        await cache.contains("SPY")

        clock.now += timedelta(seconds=59)
        loader.symbols = ["SPY", "IWM"]
        assert not await cache.contains("IWM")

        clock.now += timedelta(seconds=1)
        assert await cache.contains("IWM")
        assert loader.calls == 2
        assert cache.loaded_at == clock.now

    async def test_invalidate(self):
        """Invalidation forces a reload on the next lookup."""
        loader = CountingLoader(["SPY"])
        cache = SymbolCache(loader, clock=FakeClock())
        await cache.contains("SPY")
        cache.invalidate()
        await cache.contains("SPY")
        assert loader.calls == 2

    async def test_loader_failure_propagates(self):
        """Loader errors reach the caller and leave the cache stale."""
        async def broken():
            raise ConnectionError("down")

        cache = SymbolCache(broken, clock=FakeClock())
        with pytest.raises(ConnectionError):
            await cache.contains("SPY")
        assert cache.is_stale()

    async def test_from_config_uses_ttl(self):
        """The TTL comes from the data settings."""
        clock = FakeClock()
        loader = CountingLoader(["SPY"])
        cache = SymbolCache.from_config(loader, DataConfig(symbol_cache_ttl_seconds=30), clock=clock)
        await cache.contains("SPY")
        clock.now += timedelta(seconds=30)
        await cache.contains("SPY")
        assert loader.calls == 2
