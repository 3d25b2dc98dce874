from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable

from tradesim.core.config import DataConfig

logger = logging.getLogger(__name__)

SymbolLoader = Callable[[], Awaitable[Iterable[str]]]


class SymbolCache:
    """Set of tradable symbols, reloaded when older than ``ttl_seconds``.

    The loader is awaited lazily on the first lookup and again after the
    TTL lapses. Loader failures propagate to the caller.
    """

    def __init__(
        self,
        loader: SymbolLoader,
        ttl_seconds: int = 7 * 24 * 3600,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._loader = loader
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._symbols: frozenset[str] = frozenset()
        self._loaded_at: datetime | None = None

    @classmethod
    def from_config(
        cls,
        loader: SymbolLoader,
        config: DataConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> SymbolCache:
        config = config or DataConfig()
        return cls(loader, ttl_seconds=config.symbol_cache_ttl_seconds, clock=clock)

    @property
    def loaded_at(self) -> datetime | None:
        return self._loaded_at

    def is_stale(self) -> bool:
        return self._loaded_at is None or (self._clock() - self._loaded_at) >= self._ttl

    async def refresh(self) -> None:
        symbols = await self._loader()
        self._symbols = frozenset(s.upper() for s in symbols)
        self._loaded_at = self._clock()
        logger.info("Symbol cache refreshed: %d symbols", len(self._symbols))

    def invalidate(self) -> None:
        self._loaded_at = None

    async def contains(self, symbol: str) -> bool:
        if self.is_stale():
            await self.refresh()
        return symbol.upper() in self._symbols
