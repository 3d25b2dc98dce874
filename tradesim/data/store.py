from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from tradesim.core.types import Bar


class HistorySource(ABC):
    """Upstream OHLCV history, read by the cached provider."""

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @abstractmethod
    async def load_bars(self, symbol: str, start: datetime, end: datetime | None = None) -> list[Bar]: ...
