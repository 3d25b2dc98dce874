"""Point-in-time quotes and fill-price rules."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from tradesim.core.exceptions import DataError
from tradesim.core.money import round_cents
from tradesim.core.types import Asset, AssetType, FillPolicy, Side

if TYPE_CHECKING:
    from tradesim.portfolio.position import Position

OPTION_MULTIPLIER = 100


@dataclass(frozen=True, slots=True)
class PriceQuote:
    bid: float
    mid: float
    ask: float
    open: float
    high: float
    low: float
    close: float
    volume: float


class PriceSnapshot:
    """Quotes for every cached symbol at one simulated timestamp."""

    def __init__(self, timestamp: datetime, quotes: dict[str, PriceQuote] | None = None) -> None:
        self.timestamp = timestamp
        self._quotes: dict[str, PriceQuote] = dict(quotes or {})

    def __len__(self) -> int:
        return len(self._quotes)

    def set(self, symbol: str, quote: PriceQuote) -> None:
        self._quotes[symbol] = quote

    def contains(self, symbol: str) -> bool:
        return symbol in self._quotes

    def symbols(self) -> list[str]:
        return list(self._quotes)

    def get_quote(self, symbol: str) -> PriceQuote:
        try:
            return self._quotes[symbol]
        except KeyError:
            raise DataError(f"No quote for {symbol} at {self.timestamp.isoformat()}") from None

    def get_dynamic_price(
        self,
        asset: Asset,
        side: Side | str,
        fill_policy: FillPolicy | str = FillPolicy.MID,
    ) -> float:
        """Execution price for ``side`` under ``fill_policy``.

        Likely-to-fill crosses the spread (buy at the ask, sell at the bid),
        unlikely-to-fill rests on the near side, and the "near" variants
        weight the mid twice. Options are priced per contract.
        """
        quote = self.get_quote(asset.symbol)
        side = Side(side)
        policy = FillPolicy(fill_policy)
        crossing = quote.ask if side == Side.BUY else quote.bid
        resting = quote.bid if side == Side.BUY else quote.ask

        if policy == FillPolicy.LIKELY_TO_FILL:
            price = crossing
        elif policy == FillPolicy.UNLIKELY_TO_FILL:
            price = resting
        elif policy == FillPolicy.NEAR_LIKELY_TO_FILL:
            price = (crossing + 2 * quote.mid) / 3
        elif policy == FillPolicy.NEAR_UNLIKELY_TO_FILL:
            price = (resting + 2 * quote.mid) / 3
        else:
            price = quote.mid

        if asset.type == AssetType.OPTION:
            price *= OPTION_MULTIPLIER
        return round_cents(price)

    def get_position_price(
        self,
        position: Position,
        fill_policy: FillPolicy | str = FillPolicy.MID,
    ) -> float:
        """Mark a position at the price it could be closed for."""
        return self.get_dynamic_price(position.asset, Side.SELL, fill_policy)
