from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


class Status(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class TimeInterval(str, Enum):
    DAY = "Day"
    HOUR = "Hour"
    MINUTE = "Minute"


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class FillPolicy(str, Enum):
    LIKELY_TO_FILL = "likely to fill"
    UNLIKELY_TO_FILL = "unlikely to fill"
    MID = "mid"
    NEAR_LIKELY_TO_FILL = "near likely to fill"
    NEAR_UNLIKELY_TO_FILL = "near unlikely to fill"


class AssetType(str, Enum):
    STOCK = "Stock"
    CRYPTO = "Cryptocurrency"
    OPTION = "Option"
    DEBIT_SPREAD = "Debit Spread"
    NONE = "None"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    PENDING = "pending"
    FILLED = "filled"
    CANCELED = "canceled"


class Comparator(str, Enum):
    LESS_THAN = "less than"
    GREATER_THAN = "greater than"
    LESS_THAN_OR_EQUAL = "less than or equal to"
    GREATER_THAN_OR_EQUAL = "greater than or equal to"
    EQUAL_TO = "equal to"

    def compare(self, left: float, right: float) -> bool:
        if self is Comparator.LESS_THAN:
            return left < right
        if self is Comparator.GREATER_THAN:
            return left > right
        if self is Comparator.LESS_THAN_OR_EQUAL:
            return left <= right
        if self is Comparator.GREATER_THAN_OR_EQUAL:
            return left >= right
        return left == right


@dataclass(frozen=True, slots=True)
class Bar:
    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True, slots=True)
class Asset:
    symbol: str
    type: AssetType = AssetType.STOCK
    name: str = ""
    expiration: date | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.symbol

    def is_expired(self, as_of: date) -> bool:
        """Options expire once the calendar passes their expiration date."""
        if self.type != AssetType.OPTION or self.expiration is None:
            return False
        return self.expiration < as_of

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "type": self.type.value,
            "name": self.name,
            "expiration": self.expiration.isoformat() if self.expiration else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Asset:
        expiration = data.get("expiration")
        return cls(
            symbol=data["symbol"],
            type=AssetType(data.get("type", AssetType.STOCK.value)),
            name=data.get("name", ""),
            expiration=date.fromisoformat(expiration) if expiration else None,
        )


MarketHistory = dict[str, list[Bar]]
