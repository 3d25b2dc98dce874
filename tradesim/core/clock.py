"""Simulated wall-clock position within a trading day."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from tradesim.core.config import MarketHoursConfig
from tradesim.core.types import TimeInterval


@dataclass(frozen=True, slots=True)
class Duration:
    """A count of calendar days, hours or minutes."""

    number: int
    unit: TimeInterval | str

    def as_timedelta(self) -> timedelta:
        unit = self.unit.value if isinstance(self.unit, TimeInterval) else self.unit
        if unit == TimeInterval.DAY.value:
            return timedelta(days=self.number)
        if unit == TimeInterval.HOUR.value:
            return timedelta(hours=self.number)
        if unit == TimeInterval.MINUTE.value:
            return timedelta(minutes=self.number)
        raise ValueError(f"Invalid duration unit: {unit!r}")

    def add_to(self, moment: datetime) -> datetime:
        return moment + self.as_timedelta()

    def to_dict(self) -> dict:
        unit = self.unit.value if isinstance(self.unit, TimeInterval) else self.unit
        return {"number": self.number, "unit": unit}

    @classmethod
    def from_dict(cls, data: dict) -> Duration:
        return cls(number=int(data["number"]), unit=data["unit"])


class TimeCursor:
    """Position within the session at a fixed granularity.

    Day granularity has two slots, the open and the close. Hour and minute
    granularity step from the open in fixed increments and always end on the
    close. ``next()`` cycles through the slots; moving the calendar date is
    the caller's job when the cursor wraps from the last slot.
    """

    def __init__(
        self,
        frequency: TimeInterval | str = TimeInterval.DAY,
        market_hours: MarketHoursConfig | None = None,
        index: int = 0,
    ) -> None:
        self.frequency = frequency
        self.market_hours = market_hours or MarketHoursConfig()
        self._slots = self._build_slots()
        if not 0 <= index < len(self._slots):
            raise ValueError(f"Cursor index {index} out of range")
        self.index = index

    def _build_slots(self) -> list[time]:
        open_time = self.market_hours.open_time
        close_time = self.market_hours.close_time
        try:
            frequency = TimeInterval(self.frequency)
        except ValueError:
            raise ValueError(f"Invalid time frequency: {self.frequency!r}") from None

        if frequency == TimeInterval.DAY:
            return [open_time, close_time]

        step = Duration(1, frequency)
        anchor = date(2000, 1, 3)
        current = datetime.combine(anchor, open_time)
        close = datetime.combine(anchor, close_time)
        slots: list[time] = []
        while current < close:
            slots.append(current.time())
            current = step.add_to(current)
        slots.append(close_time)
        return slots

    @property
    def slots(self) -> list[time]:
        return list(self._slots)

    @property
    def slot(self) -> time:
        return self._slots[self.index]

    def is_eod(self) -> bool:
        return self.index == len(self._slots) - 1

    def next(self) -> time:
        self.index = (self.index + 1) % len(self._slots)
        return self.slot

    def reset(self) -> None:
        self.index = 0

    def get_datetime(self, day: date) -> datetime:
        """Combine a calendar date with the current slot's time of day."""
        if isinstance(day, datetime):
            day = day.date()
        return datetime.combine(day, self.slot)

    def to_dict(self) -> dict:
        frequency = self.frequency.value if isinstance(self.frequency, TimeInterval) else self.frequency
        return {"frequency": frequency, "index": self.index}

    @classmethod
    def from_dict(cls, data: dict, market_hours: MarketHoursConfig | None = None) -> TimeCursor:
        return cls(data["frequency"], market_hours=market_hours, index=int(data.get("index", 0)))
