from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")


def round_cents(value: float) -> float:
    """Round half-up at the cent, avoiding binary float ties (1.005 -> 1.01)."""
    return float(Decimal(repr(value)).quantize(_CENT, rounding=ROUND_HALF_UP))
