"""Money helpers.

Amounts are integers in the currency's minor unit. Rates and percentages are
Decimals; every conversion back to an amount rounds half-up (never banker's
rounding, so 0.5 always goes up).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce a DB/JSON numeric to Decimal (None → 0)."""
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats keep their printed value, not their binary one
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percent_of(amount: int, rate: Decimal | int | float | str) -> int:
    """amount × rate / 100, rounded half-up to a whole amount."""
    return round_half_up(Decimal(amount) * to_decimal(rate) / _HUNDRED)
