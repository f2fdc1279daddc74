from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def to_decimal(value: float | int | str | Decimal | None) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary expansion
    return Decimal(str(value))


def round_half_up(value: float | int | Decimal, digits: int = 0) -> float:
    exponent = Decimal(1).scaleb(-digits)
    return float(to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP))


def percent(part: int, total: int) -> int:
    """Whole-number percentage of ``part`` over ``total``; 0 when ``total`` is 0."""
    if not total:
        return 0
    ratio = Decimal(100 * int(part)) / Decimal(int(total))
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))
