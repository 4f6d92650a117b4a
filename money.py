from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, float, Decimal]


def to_cents(amount: Number) -> int:
    cents = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def from_cents(cents: int) -> float:
    return cents / 100


def round_half_up(value: Number, places: int = 1) -> float:
    exponent = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int, places: int = 1) -> float:
    """Share of ``part`` in ``whole`` as a percentage; 0 when ``whole`` is 0."""
    if not whole:
        return 0.0
    return round_half_up(Decimal(part) * 100 / Decimal(whole), places)


def growth_rate(current: int, previous: int) -> float:
    if not previous:
        return 0.0
    return round_half_up(Decimal(current - previous) * 100 / Decimal(previous), 1)
