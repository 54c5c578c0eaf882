# Overview: Decimal helpers for integer-cent money and 2-place quantities.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

ONE = Decimal("1")
HUNDREDTH = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """
    Exact Decimal from user input.

    Floats go through str() so 1.5 becomes Decimal("1.5") rather than the
    binary expansion. Booleans are rejected.
    """
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"invalid number: {value!r}")
    raise ValueError(f"invalid number: {value!r}")


def round_cents(amount: Decimal) -> int:
    """Round a fractional cent amount to whole cents (half-up)."""
    return int(amount.quantize(ONE, rounding=ROUND_HALF_UP))


def apply_bps(amount_cents: int, bps: int) -> int:
    """amount * bps / 10000, half-up to the cent."""
    return round_cents(Decimal(amount_cents) * Decimal(bps) / Decimal(10000))


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a 2-place quantity (hours, quantities) for JSON."""
    if value is None:
        return None
    return str(to_decimal(value).quantize(HUNDREDTH, rounding=ROUND_HALF_UP))


def has_max_places(value: Decimal, places: int) -> bool:
    """True when value has no significant digits beyond `places` decimals."""
    return value.normalize().as_tuple().exponent >= -places
