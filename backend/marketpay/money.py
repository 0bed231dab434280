"""
Money helpers.

All amounts are a single currency (UZS) held as Decimal with two places.
Payme speaks tiyin (1/100 of a sum) on the wire; everything stored is sums.

Incoming amounts are never rounded: a value finer than the wire unit is
rejected so it can never compare equal to an expected amount.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
TIYIN_PER_UNIT = 100


def _parse(value) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError("amount is required")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount


def to_decimal(value) -> Decimal:
    """Coerce a wire value ("15000", 15000, "15000.00") to a two-place Decimal.

    Raises ValueError for anything with sub-cent precision ("15000.004").
    """
    amount = _parse(value)
    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")
    if quantized != amount:
        raise ValueError(f"Amount {value!r} has more than two decimal places")
    return quantized


def format_amount(value) -> str | None:
    """Canonical string form used in every JSON payload ("15000.00")."""
    if value is None:
        return None
    return str(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def from_tiyin(value) -> Decimal:
    """Whole tiyin to sums; 1500000.4 tiyin raises ValueError."""
    tiyin = _parse(value)
    if tiyin != tiyin.to_integral_value():
        raise ValueError(f"Amount {value!r} is not a whole number of tiyin")
    return to_decimal(tiyin / TIYIN_PER_UNIT)


def to_tiyin(value) -> int:
    return int((Decimal(value) * TIYIN_PER_UNIT).to_integral_value(rounding=ROUND_HALF_UP))
