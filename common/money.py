"""Decimal helpers for currency amounts and asset quantities."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

__all__ = ["CENT", "ZERO", "to_decimal", "money", "quantity", "percent"]

CENT = Decimal("0.01")
QTY_STEP = Decimal("0.00000001")
ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Coerce *value* to Decimal; floats go through ``str`` to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc


def money(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantity(value: Number) -> Decimal:
    return to_decimal(value).quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def percent(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole * 100`` rounded to cents, 0 when *whole* is 0."""
    if whole == 0:
        return ZERO.quantize(CENT)
    return (part / whole * 100).quantize(CENT, rounding=ROUND_HALF_UP)
