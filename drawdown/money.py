"""Exact decimal helpers for currency and rates."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .errors import ValidationFailure

ZERO = Decimal("0")
ONE = Decimal("1")
TWELVE = Decimal("12")
CENTS = Decimal("0.01")

# Precision used for intermediate strategy arithmetic.
RATE_PLACES = Decimal("0.0000000001")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """Coerce ints, strings and floats to Decimal without binary float noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationFailure(f"{field}: expected a number, got bool", field=field)
    if isinstance(value, (int, str)):
        try:
            return Decimal(value)
        except ArithmeticError as exc:
            raise ValidationFailure(f"{field}: '{value}' is not a number", field=field) from exc
    if isinstance(value, float):
        return Decimal(repr(value))
    raise ValidationFailure(f"{field}: expected a number, got {type(value).__name__}", field=field)


def non_negative(value: Any, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount < 0:
        raise ValidationFailure(f"{field}: must be >= 0, got {amount}", field=field)
    return amount


def quantize_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    return value.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
