"""Conversion between decimal currency amounts and stored minor units.

Balances live in the database as integers (cents for the default two places).
Incoming amounts are truncated to the configured precision before any check
runs, so the value that is validated is the value that is booked.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation

from .errors import InvalidAmountError

# Leaves headroom below the signed 64-bit column limit for balances that sum many amounts.
MAX_MINOR_UNITS = 10**15


def to_minor_units(amount: Decimal, places: int = 2) -> int:
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise InvalidAmountError("Amount must be a finite number")
    if value and value.adjusted() + places >= len(str(MAX_MINOR_UNITS)):
        raise InvalidAmountError("Amount exceeds the supported maximum")
    try:
        truncated = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
    except InvalidOperation as exc:
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from exc
    minor = int(truncated.scaleb(places))
    if abs(minor) > MAX_MINOR_UNITS:
        raise InvalidAmountError("Amount exceeds the supported maximum")
    return minor


def to_positive_minor_units(amount: Decimal, places: int = 2) -> int:
    minor = to_minor_units(amount, places)
    if minor <= 0:
        raise InvalidAmountError("Amount must be greater than zero")
    return minor


def from_minor_units(minor: int, places: int = 2) -> Decimal:
    return Decimal(minor).scaleb(-places)


def share_of(minor: int, rate: Decimal) -> int:
    """Return ``floor(minor * rate)`` without going through floats."""
    return int((Decimal(minor) * rate).to_integral_value(rounding=ROUND_DOWN))
