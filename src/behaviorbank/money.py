"""Utilities for working with monetary values in BehaviorBank."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .exceptions import InvalidAmountError

CENT = Decimal("0.01")
ONE = Decimal("1")

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """Convert ``value`` to an exact :class:`~decimal.Decimal` without rounding."""

    if isinstance(value, bool):
        raise InvalidAmountError(f"Unsupported amount: {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation as exc:
            raise InvalidAmountError(f"Not a number: {value!r}") from exc
    raise TypeError(f"Unsupported amount type: {type(value)!r}")


def to_cents(value: AmountLike) -> int:
    """Return ``value`` in whole cents, rounding half-up."""

    return int((to_decimal(value) * 100).quantize(ONE, rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Return ``cents`` as a two-place decimal amount."""

    return (Decimal(cents) / 100).quantize(CENT)


def require_positive(amount: Decimal, *, allow_zero: bool = False) -> Decimal:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < 0:
            raise InvalidAmountError("Amount must be zero or greater.")
    elif amount <= 0:
        raise InvalidAmountError("Amount must be positive")
    return amount


def positive_cents(value: AmountLike, *, allow_zero: bool = False) -> int:
    """Return ``value`` in cents, checking positivity after rounding to the cent."""

    cents = to_cents(value)
    require_positive(Decimal(cents), allow_zero=allow_zero)
    return cents


def round_display(amount: Decimal) -> Decimal:
    """Round ``amount`` to cents for display; calculations keep full precision."""

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def round_whole(amount: Decimal) -> int:
    """Round ``amount`` to the nearest whole unit, halves going up."""

    return int(amount.quantize(ONE, rounding=ROUND_HALF_UP))


def format_currency(amount: Decimal) -> str:
    """Return ``amount`` as a currency formatted string (e.g. ``12,345.60``)."""

    return f"{round_display(amount):,.2f}"


__all__ = [
    "AmountLike",
    "CENT",
    "format_currency",
    "from_cents",
    "positive_cents",
    "require_positive",
    "round_display",
    "round_whole",
    "to_cents",
    "to_decimal",
]
