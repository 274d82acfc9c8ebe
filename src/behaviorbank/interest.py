"""Simple interest on vested deposits."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from .config import BASE_ANNUAL_RATE
from .money import AmountLike, to_decimal
from .vesting import months_between

# Longer commitments earn a multiple of the base rate; first match wins.
RATE_TIERS: Sequence[Tuple[int, Decimal]] = (
    (48, Decimal("1.5")),
    (36, Decimal("1.3")),
    (24, Decimal("1.2")),
    (12, Decimal("1")),
)
SHORT_TERM_MULTIPLIER = Decimal("0.8")
MONTHS_PER_YEAR = Decimal(12)


def rate_for(vesting_months: int, *, base_rate: Optional[Decimal] = None) -> Decimal:
    """Return the annual rate for a deposit committed for ``vesting_months``."""

    base = BASE_ANNUAL_RATE if base_rate is None else base_rate
    for minimum_months, multiplier in RATE_TIERS:
        if vesting_months >= minimum_months:
            return base * multiplier
    return base * SHORT_TERM_MULTIPLIER


def months_elapsed(start: datetime, now: datetime) -> Decimal:
    """Raw average-month time from ``start`` to ``now``; negative if ``now`` is earlier."""

    return months_between(start, now)


def interest(amount: AmountLike, annual_rate: Decimal, months: AmountLike) -> Decimal:
    """Return non-compounding interest on ``amount`` over ``months``."""

    return to_decimal(amount) * annual_rate * to_decimal(months) / MONTHS_PER_YEAR


__all__ = ["RATE_TIERS", "interest", "months_elapsed", "rate_for"]
