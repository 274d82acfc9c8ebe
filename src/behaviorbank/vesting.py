"""Linear vesting of deposits.

A deposit becomes withdrawable in a straight line from the moment it is made
until ``vesting_months`` average-length months have passed. Month length is the
30.44-day average rather than calendar months, so results drift by a few hours
around month boundaries; nothing here rounds, callers round for display.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from .config import AVERAGE_MONTH_DAYS
from .models import VestingResult
from .money import AmountLike, to_decimal

SECONDS_PER_DAY = Decimal(86_400)
HUNDRED = Decimal(100)
ZERO = Decimal(0)


def months_between(start: datetime, end: datetime) -> Decimal:
    """Return the signed number of average months from ``start`` to ``end``."""

    seconds = Decimal(str((end - start).total_seconds()))
    return seconds / (SECONDS_PER_DAY * AVERAGE_MONTH_DAYS)


def vest(principal: AmountLike, start: datetime, vesting_months: int, now: datetime) -> VestingResult:
    """Return how much of ``principal`` has vested at ``now``."""

    amount = to_decimal(principal)
    term = Decimal(vesting_months)
    elapsed = months_between(start, now)

    if elapsed >= term:
        return VestingResult(
            vested_amount=amount,
            vested_percentage=HUNDRED,
            months_elapsed=term,
            is_fully_vested=True,
        )
    if elapsed <= 0:
        return VestingResult(
            vested_amount=ZERO,
            vested_percentage=ZERO,
            months_elapsed=ZERO,
            is_fully_vested=False,
        )
    return VestingResult(
        vested_amount=amount * elapsed / term,
        vested_percentage=elapsed / term * HUNDRED,
        months_elapsed=elapsed,
        is_fully_vested=False,
    )


__all__ = ["months_between", "vest"]
