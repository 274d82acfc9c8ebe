"""Dashboard valuation.

An optimistic, display-only estimate of what an account is worth. It uses its
own schedule keyed on time since the account's vesting start (20% once six
30-day months have passed, plus 10% per further six months) and is never used
to decide a withdrawal; :mod:`behaviorbank.withdrawals` does that.
"""

from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from .api import ApiExporter
from .config import (
    DASHBOARD_MIN_MONTHS,
    DASHBOARD_MONTH_DAYS,
    DASHBOARD_RATE_STEP,
    DASHBOARD_STARTING_RATE,
    PENALTY_DEPOSIT_SHARE,
    RECENT_ACTIVITY_COUNT,
)
from .exceptions import UserNotFoundError
from .ledger import PointsLedger
from .models import Actor, Valuation, utcnow
from .money import AmountLike, from_cents, round_whole, to_decimal
from .persistence import Account, User

SECONDS_PER_MONTH = Decimal(DASHBOARD_MONTH_DAYS * 86_400)
HUNDRED = Decimal(100)


def dashboard_months(start: datetime, now: datetime) -> int:
    """Whole 30-day months between the two moments, rounded up, in either direction."""

    seconds = abs(Decimal(str((now - start).total_seconds())))
    return math.ceil(seconds / SECONDS_PER_MONTH)


def dashboard_rate(months: int) -> int:
    if months < DASHBOARD_MIN_MONTHS:
        return 0
    return DASHBOARD_STARTING_RATE + DASHBOARD_RATE_STEP * ((months - DASHBOARD_MIN_MONTHS) // DASHBOARD_MIN_MONTHS)


def valuate(deposit_amount: AmountLike, vesting_start: datetime, current_points: int, now: datetime) -> Valuation:
    """Estimate the account value; a negative points balance halves the deposit and forfeits interest."""

    deposit = to_decimal(deposit_amount)
    months = dashboard_months(vesting_start, now)
    if current_points < 0:
        return Valuation(
            months_elapsed=months,
            interest_rate=0,
            estimated_value=round_whole(deposit * PENALTY_DEPOSIT_SHARE),
            is_penalty=True,
        )
    rate = dashboard_rate(months)
    value = (deposit + current_points) * (1 + Decimal(rate) / HUNDRED)
    return Valuation(months_elapsed=months, interest_rate=rate, estimated_value=round_whole(value), is_penalty=False)


class DashboardService:
    """Assemble the signed-in user's dashboard."""

    def __init__(
        self,
        engine: Engine,
        ledger: PointsLedger,
        *,
        exporter: ApiExporter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._ledger = ledger
        self._exporter = exporter or ApiExporter()
        self._clock = clock

    def build(self, actor: Actor) -> Dict[str, object]:
        with Session(self._engine, expire_on_commit=False) as session:
            user = session.get(User, actor.user_id)
            account = session.exec(select(Account).where(Account.user_id == actor.user_id)).first()
        if user is None:
            raise UserNotFoundError(f"User {actor.user_id} does not exist")

        points = self._ledger.get_balance(user.id)
        if account is not None:
            valuation = valuate(from_cents(account.deposit_cents), account.vesting_start, points, self._clock())
            account_view: Dict[str, object] = {
                "balance": float(from_cents(account.deposit_cents)),
                "vesting_start": account.vesting_start.isoformat(),
                "status": account.status.value,
            }
        else:
            valuation = Valuation(months_elapsed=0, interest_rate=0, estimated_value=0, is_penalty=False)
            account_view = {"balance": 0, "vesting_start": None, "status": None}

        recent = self._ledger.recent(user.id, RECENT_ACTIVITY_COUNT)
        return {
            "user": {"id": user.id, "name": user.name, "role": user.role.value},
            "account": account_view,
            "stats": self._exporter.valuation(valuation, points),
            "recent_activity": [self._exporter.transaction(entry) for entry in recent],
        }


__all__ = ["DashboardService", "dashboard_months", "dashboard_rate", "valuate"]
