"""Domain models used by the BehaviorBank package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, the form stored in the database."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""

    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    """The two kinds of household members."""

    ADMIN = "ADMIN"
    CHILD = "CHILD"


class TransactionType(str, Enum):
    """Enumerates the supported kinds of points transactions."""

    EARN = "EARN"
    SPEND = "SPEND"
    ADJUST = "ADJUST"
    BONUS = "BONUS"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    WITHDRAWN = "WITHDRAWN"
    LOCKED = "LOCKED"


class DepositStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class WithdrawalStatus(str, Enum):
    """Lifecycle for withdrawals that require parent approval."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    CREATE_USER = "CREATE_USER"
    AWARD_POINTS = "AWARD_POINTS"
    DEDUCT_POINTS = "DEDUCT_POINTS"
    ADJUST_POINTS = "ADJUST_POINTS"
    CREATE_ACCOUNT = "CREATE_ACCOUNT"
    UPDATE_ACCOUNT = "UPDATE_ACCOUNT"
    CREATE_DEPOSIT = "CREATE_DEPOSIT"
    REQUEST_WITHDRAWAL = "REQUEST_WITHDRAWAL"
    APPROVE_WITHDRAWAL = "APPROVE_WITHDRAWAL"
    REJECT_WITHDRAWAL = "REJECT_WITHDRAWAL"


@dataclass(slots=True, frozen=True)
class Actor:
    """The authenticated user on whose behalf an operation runs."""

    user_id: int
    role: Role
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(slots=True, frozen=True)
class VestingResult:
    """How much of a deposit has vested at a point in time."""

    vested_amount: Decimal
    vested_percentage: Decimal
    months_elapsed: Decimal
    is_fully_vested: bool


@dataclass(slots=True, frozen=True)
class WithdrawalCheck:
    """Outcome of an eligibility check for a withdrawal amount."""

    allowed: bool
    available_amount: Decimal
    reason: Optional[str] = None


@dataclass(slots=True, frozen=True)
class Valuation:
    """Optimistic dashboard estimate of an account's worth."""

    months_elapsed: int
    interest_rate: int
    estimated_value: int
    is_penalty: bool


@dataclass(slots=True)
class LedgerResult:
    """New balance plus the transaction row that produced it."""

    new_balance: int
    transaction: Any


@dataclass(slots=True)
class Page:
    """A page of newest-first results."""

    items: Sequence[Any]
    total: int
    page: int
    limit: int
    total_pages: int

    def as_dict(self, serialise: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "items": [serialise(item) for item in self.items],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
        }


@dataclass(slots=True)
class AuditEvent:
    """Represents an auditable action before it is written to the store."""

    actor_id: int
    action: AuditAction
    target_user_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


__all__ = [
    "AccountStatus",
    "Actor",
    "AuditAction",
    "AuditEvent",
    "DepositStatus",
    "LedgerResult",
    "Page",
    "Role",
    "TransactionType",
    "Valuation",
    "VestingResult",
    "WithdrawalCheck",
    "WithdrawalStatus",
    "as_naive_utc",
    "utcnow",
]
