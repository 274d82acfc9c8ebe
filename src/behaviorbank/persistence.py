"""Persistence and SQLModel definitions for BehaviorBank."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import NaiveDatetime
from sqlalchemy import Column, DateTime, Text, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel, create_engine

from .config import DATABASE_URL, DEFAULT_VESTING_MONTHS
from .models import (
    AccountStatus,
    AuditAction,
    DepositStatus,
    Role,
    TransactionType,
    WithdrawalStatus,
    utcnow,
)


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    role: Role
    pin_hash: str
    is_active: bool = True
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)


class Account(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True)
    deposit_cents: int = 0
    vesting_start: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)
    status: AccountStatus = AccountStatus.ACTIVE
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)


class Deposit(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    amount_cents: int
    deposited_by: int = Field(foreign_key="user.id")
    vesting_months: int = DEFAULT_VESTING_MONTHS
    status: DepositStatus = DepositStatus.ACTIVE
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)


class PointTransaction(SQLModel, table=True):
    """One immutable row of the points ledger.

    ``sequence`` numbers a user's rows 1, 2, 3, ... and is unique per user, so
    two writers that both read the same head cannot both append after it.
    """

    __table_args__ = (UniqueConstraint("user_id", "sequence", name="uq_point_transaction_user_sequence"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    sequence: int
    type: TransactionType
    amount: int
    description: str
    balance_after: int
    created_by: int = Field(foreign_key="user.id")
    metadata_json: str = Field(default="{}", sa_column=Column(Text, nullable=False, default="{}"))
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)

    @property
    def extra(self) -> Dict[str, Any]:
        return json.loads(self.metadata_json or "{}")


class Withdrawal(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    requested_by: int = Field(foreign_key="user.id")
    amount_cents: int
    reason: str
    status: WithdrawalStatus = Field(default=WithdrawalStatus.PENDING, index=True)
    processed_by: Optional[int] = Field(default=None, foreign_key="user.id")
    processed_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    notes: Optional[str] = None
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)


class AuditRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    actor_id: int = Field(index=True)
    action: AuditAction = Field(index=True)
    target_user_id: Optional[int] = None
    details_json: str = Field(default="{}", sa_column=Column(Text, nullable=False, default="{}"))
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)

    @property
    def details(self) -> Dict[str, Any]:
        return json.loads(self.details_json or "{}")


# ---------------------------------------------------------------------------
# Engine & initialisation
# ---------------------------------------------------------------------------
def make_engine(url: str = DATABASE_URL) -> Engine:
    """Create an engine for ``url``; in-memory SQLite shares one connection."""

    if url.startswith("sqlite"):
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(url, echo=False, pool_pre_ping=True)


engine = make_engine()


def create_db_and_tables(target: Engine | None = None) -> None:
    SQLModel.metadata.create_all(target or engine)


def drop_db_and_tables(target: Engine | None = None) -> None:
    SQLModel.metadata.drop_all(target or engine)


def dump_json(payload: Optional[Dict[str, Any]]) -> str:
    return json.dumps(payload or {}, sort_keys=True, default=str)


__all__ = [
    "Account",
    "AuditRecord",
    "Deposit",
    "PointTransaction",
    "User",
    "Withdrawal",
    "create_db_and_tables",
    "drop_db_and_tables",
    "dump_json",
    "engine",
    "make_engine",
]
