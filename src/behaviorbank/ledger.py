"""Append-only points ledger.

Every award, deduction or correction appends one immutable
:class:`~behaviorbank.persistence.PointTransaction`. The running balance is
written into the row at append time (``balance_after``) and the current
balance is simply the newest row's value; it is never recomputed from older
rows.

Appends are compare-and-append: the writer reads the user's newest row, builds
the next row with ``sequence + 1`` and commits. The unique
``(user_id, sequence)`` constraint rejects a second writer that started from
the same head, and the ledger re-reads and tries again.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, desc, select

from .admin import AuditLog, clamp_page
from .config import LEDGER_APPEND_ATTEMPTS, RECENT_ACTIVITY_COUNT
from .exceptions import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InvalidAmountError,
    UserNotFoundError,
    ValidationError,
)
from .models import AuditAction, LedgerResult, Page, TransactionType, as_naive_utc, utcnow
from .ops import StructuredLogger
from .persistence import PointTransaction, User, dump_json

# Computes ``(signed amount, type)`` from the balance the append starts from.
AmountRule = Callable[[int], Tuple[int, TransactionType]]


def _require_points(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError("Points must be a whole number")
    if amount <= 0:
        raise InvalidAmountError("Amount must be positive")
    return amount


def _coerce_type(value: TransactionType | str) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError as exc:
        raise ValidationError("Invalid transaction type") from exc


def validate_transaction(amount: Any, transaction_type: TransactionType | str) -> Tuple[bool, Optional[str]]:
    """Check raw input without touching the store; returns ``(valid, error)``."""

    try:
        _require_points(amount)
        _coerce_type(transaction_type)
    except ValidationError as exc:
        return False, str(exc)
    return True, None


class PointsLedger:
    """Points balances and history for every user."""

    def __init__(
        self,
        engine: Engine,
        *,
        audit: AuditLog | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = LEDGER_APPEND_ATTEMPTS,
    ) -> None:
        self._engine = engine
        self._logger = logger or StructuredLogger()
        self._audit = audit
        self._clock = clock
        self._max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_balance(self, user_id: int) -> int:
        with Session(self._engine, expire_on_commit=False) as session:
            head = self._head(session, user_id)
        return head.balance_after if head else 0

    def history(
        self,
        user_id: int,
        *,
        transaction_type: TransactionType | str | None = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Page:
        """Return one page of ``user_id``'s transactions, newest first.

        ``start`` and ``end`` are inclusive bounds on ``created_at``; ``limit``
        is clamped to the configured maximum.
        """

        page_value, limit_value = clamp_page(page, limit)
        conditions = [PointTransaction.user_id == user_id]
        if transaction_type is not None:
            conditions.append(PointTransaction.type == _coerce_type(transaction_type))
        if start is not None:
            conditions.append(PointTransaction.created_at >= as_naive_utc(start))
        if end is not None:
            conditions.append(PointTransaction.created_at <= as_naive_utc(end))

        query = (
            select(PointTransaction)
            .where(*conditions)
            .order_by(desc(PointTransaction.created_at), desc(PointTransaction.sequence))
            .offset((page_value - 1) * limit_value)
            .limit(limit_value)
        )
        count_query = select(func.count()).select_from(PointTransaction).where(*conditions)
        with Session(self._engine, expire_on_commit=False) as session:
            items = session.exec(query).all()
            total = session.exec(count_query).one()
        return Page(
            items=tuple(items),
            total=total,
            page=page_value,
            limit=limit_value,
            total_pages=math.ceil(total / limit_value),
        )

    def recent(self, user_id: int, count: int = RECENT_ACTIVITY_COUNT) -> Sequence[PointTransaction]:
        if count < 0:
            raise ValueError("count must not be negative")
        query = (
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(desc(PointTransaction.sequence))
            .limit(count)
        )
        with Session(self._engine, expire_on_commit=False) as session:
            return tuple(session.exec(query).all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def award(
        self,
        user_id: int,
        amount: int,
        description: str,
        actor_id: int,
        transaction_type: TransactionType | str = TransactionType.EARN,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> LedgerResult:
        points = _require_points(amount)
        kind = _coerce_type(transaction_type)
        if kind is TransactionType.SPEND:
            raise ValidationError("Use deduct to spend points")
        result = self._append(user_id, lambda _balance: (points, kind), description, actor_id, metadata)
        self._record(
            actor_id,
            AuditAction.AWARD_POINTS,
            user_id,
            {"amount": points, "description": description, "type": kind.value, "new_balance": result.new_balance},
        )
        return result

    def deduct(
        self,
        user_id: int,
        amount: int,
        description: str,
        actor_id: int,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> LedgerResult:
        points = _require_points(amount)

        def rule(balance: int) -> Tuple[int, TransactionType]:
            if balance < points:
                raise InsufficientBalanceError(
                    f"Insufficient points balance: {balance} available, {points} requested"
                )
            return -points, TransactionType.SPEND

        result = self._append(user_id, rule, description, actor_id, metadata)
        self._record(
            actor_id,
            AuditAction.DEDUCT_POINTS,
            user_id,
            {"amount": points, "description": description, "new_balance": result.new_balance},
        )
        return result

    def adjust(
        self,
        user_id: int,
        delta: int,
        description: str,
        actor_id: int,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> LedgerResult:
        """Apply a signed admin correction; the only path that may go below zero."""

        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidAmountError("Points must be a whole number")
        if delta == 0:
            raise InvalidAmountError("Adjustment must not be zero")
        result = self._append(
            user_id, lambda _balance: (delta, TransactionType.ADJUST), description, actor_id, metadata
        )
        self._record(
            actor_id,
            AuditAction.ADJUST_POINTS,
            user_id,
            {"delta": delta, "description": description, "new_balance": result.new_balance},
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _head(self, session: Session, user_id: int) -> Optional[PointTransaction]:
        query = (
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(desc(PointTransaction.sequence))
            .limit(1)
        )
        return session.exec(query).first()

    def _append(
        self,
        user_id: int,
        rule: AmountRule,
        description: str,
        actor_id: int,
        metadata: Optional[Mapping[str, Any]],
    ) -> LedgerResult:
        if not description or not description.strip():
            raise ValidationError("Description is required")
        for attempt in range(1, self._max_attempts + 1):
            with Session(self._engine, expire_on_commit=False) as session:
                if session.get(User, user_id) is None:
                    raise UserNotFoundError(f"User {user_id} does not exist")
                head = self._head(session, user_id)
                balance = head.balance_after if head else 0
                amount, kind = rule(balance)
                entry = PointTransaction(
                    user_id=user_id,
                    sequence=(head.sequence if head else 0) + 1,
                    type=kind,
                    amount=amount,
                    description=description.strip(),
                    balance_after=balance + amount,
                    created_by=actor_id,
                    metadata_json=dump_json(dict(metadata or {})),
                    created_at=self._clock(),
                )
                session.add(entry)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    self._logger.log(
                        "ledger_append_conflict", user=user_id, sequence=entry.sequence, attempt=attempt
                    )
                    continue
            self._logger.log(
                "ledger_append",
                user=user_id,
                type=kind.value,
                amount=amount,
                balance_after=entry.balance_after,
            )
            return LedgerResult(new_balance=entry.balance_after, transaction=entry)
        raise ConcurrencyConflictError(
            f"Could not append to the ledger of user {user_id} after {self._max_attempts} attempts"
        )

    def _record(self, actor_id: int, action: AuditAction, user_id: int, details: dict) -> None:
        if self._audit is not None:
            self._audit.record(actor_id, action, target_user_id=user_id, details=details)


__all__ = ["PointsLedger", "validate_transaction"]
