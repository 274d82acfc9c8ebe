"""Withdrawal eligibility and the request/approve/reject workflow.

The available amount of an account is the sum, over its ACTIVE deposits, of
the vested part of each deposit plus simple interest on that vested part.
Interest accrues for the elapsed time capped at the deposit's own vesting
length, at the rate its committed length earns.

Approving or rejecting is a single conditional ``UPDATE`` guarded by the
request still being PENDING, so a request is processed at most once even when
two admins act on it at the same moment.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, desc, select

from .admin import AuditLog
from .exceptions import (
    AccountAlreadyWithdrawnError,
    AccountLockedError,
    AccountNotFoundError,
    AlreadyProcessedError,
    ForbiddenError,
    InsufficientVestedFundsError,
    ValidationError,
    WithdrawalNotFoundError,
)
from .interest import interest, months_elapsed, rate_for
from .models import AccountStatus, Actor, AuditAction, DepositStatus, WithdrawalCheck, WithdrawalStatus, utcnow
from .money import AmountLike, from_cents, positive_cents, round_display, to_decimal
from .ops import StructuredLogger
from .persistence import Account, Deposit, Withdrawal
from .security import require_admin, require_self_or_admin
from .vesting import vest

ZERO = Decimal(0)


def available_from_deposits(deposits: Iterable[Deposit], now: datetime) -> Decimal:
    """Sum vested principal plus interest over ``deposits`` at ``now``."""

    total = ZERO
    for deposit in deposits:
        vested = vest(from_cents(deposit.amount_cents), deposit.created_at, deposit.vesting_months, now)
        elapsed = max(ZERO, months_elapsed(deposit.created_at, now))
        months = min(Decimal(deposit.vesting_months), elapsed)
        total += vested.vested_amount + interest(vested.vested_amount, rate_for(deposit.vesting_months), months)
    return total


def _ensure_open(account: Optional[Account]) -> Account:
    if account is None:
        raise AccountNotFoundError("Account not found")
    if account.status is AccountStatus.LOCKED:
        raise AccountLockedError("Account is locked")
    if account.status is AccountStatus.WITHDRAWN:
        raise AccountAlreadyWithdrawnError("Account has already been withdrawn")
    return account


class WithdrawalService:
    """Decide and record withdrawals against vested deposits."""

    def __init__(
        self,
        engine: Engine,
        *,
        audit: AuditLog | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._audit = audit
        self._logger = logger or StructuredLogger()
        self._clock = clock

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------
    def compute_available(self, account_id: int, now: Optional[datetime] = None) -> Decimal:
        moment = now or self._clock()
        with Session(self._engine, expire_on_commit=False) as session:
            _ensure_open(session.get(Account, account_id))
            deposits = session.exec(
                select(Deposit).where(
                    Deposit.account_id == account_id,
                    Deposit.status == DepositStatus.ACTIVE,
                )
            ).all()
        return available_from_deposits(deposits, moment)

    def can_withdraw(
        self,
        account_id: int,
        requested_amount: AmountLike,
        now: Optional[datetime] = None,
    ) -> WithdrawalCheck:
        """Check ``requested_amount`` against what is available.

        Missing, locked and paid-out accounts never allow anything and report
        zero available.
        """

        requested = to_decimal(requested_amount)
        try:
            available = self.compute_available(account_id, now)
        except (AccountNotFoundError, AccountLockedError, AccountAlreadyWithdrawnError) as exc:
            return WithdrawalCheck(allowed=False, available_amount=ZERO, reason=str(exc))
        if requested > available:
            return WithdrawalCheck(
                allowed=False,
                available_amount=available,
                reason=str(InsufficientVestedFundsError(available)),
            )
        return WithdrawalCheck(allowed=True, available_amount=available)

    def available_balance(self, account_id: int, now: Optional[datetime] = None) -> Decimal:
        return self.can_withdraw(account_id, 0, now).available_amount

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------
    def request_withdrawal(
        self,
        actor: Actor,
        account_id: int,
        amount: AmountLike,
        reason: str,
    ) -> Withdrawal:
        cents = positive_cents(amount)
        value = from_cents(cents)
        if not reason or not reason.strip():
            raise ValidationError("accountId, amount, and reason are required")
        with Session(self._engine, expire_on_commit=False) as session:
            account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError("Account not found")
        if account.user_id != actor.user_id:
            raise ForbiddenError("Access denied")

        now = self._clock()
        available = self.compute_available(account_id, now)
        if value > available:
            self._logger.log(
                "withdrawal_denied",
                account=account_id,
                requested=str(value),
                available=str(round_display(available)),
            )
            raise InsufficientVestedFundsError(available)

        withdrawal = Withdrawal(
            account_id=account_id,
            requested_by=actor.user_id,
            amount_cents=cents,
            reason=reason.strip(),
            status=WithdrawalStatus.PENDING,
            created_at=now,
        )
        with Session(self._engine, expire_on_commit=False) as session:
            session.add(withdrawal)
            session.commit()
            session.refresh(withdrawal)
        self._logger.log("withdrawal_requested", withdrawal=withdrawal.id, account=account_id, amount_cents=withdrawal.amount_cents)
        self._record(
            actor.user_id,
            AuditAction.REQUEST_WITHDRAWAL,
            account.user_id,
            {
                "withdrawal_id": withdrawal.id,
                "amount_cents": withdrawal.amount_cents,
                "reason": withdrawal.reason,
                "account_id": account_id,
            },
        )
        return withdrawal

    def approve(self, actor: Actor, withdrawal_id: int, notes: Optional[str] = None) -> Withdrawal:
        require_admin(actor)
        withdrawal = self._transition(actor, withdrawal_id, WithdrawalStatus.APPROVED, notes)
        self._record(
            actor.user_id,
            AuditAction.APPROVE_WITHDRAWAL,
            withdrawal.requested_by,
            {"withdrawal_id": withdrawal.id, "amount_cents": withdrawal.amount_cents, "notes": withdrawal.notes},
        )
        return withdrawal

    def reject(self, actor: Actor, withdrawal_id: int, notes: str) -> Withdrawal:
        require_admin(actor)
        if not notes or not notes.strip():
            raise ValidationError("Notes are required when rejecting a withdrawal")
        withdrawal = self._transition(actor, withdrawal_id, WithdrawalStatus.REJECTED, notes)
        self._record(
            actor.user_id,
            AuditAction.REJECT_WITHDRAWAL,
            withdrawal.requested_by,
            {"withdrawal_id": withdrawal.id, "amount_cents": withdrawal.amount_cents, "notes": withdrawal.notes},
        )
        return withdrawal

    def get_withdrawal(self, actor: Actor, withdrawal_id: int) -> Withdrawal:
        with Session(self._engine, expire_on_commit=False) as session:
            withdrawal = session.get(Withdrawal, withdrawal_id)
        if withdrawal is None:
            raise WithdrawalNotFoundError("Withdrawal not found")
        require_self_or_admin(actor, withdrawal.requested_by)
        return withdrawal

    def list_withdrawals(
        self,
        actor: Actor,
        *,
        status: WithdrawalStatus | str | None = None,
        user_id: Optional[int] = None,
    ) -> Sequence[Withdrawal]:
        """Newest first; children only ever see their own requests."""

        query = select(Withdrawal)
        if status is not None:
            try:
                query = query.where(Withdrawal.status == WithdrawalStatus(status))
            except ValueError as exc:
                raise ValidationError("Invalid withdrawal status") from exc
        owner = user_id if actor.is_admin else actor.user_id
        if owner is not None:
            query = query.where(Withdrawal.requested_by == owner)
        query = query.order_by(desc(Withdrawal.created_at), desc(Withdrawal.id))
        with Session(self._engine, expire_on_commit=False) as session:
            return tuple(session.exec(query).all())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _transition(
        self,
        actor: Actor,
        withdrawal_id: int,
        status: WithdrawalStatus,
        notes: Optional[str],
    ) -> Withdrawal:
        statement = (
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status == WithdrawalStatus.PENDING)
            .values(
                status=status,
                processed_by=actor.user_id,
                processed_at=self._clock(),
                notes=notes.strip() if notes else None,
            )
        )
        with Session(self._engine, expire_on_commit=False) as session:
            result = session.exec(statement)
            if result.rowcount == 0:
                session.rollback()
                current = session.get(Withdrawal, withdrawal_id)
                if current is None:
                    raise WithdrawalNotFoundError("Withdrawal not found")
                self._logger.log(
                    "withdrawal_conflict", withdrawal=withdrawal_id, status=current.status.value, wanted=status.value
                )
                raise AlreadyProcessedError("Withdrawal has already been processed")
            session.commit()
            withdrawal = session.get(Withdrawal, withdrawal_id)
        self._logger.log("withdrawal_processed", withdrawal=withdrawal_id, status=status.value, actor=actor.user_id)
        return withdrawal

    def _record(self, actor_id: int, action: AuditAction, user_id: Optional[int], details: dict) -> None:
        if self._audit is not None:
            self._audit.record(actor_id, action, target_user_id=user_id, details=details)


__all__ = ["WithdrawalService", "available_from_deposits"]
