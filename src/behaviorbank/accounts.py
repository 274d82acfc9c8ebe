"""Users, accounts and deposits.

This is the collaborator that owns ``Account.deposit_cents``: every deposit is
inserted in the same transaction that adds its amount to the account total,
so the total always equals the sum of the account's deposits.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, desc, select

from .admin import AuditLog
from .config import DEFAULT_VESTING_MONTHS, MAX_VESTING_MONTHS, SEED_DEPOSIT, SEED_PIN
from .exceptions import (
    AccountNotFoundError,
    DuplicateAccountError,
    DuplicateUserError,
    UserNotFoundError,
    ValidationError,
)
from .models import AccountStatus, Actor, AuditAction, DepositStatus, Role, as_naive_utc, utcnow
from .money import AmountLike, positive_cents
from .ops import StructuredLogger
from .persistence import Account, Deposit, User
from .security import hash_pin, parse_role, require_admin, require_self_or_admin, verify_pin


def _validate_vesting_months(value: Optional[int]) -> int:
    if value is None:
        return DEFAULT_VESTING_MONTHS
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("vesting_months must be a whole number")
    if not 0 <= value <= MAX_VESTING_MONTHS:
        raise ValidationError(f"vesting_months must be between 0 and {MAX_VESTING_MONTHS}")
    return value


class AccountDirectory:
    """Create and look up users, their accounts and the deposits behind them."""

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
    # Users
    # ------------------------------------------------------------------
    def create_user(
        self,
        actor: Actor,
        name: str,
        role: Role | str,
        pin: str,
        *,
        deposit_amount: AmountLike = 0,
    ) -> Tuple[User, Optional[Account]]:
        """Create a user; children get an account right away."""

        require_admin(actor)
        user, account = self._create_user(name, role, pin, deposit_amount=deposit_amount, created_by=actor.user_id)
        self._record(
            actor.user_id,
            AuditAction.CREATE_USER,
            user.id,
            {"name": user.name, "role": user.role.value, "account_id": account.id if account else None},
        )
        return user, account

    def ensure_user(
        self,
        name: str,
        role: Role | str,
        pin: str,
        *,
        deposit_amount: AmountLike = 0,
    ) -> Tuple[User, bool]:
        """Return the user called ``name``, creating it when missing. Used for seeding."""

        existing = self.find_user(name)
        if existing is not None:
            return existing, False
        user, _ = self._create_user(name, role, pin, deposit_amount=deposit_amount, created_by=None)
        return user, True

    def seed_demo(self) -> Dict[str, str]:
        """Create the ``admin`` and ``child`` demo users and the child's account when absent."""

        results: Dict[str, str] = {}
        _, created = self.ensure_user("admin", Role.ADMIN, SEED_PIN)
        results["admin"] = f"Created (admin / {SEED_PIN})" if created else "Already exists"
        child, created = self.ensure_user("child", Role.CHILD, SEED_PIN, deposit_amount=SEED_DEPOSIT)
        results["child"] = f"Created (child / {SEED_PIN})" if created else "Already exists"
        if created:
            results["account"] = f"Created with {SEED_DEPOSIT:,.0f} deposit"
        elif self.account_for_user(child.id) is None:
            with Session(self._engine, expire_on_commit=False) as session:
                self._open_account(session, child.id, SEED_DEPOSIT, None, child.id)
                session.commit()
            results["account"] = f"Created with {SEED_DEPOSIT:,.0f} deposit"
        else:
            results["account"] = "Already exists"
        self._logger.log("seeded", **results)
        return results

    def get_user(self, user_id: int) -> User:
        with Session(self._engine, expire_on_commit=False) as session:
            user = session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} does not exist")
        return user

    def find_user(self, name: str) -> Optional[User]:
        with Session(self._engine, expire_on_commit=False) as session:
            return session.exec(select(User).where(User.name == name.strip())).first()

    def list_users(self) -> Sequence[User]:
        with Session(self._engine, expire_on_commit=False) as session:
            return tuple(session.exec(select(User).order_by(User.id)).all())

    def authenticate(self, name: str, pin: str) -> Optional[User]:
        """Return the active user matching ``name`` and ``pin``, else ``None``."""

        user = self.find_user(name)
        if user is None or not user.is_active:
            return None
        if not verify_pin(pin, user.pin_hash):
            return None
        return user

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def open_account(
        self,
        actor: Actor,
        user_id: int,
        *,
        deposit_amount: AmountLike = 0,
        vesting_start: Optional[datetime] = None,
    ) -> Account:
        require_admin(actor)
        with Session(self._engine, expire_on_commit=False) as session:
            account = self._open_account(session, user_id, deposit_amount, vesting_start, actor.user_id)
            session.commit()
        self._logger.log("account_opened", user=user_id, account=account.id, deposit_cents=account.deposit_cents)
        self._record(
            actor.user_id,
            AuditAction.CREATE_ACCOUNT,
            user_id,
            {"account_id": account.id, "deposit_cents": account.deposit_cents},
        )
        return account

    def get_account(self, account_id: int) -> Account:
        with Session(self._engine, expire_on_commit=False) as session:
            account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} does not exist")
        return account

    def account_for_user(self, user_id: int) -> Optional[Account]:
        with Session(self._engine, expire_on_commit=False) as session:
            return session.exec(select(Account).where(Account.user_id == user_id)).first()

    def list_accounts(self) -> Sequence[Account]:
        with Session(self._engine, expire_on_commit=False) as session:
            return tuple(session.exec(select(Account).order_by(Account.id)).all())

    def set_status(self, actor: Actor, account_id: int, status: AccountStatus | str) -> Account:
        require_admin(actor)
        try:
            new_status = AccountStatus(status)
        except ValueError as exc:
            raise ValidationError("Invalid account status") from exc
        with Session(self._engine, expire_on_commit=False) as session:
            account = session.get(Account, account_id)
            if account is None:
                raise AccountNotFoundError(f"Account {account_id} does not exist")
            old_status = account.status
            account.status = new_status
            session.add(account)
            session.commit()
        self._logger.log("account_status", account=account_id, status=new_status.value)
        self._record(
            actor.user_id,
            AuditAction.UPDATE_ACCOUNT,
            account.user_id,
            {"account_id": account_id, "old": old_status.value, "new": new_status.value},
        )
        return account

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------
    def create_deposit(
        self,
        actor: Actor,
        account_id: int,
        amount: AmountLike,
        *,
        vesting_months: Optional[int] = None,
    ) -> Tuple[Deposit, Account]:
        """Record an admin deposit and add it to the account total."""

        require_admin(actor)
        cents = positive_cents(amount)
        months = _validate_vesting_months(vesting_months)
        with Session(self._engine, expire_on_commit=False) as session:
            account = session.get(Account, account_id)
            if account is None:
                raise AccountNotFoundError(f"Account {account_id} does not exist")
            deposit = self._add_deposit(session, account.id, cents, months, actor.user_id)
            session.commit()
            session.refresh(account)
        self._logger.log(
            "deposit_created", account=account_id, amount_cents=cents, vesting_months=months
        )
        self._record(
            actor.user_id,
            AuditAction.CREATE_DEPOSIT,
            account.user_id,
            {"deposit_id": deposit.id, "amount_cents": cents, "vesting_months": months, "account_id": account_id},
        )
        return deposit, account

    def deposits(self, actor: Actor, account_id: int) -> Sequence[Deposit]:
        account = self.get_account(account_id)
        require_self_or_admin(actor, account.user_id)
        query = select(Deposit).where(Deposit.account_id == account_id).order_by(desc(Deposit.created_at))
        with Session(self._engine, expire_on_commit=False) as session:
            return tuple(session.exec(query).all())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _create_user(
        self,
        name: str,
        role: Role | str,
        pin: str,
        *,
        deposit_amount: AmountLike,
        created_by: Optional[int],
    ) -> Tuple[User, Optional[Account]]:
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationError("Name, role, and PIN are required")
        user_role = role if isinstance(role, Role) else parse_role(role)
        user = User(name=clean_name, role=user_role, pin_hash=hash_pin(pin or ""), created_at=self._clock())
        account: Optional[Account] = None
        with Session(self._engine, expire_on_commit=False) as session:
            if session.exec(select(User).where(User.name == clean_name)).first() is not None:
                raise DuplicateUserError(f"User '{clean_name}' already exists")
            session.add(user)
            try:
                session.flush()
                if user_role is Role.CHILD:
                    account = self._open_account(session, user.id, deposit_amount, None, created_by or user.id)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateUserError(f"User '{clean_name}' already exists") from exc
        self._logger.log("user_created", user=user.id, role=user_role.value)
        return user, account

    def _open_account(
        self,
        session: Session,
        user_id: int,
        deposit_amount: AmountLike,
        vesting_start: Optional[datetime],
        actor_id: int,
    ) -> Account:
        if session.get(User, user_id) is None:
            raise UserNotFoundError(f"User {user_id} does not exist")
        if session.exec(select(Account).where(Account.user_id == user_id)).first() is not None:
            raise DuplicateAccountError(f"User {user_id} already has an account")
        cents = positive_cents(deposit_amount, allow_zero=True)
        now = self._clock()
        account = Account(user_id=user_id, deposit_cents=0, vesting_start=as_naive_utc(vesting_start) if vesting_start else now, created_at=now)
        session.add(account)
        session.flush()
        if cents > 0:
            self._add_deposit(session, account.id, cents, DEFAULT_VESTING_MONTHS, actor_id, created_at=account.vesting_start)
        session.refresh(account)
        return account

    def _add_deposit(
        self,
        session: Session,
        account_id: int,
        cents: int,
        vesting_months: int,
        actor_id: int,
        *,
        created_at: Optional[datetime] = None,
    ) -> Deposit:
        deposit = Deposit(
            account_id=account_id,
            amount_cents=cents,
            deposited_by=actor_id,
            vesting_months=vesting_months,
            status=DepositStatus.ACTIVE,
            created_at=created_at or self._clock(),
        )
        session.add(deposit)
        session.exec(
            update(Account)
            .where(Account.id == account_id)
            .values(deposit_cents=Account.deposit_cents + cents)
        )
        session.flush()
        return deposit

    def _record(self, actor_id: int, action: AuditAction, user_id: Optional[int], details: dict) -> None:
        if self._audit is not None:
            self._audit.record(actor_id, action, target_user_id=user_id, details=details)


__all__ = ["AccountDirectory"]
