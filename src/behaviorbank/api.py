"""API helpers for BehaviorBank."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Dict, Optional

from .models import Valuation, WithdrawalCheck
from .money import from_cents, round_display
from .persistence import Account, AuditRecord, Deposit, PointTransaction, User, Withdrawal


def _timestamp(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _money(cents: int) -> float:
    return float(from_cents(cents))


class ApiExporter:
    """Convert BehaviorBank records to JSON friendly dictionaries."""

    def user(self, user: User) -> Dict[str, object]:
        return {
            "id": user.id,
            "name": user.name,
            "role": user.role.value,
            "is_active": user.is_active,
            "created_at": _timestamp(user.created_at),
        }

    def account(
        self,
        account: Account,
        *,
        points_balance: Optional[int] = None,
        available_balance: Optional[Decimal] = None,
    ) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "id": account.id,
            "user_id": account.user_id,
            "deposit_amount": _money(account.deposit_cents),
            "vesting_start": _timestamp(account.vesting_start),
            "status": account.status.value,
            "created_at": _timestamp(account.created_at),
        }
        if points_balance is not None:
            payload["points_balance"] = points_balance
        if available_balance is not None:
            payload["available_balance"] = float(round_display(available_balance))
        return payload

    def deposit(self, deposit: Deposit) -> Dict[str, object]:
        return {
            "id": deposit.id,
            "account_id": deposit.account_id,
            "amount": _money(deposit.amount_cents),
            "deposited_by": deposit.deposited_by,
            "vesting_months": deposit.vesting_months,
            "status": deposit.status.value,
            "created_at": _timestamp(deposit.created_at),
        }

    def transaction(self, transaction: PointTransaction) -> Dict[str, object]:
        return {
            "id": transaction.id,
            "user_id": transaction.user_id,
            "sequence": transaction.sequence,
            "type": transaction.type.value,
            "amount": transaction.amount,
            "description": transaction.description,
            "balance_after": transaction.balance_after,
            "created_by": transaction.created_by,
            "metadata": transaction.extra,
            "created_at": _timestamp(transaction.created_at),
        }

    def withdrawal(self, withdrawal: Withdrawal) -> Dict[str, object]:
        return {
            "id": withdrawal.id,
            "account_id": withdrawal.account_id,
            "requested_by": withdrawal.requested_by,
            "amount": _money(withdrawal.amount_cents),
            "reason": withdrawal.reason,
            "status": withdrawal.status.value,
            "processed_by": withdrawal.processed_by,
            "processed_at": _timestamp(withdrawal.processed_at),
            "notes": withdrawal.notes,
            "created_at": _timestamp(withdrawal.created_at),
        }

    def audit_record(self, record: AuditRecord) -> Dict[str, object]:
        return {
            "id": record.id,
            "actor_id": record.actor_id,
            "action": record.action.value,
            "target_user_id": record.target_user_id,
            "details": record.details,
            "created_at": _timestamp(record.created_at),
        }

    def withdrawal_check(self, check: WithdrawalCheck) -> Dict[str, object]:
        return {
            "allowed": check.allowed,
            "available_amount": float(round_display(check.available_amount)),
            "reason": check.reason,
        }

    def valuation(self, valuation: Valuation, current_points: int) -> Dict[str, object]:
        return {
            "current_points": current_points,
            "estimated_value": valuation.estimated_value,
            "interest_rate": valuation.interest_rate,
            "months_elapsed": valuation.months_elapsed,
            "is_penalty": valuation.is_penalty,
        }

    def to_json(self, payload: Dict[str, object]) -> str:
        return json.dumps(payload, sort_keys=True)


__all__ = ["ApiExporter"]
