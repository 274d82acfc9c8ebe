"""Custom exception hierarchy for the BehaviorBank package.

Every error carries the HTTP status the web layer answers with, so request
handlers never need their own mapping table.
"""

from __future__ import annotations

from decimal import Decimal


class BehaviorBankError(Exception):
    """Base class for all BehaviorBank specific errors."""

    http_status = 400


class ValidationError(BehaviorBankError):
    """Raised when a request is missing a field or carries a malformed value."""


class InvalidAmountError(ValidationError):
    """Raised when an amount that must be positive is zero or negative."""


class InsufficientBalanceError(BehaviorBankError):
    """Raised when a points deduction exceeds the current balance."""


class UserNotFoundError(BehaviorBankError):
    """Raised when a user lookup fails."""

    http_status = 404


class DuplicateUserError(BehaviorBankError):
    """Raised when a user name is already taken."""

    http_status = 409


class AccountNotFoundError(BehaviorBankError):
    """Raised when an account lookup fails."""

    http_status = 404


class DuplicateAccountError(BehaviorBankError):
    """Raised when a user already owns an account."""

    http_status = 409


class AccountLockedError(BehaviorBankError):
    """Raised when an operation targets a locked account."""


class AccountAlreadyWithdrawnError(BehaviorBankError):
    """Raised when an operation targets an account that was paid out."""


class InsufficientVestedFundsError(BehaviorBankError):
    """Raised when a withdrawal request exceeds the vested amount plus interest."""

    def __init__(self, available_amount: Decimal) -> None:
        self.available_amount = available_amount
        super().__init__(f"Only {available_amount:.2f} is available (vested + interest)")


class WithdrawalNotFoundError(BehaviorBankError):
    """Raised when a withdrawal lookup fails."""

    http_status = 404


class AlreadyProcessedError(BehaviorBankError):
    """Raised when a withdrawal was approved or rejected by someone else first."""

    http_status = 409


class ConcurrencyConflictError(BehaviorBankError):
    """Raised when a ledger append keeps losing the race for the next sequence number."""

    http_status = 409


class UnauthorizedError(BehaviorBankError):
    """Raised when no authenticated user is attached to the request."""

    http_status = 401


class ForbiddenError(BehaviorBankError):
    """Raised when the authenticated user lacks the role or ownership required."""

    http_status = 403


class TooManyAttemptsError(BehaviorBankError):
    """Raised when PIN verification is throttled."""

    http_status = 429


__all__ = [
    "AccountAlreadyWithdrawnError",
    "AccountLockedError",
    "AccountNotFoundError",
    "AlreadyProcessedError",
    "BehaviorBankError",
    "ConcurrencyConflictError",
    "DuplicateAccountError",
    "DuplicateUserError",
    "ForbiddenError",
    "InsufficientBalanceError",
    "InsufficientVestedFundsError",
    "InvalidAmountError",
    "TooManyAttemptsError",
    "UnauthorizedError",
    "UserNotFoundError",
    "ValidationError",
    "WithdrawalNotFoundError",
]
