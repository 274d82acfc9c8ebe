"""BehaviorBank package: points, vesting deposits and withdrawals for a household."""

from .accounts import AccountDirectory
from .admin import AuditLog
from .api import ApiExporter
from .dashboard import DashboardService, valuate
from .exceptions import (
    AccountAlreadyWithdrawnError,
    AccountLockedError,
    AccountNotFoundError,
    AlreadyProcessedError,
    BehaviorBankError,
    ConcurrencyConflictError,
    ForbiddenError,
    InsufficientBalanceError,
    InsufficientVestedFundsError,
    InvalidAmountError,
    UnauthorizedError,
    ValidationError,
    WithdrawalNotFoundError,
)
from .interest import interest, rate_for
from .ledger import PointsLedger, validate_transaction
from .models import (
    AccountStatus,
    Actor,
    DepositStatus,
    LedgerResult,
    Page,
    Role,
    TransactionType,
    Valuation,
    VestingResult,
    WithdrawalCheck,
    WithdrawalStatus,
)
from .ops import HealthMonitor, StructuredLogger
from .vesting import vest
from .withdrawals import WithdrawalService

__all__ = [
    "AccountAlreadyWithdrawnError",
    "AccountDirectory",
    "AccountLockedError",
    "AccountNotFoundError",
    "AccountStatus",
    "Actor",
    "AlreadyProcessedError",
    "ApiExporter",
    "AuditLog",
    "BehaviorBankError",
    "ConcurrencyConflictError",
    "DashboardService",
    "DepositStatus",
    "ForbiddenError",
    "HealthMonitor",
    "InsufficientBalanceError",
    "InsufficientVestedFundsError",
    "InvalidAmountError",
    "LedgerResult",
    "Page",
    "PointsLedger",
    "Role",
    "StructuredLogger",
    "TransactionType",
    "UnauthorizedError",
    "Valuation",
    "ValidationError",
    "VestingResult",
    "WithdrawalCheck",
    "WithdrawalService",
    "WithdrawalStatus",
    "interest",
    "rate_for",
    "validate_transaction",
    "valuate",
    "vest",
]
