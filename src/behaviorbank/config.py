"""Configuration constants for BehaviorBank."""
from __future__ import annotations

import os
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.environ.get("BEHAVIORBANK_DATABASE_URL", "sqlite:///behaviorbank.db")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SESSION_COOKIE_NAME = "behavior_bank_session"
_LOG_PATH_RAW = os.environ.get("BEHAVIORBANK_LOG_PATH", "")
LOG_PATH: Optional[Path] = Path(_LOG_PATH_RAW) if _LOG_PATH_RAW else None

# Vesting & interest
BASE_ANNUAL_RATE = Decimal(os.environ.get("BEHAVIORBANK_BASE_RATE", "0.05"))
AVERAGE_MONTH_DAYS = Decimal("30.44")
DEFAULT_VESTING_MONTHS = 12
MAX_VESTING_MONTHS = 60

# Dashboard valuation
DASHBOARD_MONTH_DAYS = 30
DASHBOARD_MIN_MONTHS = 6
DASHBOARD_STARTING_RATE = 20
DASHBOARD_RATE_STEP = 10
PENALTY_DEPOSIT_SHARE = Decimal("0.5")
RECENT_ACTIVITY_COUNT = 10

# Pagination
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100

# Ledger
LEDGER_APPEND_ATTEMPTS = 5

# Security
PIN_MIN_LENGTH = 4
PIN_HASH_ROUNDS = 10
PIN_MAX_ATTEMPTS = 5
PIN_LOCKOUT_WINDOW = timedelta(minutes=15)

# Seed data
SEED_PIN = os.environ.get("BEHAVIORBANK_SEED_PIN", "1234")
SEED_DEPOSIT = Decimal("10000")

__all__ = [
    "AVERAGE_MONTH_DAYS",
    "BASE_ANNUAL_RATE",
    "DASHBOARD_MIN_MONTHS",
    "DASHBOARD_MONTH_DAYS",
    "DASHBOARD_RATE_STEP",
    "DASHBOARD_STARTING_RATE",
    "DATABASE_URL",
    "DEFAULT_LIMIT",
    "DEFAULT_PAGE",
    "DEFAULT_VESTING_MONTHS",
    "LEDGER_APPEND_ATTEMPTS",
    "LOG_PATH",
    "MAX_LIMIT",
    "MAX_VESTING_MONTHS",
    "PENALTY_DEPOSIT_SHARE",
    "PIN_HASH_ROUNDS",
    "PIN_LOCKOUT_WINDOW",
    "PIN_MAX_ATTEMPTS",
    "PIN_MIN_LENGTH",
    "RECENT_ACTIVITY_COUNT",
    "SEED_DEPOSIT",
    "SEED_PIN",
    "SESSION_COOKIE_NAME",
    "SESSION_SECRET",
]
