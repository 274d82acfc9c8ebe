import os
from datetime import datetime, timedelta

os.environ["BEHAVIORBANK_DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SESSION_SECRET", "test-session-secret")

import pytest  # noqa: E402

from behaviorbank.accounts import AccountDirectory  # noqa: E402
from behaviorbank.admin import AuditLog  # noqa: E402
from behaviorbank.ledger import PointsLedger  # noqa: E402
from behaviorbank.models import Actor, Role  # noqa: E402
from behaviorbank.ops import StructuredLogger  # noqa: E402
from behaviorbank.persistence import create_db_and_tables, drop_db_and_tables, make_engine  # noqa: E402
from behaviorbank.withdrawals import WithdrawalService  # noqa: E402

START = datetime(2024, 1, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    db = make_engine("sqlite://")
    create_db_and_tables(db)
    yield db
    drop_db_and_tables(db)
    db.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger()


@pytest.fixture
def audit(engine, logger) -> AuditLog:
    return AuditLog(engine, logger=logger)


@pytest.fixture
def directory(engine, audit, logger, clock) -> AccountDirectory:
    return AccountDirectory(engine, audit=audit, logger=logger, clock=clock)


@pytest.fixture
def ledger(engine, audit, logger, clock) -> PointsLedger:
    return PointsLedger(engine, audit=audit, logger=logger, clock=clock)


@pytest.fixture
def withdrawals(engine, audit, logger, clock) -> WithdrawalService:
    return WithdrawalService(engine, audit=audit, logger=logger, clock=clock)


@pytest.fixture
def admin(directory) -> Actor:
    user, _ = directory.ensure_user("mom", Role.ADMIN, "4321")
    return Actor(user_id=user.id, role=user.role, name=user.name)


@pytest.fixture
def child(directory) -> Actor:
    user, _ = directory.ensure_user("ava", Role.CHILD, "1111")
    return Actor(user_id=user.id, role=user.role, name=user.name)
