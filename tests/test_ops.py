import json
from datetime import datetime, timedelta

import pytest

from behaviorbank.admin import AuditLog, clamp_page
from behaviorbank.exceptions import ForbiddenError, TooManyAttemptsError, ValidationError
from behaviorbank.models import Actor, AuditAction, Role
from behaviorbank.ops import HealthMonitor, StructuredLogger
from behaviorbank.persistence import drop_db_and_tables
from behaviorbank.security import (
    PinThrottle,
    hash_pin,
    parse_role,
    require_admin,
    require_self_or_admin,
    verify_pin,
)


def test_structured_logger_writes_json_lines(tmp_path) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    logger = StructuredLogger(path=path, keep=2)
    logger.log("first", user=1)
    logger.log("second", user=2)
    logger.log("third", user=3)

    assert [entry["event"] for entry in logger.tail()] == ["second", "third"]
    assert logger.tail(event="third")[0]["user"] == 3
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["event"] for line in lines] == ["first", "second", "third"]


def test_health_monitor(engine) -> None:
    assert HealthMonitor(engine).status() == {"status": "ok", "db": "connected"}


def test_audit_log_pages_newest_first(audit) -> None:
    for index in range(3):
        audit.record(
            1,
            AuditAction.AWARD_POINTS,
            target_user_id=2,
            details={"n": index},
            timestamp=datetime(2024, 1, 1) + timedelta(minutes=index),
        )
    audit.record(Actor(user_id=7, role=Role.ADMIN), AuditAction.LOGIN)

    page = audit.entries(action=AuditAction.AWARD_POINTS, limit=2)
    assert page.total == 3
    assert page.total_pages == 2
    assert [entry.details["n"] for entry in page.items] == [2, 1]
    assert audit.entries(actor_id=7).items[0].action is AuditAction.LOGIN


def test_audit_failures_are_logged_not_raised(engine, logger) -> None:
    audit = AuditLog(engine, logger=logger)
    drop_db_and_tables(engine)
    assert audit.record(1, AuditAction.LOGOUT) is None
    failure = logger.tail(event="audit_write_failed")[0]
    assert failure["action"] == "LOGOUT"


def test_clamp_page() -> None:
    assert clamp_page(None, None) == (1, 20)
    assert clamp_page(-3, 0) == (1, 20)
    assert clamp_page(4, 1000) == (4, 100)


def test_role_guards() -> None:
    parent = Actor(user_id=1, role=Role.ADMIN)
    kid = Actor(user_id=2, role=Role.CHILD)
    assert require_admin(parent) is parent
    assert require_self_or_admin(parent, 2) is parent
    assert require_self_or_admin(kid, 2) is kid
    with pytest.raises(ForbiddenError):
        require_admin(kid)
    with pytest.raises(ForbiddenError):
        require_self_or_admin(kid, 1)


def test_parse_role() -> None:
    assert parse_role(" child ") is Role.CHILD
    with pytest.raises(ValidationError):
        parse_role("GUEST")


def test_pin_hashing() -> None:
    hashed = hash_pin("2468")
    assert hashed != hash_pin("2468")
    assert hashed.startswith("$2b$")
    assert verify_pin("2468", hashed)
    assert not verify_pin("2469", hashed)
    assert not verify_pin("2468", "not-a-hash")
    with pytest.raises(ValidationError):
        hash_pin("123")


def test_pin_throttle_locks_and_recovers() -> None:
    throttle = PinThrottle(max_attempts=2, lockout_window=timedelta(minutes=10))
    start = datetime(2024, 1, 1)
    throttle.record("ava", success=False, at=start)
    throttle.check("ava", at=start)
    throttle.record("ava", success=False, at=start + timedelta(minutes=1))
    with pytest.raises(TooManyAttemptsError):
        throttle.check("ava", at=start + timedelta(minutes=2))
    assert throttle.is_locked("ava", at=start + timedelta(minutes=12)) is False

    throttle.record("ben", success=False, at=start)
    throttle.record("ben", success=True, at=start)
    assert throttle.is_locked("ben", at=start) is False
