"""Authorization and PIN helpers for BehaviorBank."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from threading import Lock
from typing import Deque, Dict, Optional

import bcrypt

from .config import PIN_HASH_ROUNDS, PIN_LOCKOUT_WINDOW, PIN_MAX_ATTEMPTS, PIN_MIN_LENGTH
from .exceptions import ForbiddenError, TooManyAttemptsError, ValidationError
from .models import Actor, Role, utcnow


# ------------------------------------------------------------------
# Role checks
# ------------------------------------------------------------------
def require_admin(actor: Actor) -> Actor:
    if actor.role is Role.ADMIN:
        return actor
    if actor.role is Role.CHILD:
        raise ForbiddenError("Admin access required")
    raise ForbiddenError(f"Unknown role {actor.role!r}")


def require_self_or_admin(actor: Actor, user_id: int) -> Actor:
    """Allow admins everywhere and children only on their own records."""

    if actor.role is Role.ADMIN:
        return actor
    if actor.role is Role.CHILD:
        if actor.user_id != user_id:
            raise ForbiddenError("Access denied")
        return actor
    raise ForbiddenError(f"Unknown role {actor.role!r}")


def parse_role(raw: str) -> Role:
    try:
        return Role(str(raw).strip().upper())
    except ValueError as exc:
        raise ValidationError("Invalid role. Must be ADMIN or CHILD") from exc


# ------------------------------------------------------------------
# PIN hashing
# ------------------------------------------------------------------
def hash_pin(pin: str) -> str:
    """Hash ``pin`` with bcrypt. Returns a utf-8 hash string."""

    if len(pin) < PIN_MIN_LENGTH:
        raise ValidationError(f"PIN must be at least {PIN_MIN_LENGTH} characters")
    hashed: bytes = bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt(rounds=PIN_HASH_ROUNDS))
    return hashed.decode("utf-8")


def verify_pin(pin: str, pin_hash: str) -> bool:
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), pin_hash.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False


# ------------------------------------------------------------------
# Rate limiting
# ------------------------------------------------------------------
class PinThrottle:
    """Lock a login name out after repeated failed PIN attempts."""

    def __init__(
        self,
        *,
        max_attempts: int = PIN_MAX_ATTEMPTS,
        lockout_window: timedelta = PIN_LOCKOUT_WINDOW,
    ) -> None:
        self._max_attempts = max_attempts
        self._lockout_window = lockout_window
        self._attempts: Dict[str, Deque[datetime]] = {}
        self._lock = Lock()

    def check(self, name: str, *, at: Optional[datetime] = None) -> None:
        """Raise :class:`TooManyAttemptsError` when ``name`` is locked out."""

        if self.is_locked(name, at=at):
            raise TooManyAttemptsError("Too many failed attempts, try again later")

    def is_locked(self, name: str, *, at: Optional[datetime] = None) -> bool:
        now = at or utcnow()
        with self._lock:
            bucket = self._attempts.get(name)
            if not bucket:
                return False
            self._prune(bucket, now)
            return len(bucket) >= self._max_attempts

    def record(self, name: str, *, success: bool, at: Optional[datetime] = None) -> None:
        now = at or utcnow()
        with self._lock:
            bucket = self._attempts.setdefault(name, deque())
            self._prune(bucket, now)
            if success:
                bucket.clear()
            else:
                bucket.append(now)

    def _prune(self, bucket: Deque[datetime], now: datetime) -> None:
        while bucket and now - bucket[0] > self._lockout_window:
            bucket.popleft()


__all__ = [
    "PinThrottle",
    "hash_pin",
    "parse_role",
    "require_admin",
    "require_self_or_admin",
    "verify_pin",
]
