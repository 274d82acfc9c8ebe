"""FastAPI frontend for BehaviorBank.

A JSON API over the points ledger, deposits and the withdrawal workflow. The
signed-in user lives in a Starlette session cookie; every service below shares
the module-level engine so ``uvicorn behaviorbank.webapp:app`` needs no setup
beyond the environment read by :mod:`behaviorbank.config`.
"""

from __future__ import annotations

import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import Session, SQLModel
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import Response

from ..accounts import AccountDirectory
from ..admin import AuditLog
from ..api import ApiExporter
from ..config import LOG_PATH, SESSION_COOKIE_NAME, SESSION_SECRET
from ..dashboard import DashboardService
from ..exceptions import (
    AccountNotFoundError,
    BehaviorBankError,
    InsufficientVestedFundsError,
    UnauthorizedError,
    ValidationError,
)
from ..ledger import PointsLedger
from ..models import Actor, AuditAction, TransactionType, utcnow
from ..money import round_display
from ..ops import HealthMonitor, StructuredLogger
from ..persistence import User, create_db_and_tables, engine
from ..security import PinThrottle, require_admin, require_self_or_admin
from ..withdrawals import WithdrawalService

_time_provider: Callable[[], datetime] = utcnow


def now_utc() -> datetime:
    """Return naive UTC time using the configured provider."""

    return _time_provider()


create_db_and_tables()

logger = StructuredLogger(path=LOG_PATH)
audit = AuditLog(engine, logger=logger)
exporter = ApiExporter()
health = HealthMonitor(engine)
pin_throttle = PinThrottle()
directory = AccountDirectory(engine, audit=audit, logger=logger, clock=now_utc)
ledger = PointsLedger(engine, audit=audit, logger=logger, clock=now_utc)
withdrawals = WithdrawalService(engine, audit=audit, logger=logger, clock=now_utc)
dashboard = DashboardService(engine, ledger, exporter=exporter, clock=now_utc)


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        logger.log(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return response


# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
app = FastAPI(title="Behavior Bank")
app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    session_cookie=SESSION_COOKIE_NAME,
    same_site="lax",
    max_age=None,
)


@app.exception_handler(BehaviorBankError)
async def behaviorbank_error_handler(request: Request, exc: BehaviorBankError) -> JSONResponse:
    payload: Dict[str, Any] = {"error": str(exc)}
    if isinstance(exc, InsufficientVestedFundsError):
        payload["available_amount"] = float(round_display(exc.available_amount))
    logger.log("request_error", path=request.url.path, status=exc.http_status, error=type(exc).__name__)
    return JSONResponse(payload, status_code=exc.http_status)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    logger.log("request_invalid", path=request.url.path, field=field)
    return JSONResponse(
        {"error": f"{field}: {message}" if field else message},
        status_code=ValidationError.http_status,
    )


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class LoginBody(SQLModel):
    name: str
    pin: str


class UserBody(SQLModel):
    name: str
    role: str
    pin: str
    deposit_amount: Decimal = Decimal(0)


class AccountBody(SQLModel):
    user_id: int
    deposit_amount: Decimal = Decimal(0)
    vesting_start: Optional[datetime] = None


class DepositBody(SQLModel):
    account_id: int
    amount: Decimal
    vesting_months: Optional[int] = None


class AwardBody(SQLModel):
    user_id: int
    amount: int
    description: str
    type: TransactionType = TransactionType.EARN
    extra: Optional[Dict[str, Any]] = None


class DeductBody(SQLModel):
    user_id: int
    amount: int
    description: str
    extra: Optional[Dict[str, Any]] = None


class AdjustBody(SQLModel):
    user_id: int
    delta: int
    description: str


class WithdrawalBody(SQLModel):
    account_id: int
    amount: Decimal
    reason: str


class DecisionBody(SQLModel):
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
def current_actor(request: Request) -> Actor:
    user_id = request.session.get("user_id")
    if user_id is None:
        raise UnauthorizedError("Unauthorized")
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None or not user.is_active:
            request.session.clear()
            raise UnauthorizedError("Invalid session")
        return Actor(user_id=user.id, role=user.role, name=user.name)


def _account_view(account_id: int, user_id: int) -> Dict[str, Any]:
    account = directory.get_account(account_id)
    return exporter.account(
        account,
        points_balance=ledger.get_balance(user_id),
        available_balance=withdrawals.available_balance(account_id),
    )


# ---------------------------------------------------------------------------
# Auth & operations
# ---------------------------------------------------------------------------
@app.post("/api/auth/login")
def login(request: Request, body: LoginBody) -> Dict[str, Any]:
    name = body.name.strip()
    if not name or not body.pin:
        raise ValidationError("Name and PIN are required")
    now = now_utc()
    pin_throttle.check(name, at=now)
    user = directory.authenticate(name, body.pin)
    pin_throttle.record(name, success=user is not None, at=now)
    if user is None:
        logger.log("login_failed", name=name)
        raise UnauthorizedError("Invalid name or PIN")
    request.session["user_id"] = user.id
    audit.record(user.id, AuditAction.LOGIN, target_user_id=user.id, details={"name": user.name})
    return {"success": True, "user": exporter.user(user)}


@app.post("/api/auth/logout")
def logout(request: Request, actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    request.session.clear()
    audit.record(actor, AuditAction.LOGOUT, target_user_id=actor.user_id)
    return {"success": True}


@app.get("/api/auth/me")
def me(actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    return {"user": exporter.user(directory.get_user(actor.user_id))}


@app.get("/api/health")
def health_check() -> JSONResponse:
    status = health.status()
    return JSONResponse(status, status_code=200 if status["status"] == "ok" else 503)


@app.post("/api/seed")
def seed() -> Dict[str, Any]:
    return {"success": True, "results": directory.seed_demo()}


# ---------------------------------------------------------------------------
# Users, accounts & deposits
# ---------------------------------------------------------------------------
@app.post("/api/users", status_code=201)
def create_user(body: UserBody, actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    user, account = directory.create_user(actor, body.name, body.role, body.pin, deposit_amount=body.deposit_amount)
    return {
        "success": True,
        "user": exporter.user(user),
        "account": exporter.account(account) if account is not None else None,
    }


@app.get("/api/users")
def list_users(actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    require_admin(actor)
    return {"users": [exporter.user(user) for user in directory.list_users()]}


@app.post("/api/accounts", status_code=201)
def open_account(body: AccountBody, actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    account = directory.open_account(
        actor, body.user_id, deposit_amount=body.deposit_amount, vesting_start=body.vesting_start
    )
    return {"success": True, "account": exporter.account(account)}


@app.get("/api/accounts")
def get_accounts(
    user_id: Optional[int] = Query(None),
    actor: Actor = Depends(current_actor),
) -> Dict[str, Any]:
    if user_id is not None:
        require_self_or_admin(actor, user_id)
        account = directory.account_for_user(user_id)
        if account is None:
            raise AccountNotFoundError("Account not found")
        return {"account": _account_view(account.id, user_id)}
    require_admin(actor)
    return {"accounts": [_account_view(account.id, account.user_id) for account in directory.list_accounts()]}


@app.post("/api/deposits", status_code=201)
def create_deposit(body: DepositBody, actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    deposit, account = directory.create_deposit(
        actor, body.account_id, body.amount, vesting_months=body.vesting_months
    )
    return {"success": True, "deposit": exporter.deposit(deposit), "account": exporter.account(account)}


@app.get("/api/deposits")
def list_deposits(account_id: int = Query(...), actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    return {"deposits": [exporter.deposit(deposit) for deposit in directory.deposits(actor, account_id)]}


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------
@app.post("/api/points")
def award_points(body: AwardBody, actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    require_admin(actor)
    result = ledger.award(body.user_id, body.amount, body.description, actor.user_id, body.type, body.extra)
    return {"success": True, "new_balance": result.new_balance, "transaction": exporter.transaction(result.transaction)}


@app.post("/api/points/deduct")
def deduct_points(body: DeductBody, actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    require_admin(actor)
    result = ledger.deduct(body.user_id, body.amount, body.description, actor.user_id, body.extra)
    return {"success": True, "new_balance": result.new_balance, "transaction": exporter.transaction(result.transaction)}


@app.post("/api/points/adjust")
def adjust_points(body: AdjustBody, actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    require_admin(actor)
    result = ledger.adjust(body.user_id, body.delta, body.description, actor.user_id)
    return {"success": True, "new_balance": result.new_balance, "transaction": exporter.transaction(result.transaction)}


@app.get("/api/points/balance")
def points_balance(
    user_id: Optional[int] = Query(None),
    actor: Actor = Depends(current_actor),
) -> Dict[str, Any]:
    target = user_id if user_id is not None else actor.user_id
    require_self_or_admin(actor, target)
    return {"user_id": target, "balance": ledger.get_balance(target)}


@app.get("/api/points/history")
def points_history(
    user_id: Optional[int] = Query(None),
    type: Optional[TransactionType] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    actor: Actor = Depends(current_actor),
) -> Dict[str, Any]:
    target = user_id if user_id is not None else actor.user_id
    require_self_or_admin(actor, target)
    result = ledger.history(target, transaction_type=type, start=start, end=end, page=page, limit=limit)
    return result.as_dict(exporter.transaction)


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------
@app.post("/api/withdrawals", status_code=201)
def request_withdrawal(body: WithdrawalBody, actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    withdrawal = withdrawals.request_withdrawal(actor, body.account_id, body.amount, body.reason)
    return {"success": True, "withdrawal": exporter.withdrawal(withdrawal)}


@app.get("/api/withdrawals")
def list_withdrawals(
    status: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    actor: Actor = Depends(current_actor),
) -> Dict[str, Any]:
    items = withdrawals.list_withdrawals(actor, status=status, user_id=user_id)
    return {"withdrawals": [exporter.withdrawal(item) for item in items]}


@app.post("/api/withdrawals/{withdrawal_id}/approve")
def approve_withdrawal(
    withdrawal_id: int,
    body: Optional[DecisionBody] = None,
    actor: Actor = Depends(current_actor),
) -> Dict[str, Any]:
    withdrawal = withdrawals.approve(actor, withdrawal_id, body.notes if body else None)
    return {"success": True, "withdrawal": exporter.withdrawal(withdrawal)}


@app.post("/api/withdrawals/{withdrawal_id}/reject")
def reject_withdrawal(
    withdrawal_id: int,
    body: DecisionBody,
    actor: Actor = Depends(current_actor),
) -> Dict[str, Any]:
    withdrawal = withdrawals.reject(actor, withdrawal_id, body.notes or "")
    return {"success": True, "withdrawal": exporter.withdrawal(withdrawal)}


# ---------------------------------------------------------------------------
# Dashboard & audit
# ---------------------------------------------------------------------------
@app.get("/api/dashboard")
def get_dashboard(actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
    return dashboard.build(actor)


@app.get("/api/audit")
def audit_entries(
    actor_id: Optional[int] = Query(None),
    action: Optional[AuditAction] = Query(None),
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    actor: Actor = Depends(current_actor),
) -> Dict[str, Any]:
    require_admin(actor)
    result = audit.entries(actor_id=actor_id, action=action, page=page, limit=limit)
    return result.as_dict(exporter.audit_record)


__all__ = [
    "app",
    "audit",
    "current_actor",
    "dashboard",
    "directory",
    "ledger",
    "logger",
    "now_utc",
    "pin_throttle",
    "withdrawals",
]
