"""Administrative helpers for BehaviorBank."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, desc, select

from .config import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT
from .models import Actor, AuditAction, AuditEvent, Page
from .ops import StructuredLogger
from .persistence import AuditRecord, dump_json


def clamp_page(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    """Return a usable ``(page, limit)`` pair from raw query values."""

    page_value = max(page or DEFAULT_PAGE, 1)
    limit_value = min(max(limit or DEFAULT_LIMIT, 1), MAX_LIMIT)
    return page_value, limit_value


class AuditLog:
    """Record audit events for mutating actions.

    Writing an entry never decides the outcome of the action that triggered
    it: the caller has already committed, so a failed write is logged and the
    action still succeeds.
    """

    def __init__(self, engine: Engine, *, logger: StructuredLogger | None = None) -> None:
        self._engine = engine
        self._logger = logger or StructuredLogger()

    def record(
        self,
        actor: Actor | int,
        action: AuditAction,
        *,
        target_user_id: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[AuditRecord]:
        actor_id = actor.user_id if isinstance(actor, Actor) else actor
        event = AuditEvent(
            actor_id=actor_id,
            action=action,
            target_user_id=target_user_id,
            details=dict(details or {}),
        )
        if timestamp is not None:
            event.timestamp = timestamp
        entry = AuditRecord(
            actor_id=event.actor_id,
            action=event.action,
            target_user_id=event.target_user_id,
            details_json=dump_json(event.details),
            created_at=event.timestamp,
        )
        try:
            with Session(self._engine, expire_on_commit=False) as session:
                session.add(entry)
                session.commit()
                session.refresh(entry)
        except SQLAlchemyError as exc:
            self._logger.log("audit_write_failed", action=action.value, actor=actor_id, error=str(exc))
            return None
        self._logger.log("audit", action=action.value, actor=actor_id, target=target_user_id)
        return entry

    def entries(
        self,
        *,
        actor_id: Optional[int] = None,
        action: Optional[AuditAction] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Page:
        page_value, limit_value = clamp_page(page, limit)
        query = select(AuditRecord)
        count_query = select(func.count()).select_from(AuditRecord)
        if actor_id is not None:
            query = query.where(AuditRecord.actor_id == actor_id)
            count_query = count_query.where(AuditRecord.actor_id == actor_id)
        if action is not None:
            query = query.where(AuditRecord.action == action)
            count_query = count_query.where(AuditRecord.action == action)
        query = (
            query.order_by(desc(AuditRecord.created_at), desc(AuditRecord.id))
            .offset((page_value - 1) * limit_value)
            .limit(limit_value)
        )
        with Session(self._engine, expire_on_commit=False) as session:
            items = session.exec(query).all()
            total = session.exec(count_query).one()
        return Page(
            items=tuple(items),
            total=total,
            page=page_value,
            limit=limit_value,
            total_pages=math.ceil(total / limit_value),
        )

    def latest(self) -> Optional[AuditRecord]:
        page = self.entries(limit=1)
        return page.items[0] if page.items else None


__all__ = ["AuditLog", "clamp_page"]
