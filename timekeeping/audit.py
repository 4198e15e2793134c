from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from timekeeping.models import AuditActionType, AuditLog

logger = logging.getLogger("timekeeping.audit")


def record_audit(
    db: Session,
    *,
    admin_user_id: int,
    action_type: AuditActionType,
    entity_type: str,
    entity_id: str,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    reason: str | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction.

    Nothing is committed here: the row lands together with the mutation it
    describes, or not at all.
    """
    entry = AuditLog(
        admin_user_id=admin_user_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        before_json=before,
        after_json=after,
        reason=reason,
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    return entry


def log_audit_event(entry: AuditLog, *, request_id: str | None = None) -> None:
    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "audit_id": entry.id,
            "admin_user_id": entry.admin_user_id,
            "action_type": AuditActionType(entry.action_type).value,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "reason": entry.reason,
        },
    )


def list_audit_logs(
    db: Session,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if entity_type is not None:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    return list(db.scalars(stmt.limit(max(1, min(limit, 500)))).all())
