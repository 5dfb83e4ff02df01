from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models import AuditActorType, AuditLog
from app.security import Actor

logger = logging.getLogger("app.audit")


def log_audit(
    db: Session,
    *,
    actor: Actor | None,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    actor_type = AuditActorType.EMPLOYEE if actor is not None else AuditActorType.SYSTEM
    actor_id = str(actor.employee_id) if actor is not None else "system"
    entity_id_value = str(entity_id) if entity_id is not None else None

    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id_value,
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id_value,
            "success": success,
            "details": details or {},
        },
    )
