from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from lateness_engine.models import AuditActorType, AuditLog

logger = logging.getLogger("lateness_engine.audit")


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction.

    The row is committed (or rolled back) together with the change it
    describes, so a cancelled deduction never exists without its audit entry.
    """
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        success=success,
        details=details or {},
    )
    db.add(audit)

    logger.info(
        "audit_event",
        extra={
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": audit.entity_id,
            "success": success,
            "details": details or {},
        },
    )
    return audit
