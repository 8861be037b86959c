"""
Audit trail of template and instance changes.

Entries are written in the caller's transaction, so a rejected reconcile or
answer set leaves no trace and a committed one always does. ``detail`` holds
counts and ids (a change summary, an answer count); answer values are PHI and
never go into the trail.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from clinical_forms.models.audit import AuditLog

logger = logging.getLogger(__name__)


def log_action(
    db: Session,
    *,
    actor: str,
    action: str,
    resource_type: str,
    resource_id: Any,
    detail: dict[str, Any] | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor=actor,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        detail=detail,
    )
    db.add(entry)
    db.flush()
    logger.info("AUDIT: %s %s %s/%s %s", actor, action, resource_type, resource_id, detail or "")
    return entry


def audit_trail(db: Session, resource_type: str, resource_id: Any) -> list[AuditLog]:
    """Entries for one template or instance, oldest first."""
    return (
        db.query(AuditLog)
        .filter(AuditLog.resource_type == resource_type, AuditLog.resource_id == str(resource_id))
        .order_by(AuditLog.timestamp, AuditLog.id)
        .all()
    )
