from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AuditLog
from ..tenancy import RequestContext


def _append(
    db: Session,
    org_id: uuid.UUID,
    actor_user_id: uuid.UUID | None,
    action: str,
    target_type: str,
    target_id: str,
    metadata_json: dict[str, Any] | None,
) -> AuditLog:
    entry = AuditLog(
        org_id=org_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata_json or {},
    )
    db.add(entry)
    db.flush()
    return entry


def write_audit_log(
    db: Session,
    context: RequestContext,
    action: str,
    target_type: str,
    target_id: str,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    return _append(
        db, context.current_org_id, context.current_user_id, action, target_type, target_id, metadata_json
    )


def write_system_audit_log(
    db: Session,
    org_id: uuid.UUID,
    action: str,
    target_type: str,
    target_id: str,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    """Audit entry for unauthenticated ingress such as inbound webhooks."""
    return _append(db, org_id, None, action, target_type, target_id, metadata_json)


def list_audit_entries(db: Session, org_id: uuid.UUID, target_type: str, target_id: str) -> list[AuditLog]:
    return list(
        db.scalars(
            select(AuditLog)
            .where(
                AuditLog.org_id == org_id,
                AuditLog.target_type == target_type,
                AuditLog.target_id == target_id,
                AuditLog.deleted_at.is_(None),
            )
            .order_by(AuditLog.created_at.asc())
        ).all()
    )
