from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_engine.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor_user_id: int | None,
    action: str,
    store_id: str | None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            store_id=store_id,
            entity_type=entity_type,
            entity_id=entity_id,
            meta=metadata or {},
        )
    )


def list_audit_entries(db: Session, *, entity_type: str, entity_id: int) -> list[AuditLog]:
    return db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.id.asc())
    ).scalars().all()
