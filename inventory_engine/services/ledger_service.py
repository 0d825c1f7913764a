from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_engine.errors import DuplicateReference
from inventory_engine.models import InventoryMovement, MovementType, ReferenceType

logger = logging.getLogger(__name__)


def find_by_reference(
    db: Session,
    *,
    reference_type: ReferenceType,
    reference_id: str,
    inventory_id: int,
    movement_type: MovementType,
) -> InventoryMovement | None:
    return db.execute(
        select(InventoryMovement).where(
            InventoryMovement.reference_type == reference_type,
            InventoryMovement.reference_id == reference_id,
            InventoryMovement.inventory_id == inventory_id,
            InventoryMovement.movement_type == movement_type,
        )
    ).scalar_one_or_none()


def append(db: Session, *, entry: InventoryMovement) -> InventoryMovement:
    """Append one ledger entry. Entries are never updated or deleted afterwards."""
    existing = find_by_reference(
        db,
        reference_type=entry.reference_type,
        reference_id=entry.reference_id,
        inventory_id=entry.inventory_id,
        movement_type=entry.movement_type,
    )
    if existing:
        raise DuplicateReference(
            f'Movement already recorded for {entry.reference_type.value}:{entry.reference_id}',
            details={'movement_id': existing.id},
            existing_id=existing.id,
        )

    db.add(entry)
    try:
        db.flush()
    except IntegrityError as exc:
        # Another process won the race on the reference key; the caller's
        # unit of work is rolled back and retried.
        raise DuplicateReference(
            f'Movement already recorded for {entry.reference_type.value}:{entry.reference_id}',
        ) from exc

    logger.debug(
        'Ledger append id=%s inventory=%s %s %s ref=%s:%s',
        entry.id,
        entry.inventory_id,
        entry.movement_type.value,
        entry.delta,
        entry.reference_type.value,
        entry.reference_id,
    )
    return entry


def list_for(db: Session, *, inventory_id: int, since_id: int | None = None) -> list[InventoryMovement]:
    query = select(InventoryMovement).where(InventoryMovement.inventory_id == inventory_id)
    if since_id is not None:
        query = query.where(InventoryMovement.id > since_id)
    return db.execute(query.order_by(InventoryMovement.id.asc())).scalars().all()


def list_for_reference(db: Session, *, reference_type: ReferenceType, reference_id: str) -> list[InventoryMovement]:
    return db.execute(
        select(InventoryMovement)
        .where(
            InventoryMovement.reference_type == reference_type,
            InventoryMovement.reference_id == reference_id,
        )
        .order_by(InventoryMovement.id.asc())
    ).scalars().all()


def replay_on_hand(db: Session, *, inventory_id: int) -> int:
    on_hand = 0
    for entry in list_for(db, inventory_id=inventory_id):
        on_hand += entry.delta
    return on_hand
