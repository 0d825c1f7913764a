from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from inventory_engine.errors import InvalidTransition, NotFound
from inventory_engine.models import (
    AdjustmentStatus,
    InventoryCount,
    InventoryMovement,
    MovementType,
    ReferenceType,
    StockAdjustment,
    StockAdjustmentItem,
    StockRecord,
)
from inventory_engine.services.audit_service import log_audit
from inventory_engine.services.movement_service import apply_movement
from inventory_engine.services.stock_service import get_stock_record, get_stock_record_by_id, lock_stock_record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdjustmentLine:
    sku: str
    actual_quantity: int
    expected_quantity: int | None = None
    reason: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _adjustment_number() -> str:
    return f'ADJ-{_now():%Y%m%d}-{secrets.token_hex(4).upper()}'


def _cost_impact(difference: int, unit_cost: Decimal | None) -> Decimal:
    return (Decimal(difference) * Decimal(unit_cost or 0)).quantize(Decimal('0.0001'))


def get_adjustment(db: Session, *, adjustment_id: int) -> StockAdjustment:
    adjustment = db.get(StockAdjustment, adjustment_id, options=[selectinload(StockAdjustment.items)])
    if not adjustment:
        raise NotFound(f'Adjustment {adjustment_id} not found')
    return adjustment


def adjustment_skus(db: Session, *, adjustment_id: int) -> list[tuple[str, str]]:
    return [
        (row.store_id, row.sku)
        for row in db.execute(
            select(StockRecord.store_id, StockRecord.sku)
            .join(StockAdjustmentItem, StockAdjustmentItem.inventory_id == StockRecord.id)
            .where(StockAdjustmentItem.adjustment_id == adjustment_id)
        ).all()
    ]


def create_adjustment(
    db: Session,
    *,
    store_id: str,
    reason: str,
    lines: list[AdjustmentLine],
    user_id: int | None,
    notes: str | None = None,
    adjustment_number: str | None = None,
    source_count_id: int | None = None,
) -> StockAdjustment:
    """Open a pending correction batch. Nothing touches stock until it is approved."""
    clean_reason = (reason or '').strip()
    if not clean_reason:
        raise ValueError('Adjustment reason is required')
    if not lines:
        raise ValueError('An adjustment needs at least one item')

    seen: set[str] = set()
    for line in lines:
        if line.sku in seen:
            raise ValueError(f'SKU {line.sku} appears more than once in the adjustment')
        seen.add(line.sku)
        if line.actual_quantity < 0:
            raise ValueError(f'Actual quantity for {line.sku} cannot be negative')
        if line.expected_quantity is not None and line.expected_quantity < 0:
            raise ValueError(f'Expected quantity for {line.sku} cannot be negative')

    adjustment = StockAdjustment(
        store_id=store_id,
        adjustment_number=(adjustment_number or '').strip() or _adjustment_number(),
        reason=clean_reason,
        notes=notes,
        status=AdjustmentStatus.PENDING,
        source_count_id=source_count_id,
        user_id=user_id,
        updated_at=_now(),
    )
    db.add(adjustment)

    for line in lines:
        record = get_stock_record(db, store_id=store_id, sku=line.sku)
        expected = record.quantity_on_hand if line.expected_quantity is None else line.expected_quantity
        difference = line.actual_quantity - expected
        adjustment.items.append(
            StockAdjustmentItem(
                store_id=store_id,
                inventory_id=record.id,
                expected_quantity=expected,
                actual_quantity=line.actual_quantity,
                difference=difference,
                unit_cost=record.unit_cost,
                total_cost_impact=_cost_impact(difference, record.unit_cost),
                reason=line.reason,
            )
        )
    db.flush()
    logger.info('Created adjustment %s (%s items) for store=%s', adjustment.adjustment_number, len(lines), store_id)
    return adjustment


def _posted_movements(db: Session, adjustment: StockAdjustment) -> list[InventoryMovement]:
    movement_ids = [item.movement_id for item in adjustment.items if item.movement_id is not None]
    if not movement_ids:
        return []
    return db.execute(
        select(InventoryMovement).where(InventoryMovement.id.in_(movement_ids)).order_by(InventoryMovement.id.asc())
    ).scalars().all()


def _counted_on(db: Session, adjustment: StockAdjustment) -> date | None:
    if adjustment.source_count_id is None:
        return None
    count = db.get(InventoryCount, adjustment.source_count_id)
    if count is None or count.completed_at is None:
        return None
    return count.completed_at.date()


def _post_items(db: Session, adjustment: StockAdjustment, *, user_id: int | None) -> list[InventoryMovement]:
    posted: list[InventoryMovement] = []
    now = _now()
    counted_on = _counted_on(db, adjustment)
    for item in adjustment.items:
        if item.posted_at is not None:
            continue
        if item.difference == 0:
            item.posted_at = now
            continue
        stock = get_stock_record_by_id(db, inventory_id=item.inventory_id)
        record = lock_stock_record(db, store_id=stock.store_id, sku=stock.sku)
        result = apply_movement(
            db,
            store_id=record.store_id,
            sku=record.sku,
            reference_type=ReferenceType.ADJUSTMENT,
            reference_id=adjustment.adjustment_number,
            movement_type=MovementType.ADJUSTMENT,
            quantity=item.difference,
            unit_cost=item.unit_cost,
            reason=item.reason or adjustment.reason,
            user_id=user_id,
            record=record,
            counted_on=counted_on,
        )
        item.movement_id = result.entry.id
        item.posted_at = now
        if result.applied:
            posted.append(result.entry)
    db.flush()
    return posted


def approve_adjustment(db: Session, *, adjustment_id: int, approver: int | None) -> list[InventoryMovement]:
    """pending -> approved, posting one adjustment movement per non-zero item.

    Approving an adjustment that is already approved and fully posted is a
    no-op that returns its movements.
    """
    adjustment = get_adjustment(db, adjustment_id=adjustment_id)
    if adjustment.status == AdjustmentStatus.APPROVED:
        if all(item.posted_at is not None for item in adjustment.items):
            return _posted_movements(db, adjustment)
        raise InvalidTransition(
            f'Adjustment {adjustment.adjustment_number} is approved but not fully posted; post it instead',
            details={'status': adjustment.status.value},
        )
    if adjustment.status != AdjustmentStatus.PENDING:
        raise InvalidTransition(
            f'Adjustment {adjustment.adjustment_number} is {adjustment.status.value} and cannot be approved',
            details={'status': adjustment.status.value},
        )

    adjustment.status = AdjustmentStatus.APPROVED
    adjustment.approved_by = approver
    adjustment.approved_at = _now()
    adjustment.updated_at = _now()
    _post_items(db, adjustment, user_id=approver)

    log_audit(
        db,
        actor_user_id=approver,
        action='ADJUSTMENT_APPROVED',
        store_id=adjustment.store_id,
        entity_type='stock_adjustment',
        entity_id=adjustment.id,
        metadata={
            'adjustment_number': adjustment.adjustment_number,
            'items': len(adjustment.items),
            'total_difference': sum(item.difference for item in adjustment.items),
        },
    )
    logger.info('Approved adjustment %s by user=%s', adjustment.adjustment_number, approver)
    return _posted_movements(db, adjustment)


def post_adjustment(db: Session, *, adjustment_id: int, user_id: int | None = None) -> list[InventoryMovement]:
    """Post whatever is still unposted on an approved adjustment. Idempotent."""
    adjustment = get_adjustment(db, adjustment_id=adjustment_id)
    if adjustment.status != AdjustmentStatus.APPROVED:
        raise InvalidTransition(
            f'Adjustment {adjustment.adjustment_number} is {adjustment.status.value}; only approved adjustments post',
            details={'status': adjustment.status.value},
        )
    _post_items(db, adjustment, user_id=user_id or adjustment.approved_by)
    return _posted_movements(db, adjustment)


def reject_adjustment(db: Session, *, adjustment_id: int, user_id: int | None, note: str | None = None) -> StockAdjustment:
    adjustment = get_adjustment(db, adjustment_id=adjustment_id)
    if adjustment.status != AdjustmentStatus.PENDING:
        raise InvalidTransition(
            f'Adjustment {adjustment.adjustment_number} is {adjustment.status.value} and cannot be rejected',
            details={'status': adjustment.status.value},
        )
    adjustment.status = AdjustmentStatus.REJECTED
    adjustment.rejected_by = user_id
    adjustment.rejected_at = _now()
    adjustment.updated_at = _now()
    if note:
        adjustment.notes = f'{adjustment.notes}\n{note}' if adjustment.notes else note
    log_audit(
        db,
        actor_user_id=user_id,
        action='ADJUSTMENT_REJECTED',
        store_id=adjustment.store_id,
        entity_type='stock_adjustment',
        entity_id=adjustment.id,
        metadata={'adjustment_number': adjustment.adjustment_number},
    )
    db.flush()
    return adjustment


def list_adjustments(
    db: Session,
    *,
    store_id: str,
    status: AdjustmentStatus | None = None,
    limit: int = 100,
) -> list[StockAdjustment]:
    query = select(StockAdjustment).options(selectinload(StockAdjustment.items)).where(StockAdjustment.store_id == store_id)
    if status is not None:
        query = query.where(StockAdjustment.status == status)
    return db.execute(query.order_by(StockAdjustment.id.desc()).limit(limit)).scalars().all()
