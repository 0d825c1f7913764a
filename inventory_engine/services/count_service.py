from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from inventory_engine.errors import InvalidTransition, NotFound
from inventory_engine.models import (
    CountStatus,
    CountType,
    InventoryCount,
    InventoryCountItem,
    StockAdjustment,
    StockRecord,
)
from inventory_engine.services.adjustment_service import AdjustmentLine, create_adjustment
from inventory_engine.services.audit_service import log_audit
from inventory_engine.services.stock_service import get_stock_record, list_stock_records

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProposedAdjustmentItem:
    inventory_id: int
    sku: str
    expected_quantity: int
    actual_quantity: int
    difference: int
    unit_cost: Decimal
    cost_impact: Decimal


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _count_number() -> str:
    return f'CNT-{_now():%Y%m%d}-{secrets.token_hex(4).upper()}'


def get_count(db: Session, *, count_id: int) -> InventoryCount:
    count = db.get(InventoryCount, count_id, options=[selectinload(InventoryCount.items)])
    if not count:
        raise NotFound(f'Inventory count {count_id} not found')
    return count


def _editable_count_guard(count: InventoryCount) -> None:
    if count.status != CountStatus.IN_PROGRESS:
        raise InvalidTransition(
            f'Count {count.count_number} is {count.status.value} and cannot be changed',
            details={'status': count.status.value},
        )


def start_count(
    db: Session,
    *,
    store_id: str,
    count_type: CountType,
    started_by: int | None,
    skus: list[str] | None = None,
    location: str | None = None,
    notes: str | None = None,
    count_number: str | None = None,
) -> InventoryCount:
    """Open a physical count, snapshotting the expected on-hand of every item."""
    count_type = CountType(count_type)
    if count_type == CountType.FULL:
        if skus:
            raise ValueError('A full count covers every stock record; do not pass skus')
        records = list_stock_records(db, store_id=store_id)
    else:
        if not skus:
            raise ValueError('A partial count needs at least one sku')
        records = [get_stock_record(db, store_id=store_id, sku=sku) for sku in dict.fromkeys(skus)]
    if not records:
        raise ValueError(f'Store {store_id} has no stock records to count')

    count = InventoryCount(
        store_id=store_id,
        count_number=(count_number or '').strip() or _count_number(),
        count_type=count_type,
        status=CountStatus.IN_PROGRESS,
        location=location,
        notes=notes,
        started_by=started_by,
        started_at=_now(),
    )
    db.add(count)
    for record in records:
        count.items.append(
            InventoryCountItem(
                store_id=store_id,
                inventory_id=record.id,
                expected_quantity=record.quantity_on_hand,
            )
        )
    db.flush()
    logger.info('Started %s count %s with %s items for store=%s', count_type.value, count.count_number, len(records), store_id)
    return count


def _items_by_sku(db: Session, count: InventoryCount) -> dict[str, InventoryCountItem]:
    rows = db.execute(
        select(InventoryCountItem, StockRecord.sku)
        .join(StockRecord, StockRecord.id == InventoryCountItem.inventory_id)
        .where(InventoryCountItem.count_id == count.id)
    ).all()
    return {sku: item for item, sku in rows}


def record_counts(db: Session, *, count_id: int, counted_by_sku: dict[str, int], notes_by_sku: dict[str, str] | None = None) -> InventoryCount:
    count = get_count(db, count_id=count_id)
    _editable_count_guard(count)

    items = _items_by_sku(db, count)
    for sku, counted in counted_by_sku.items():
        item = items.get(sku)
        if item is None:
            raise ValueError(f'SKU {sku} is not part of count {count.count_number}')
        if counted < 0:
            raise ValueError(f'Counted quantity for {sku} cannot be negative')
        item.counted_quantity = counted
        item.difference = counted - item.expected_quantity
        if notes_by_sku and sku in notes_by_sku:
            item.notes = notes_by_sku[sku]
    db.flush()
    return count


def _proposals(db: Session, count: InventoryCount) -> list[ProposedAdjustmentItem]:
    rows = db.execute(
        select(InventoryCountItem, StockRecord.sku, StockRecord.unit_cost)
        .join(StockRecord, StockRecord.id == InventoryCountItem.inventory_id)
        .where(
            InventoryCountItem.count_id == count.id,
            InventoryCountItem.counted_quantity.is_not(None),
            InventoryCountItem.difference != 0,
        )
        .order_by(StockRecord.sku.asc())
    ).all()
    proposals = []
    for item, sku, unit_cost in rows:
        cost = Decimal(unit_cost or 0)
        proposals.append(
            ProposedAdjustmentItem(
                inventory_id=item.inventory_id,
                sku=sku,
                expected_quantity=item.expected_quantity,
                actual_quantity=item.counted_quantity,
                difference=item.difference,
                unit_cost=cost,
                cost_impact=(Decimal(item.difference) * cost).quantize(Decimal('0.0001')),
            )
        )
    return proposals


def complete_count(db: Session, *, count_id: int, completed_by: int | None) -> list[ProposedAdjustmentItem]:
    """in_progress -> completed; returns the discrepancies as proposed adjustment items.

    Uncounted items are left out. The count itself never writes stock records;
    turning the proposals into an adjustment is a separate, explicit step.
    """
    count = get_count(db, count_id=count_id)
    _editable_count_guard(count)

    now = _now()
    for item in count.items:
        if item.counted_quantity is not None:
            item.difference = item.counted_quantity - item.expected_quantity

    count.status = CountStatus.COMPLETED
    count.completed_by = completed_by
    count.completed_at = now
    db.flush()

    proposals = _proposals(db, count)
    log_audit(
        db,
        actor_user_id=completed_by,
        action='COUNT_COMPLETED',
        store_id=count.store_id,
        entity_type='inventory_count',
        entity_id=count.id,
        metadata={
            'count_number': count.count_number,
            'items': len(count.items),
            'uncounted_items': sum(1 for item in count.items if item.counted_quantity is None),
            'discrepancies': len(proposals),
        },
    )
    logger.info('Completed count %s: %s discrepancies', count.count_number, len(proposals))
    return proposals


def proposed_adjustment_items(db: Session, *, count_id: int) -> list[ProposedAdjustmentItem]:
    count = get_count(db, count_id=count_id)
    if count.status != CountStatus.COMPLETED:
        raise InvalidTransition(f'Count {count.count_number} is not completed yet', details={'status': count.status.value})
    return _proposals(db, count)


def create_adjustment_from_count(db: Session, *, count_id: int, user_id: int | None, reason: str | None = None) -> StockAdjustment | None:
    """Open a pending adjustment for a completed count's discrepancies.

    Returns the adjustment already created from this count if there is one, and
    None when the count found no discrepancies.
    """
    count = get_count(db, count_id=count_id)
    if count.status != CountStatus.COMPLETED:
        raise InvalidTransition(f'Count {count.count_number} is not completed yet', details={'status': count.status.value})

    existing = db.execute(
        select(StockAdjustment)
        .options(selectinload(StockAdjustment.items))
        .where(StockAdjustment.source_count_id == count.id)
    ).scalar_one_or_none()
    if existing:
        return existing

    proposals = _proposals(db, count)
    if not proposals:
        return None

    return create_adjustment(
        db,
        store_id=count.store_id,
        reason=reason or f'Inventory count {count.count_number}',
        lines=[
            AdjustmentLine(
                sku=proposal.sku,
                expected_quantity=proposal.expected_quantity,
                actual_quantity=proposal.actual_quantity,
                reason='count discrepancy',
            )
            for proposal in proposals
        ],
        user_id=user_id,
        source_count_id=count.id,
    )
