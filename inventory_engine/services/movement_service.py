from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from inventory_engine.errors import NotFound
from inventory_engine.models import InventoryMovement, MovementType, ReferenceType, StockRecord
from inventory_engine.services.alert_service import evaluate_stock_record
from inventory_engine.services.ledger_service import append, find_by_reference
from inventory_engine.services.stock_service import (
    check_quantities,
    lock_stock_record,
    register_stock_record,
    set_quantities,
)

logger = logging.getLogger(__name__)

_COST_QUANT = Decimal('0.0001')


@dataclass(frozen=True)
class MovementResult:
    entry: InventoryMovement
    stock: StockRecord
    applied: bool


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _signed_delta(movement_type: MovementType, quantity: int) -> int:
    if movement_type == MovementType.ADJUSTMENT:
        if quantity == 0:
            raise ValueError('Adjustment movements need a non-zero difference')
        return quantity
    if quantity <= 0:
        raise ValueError('Movement quantity must be greater than zero')
    return quantity if movement_type == MovementType.IN else -quantity


def _weighted_unit_cost(record: StockRecord, quantity: int, unit_cost: Decimal) -> Decimal:
    on_hand = max(record.quantity_on_hand, 0)
    total_units = on_hand + quantity
    if total_units <= 0:
        return unit_cost
    current_value = Decimal(on_hand) * Decimal(record.unit_cost or 0)
    return ((current_value + Decimal(quantity) * unit_cost) / Decimal(total_units)).quantize(_COST_QUANT)


def apply_movement(
    db: Session,
    *,
    store_id: str,
    sku: str,
    reference_type: ReferenceType,
    reference_id: str,
    movement_type: MovementType,
    quantity: int,
    unit_cost: Decimal | None = None,
    reason: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    consume_reserved: int = 0,
    record: StockRecord | None = None,
    counted_on: date | None = None,
) -> MovementResult:
    """Append one ledger entry and apply it to the stock record in the same transaction.

    ``quantity`` is the magnitude for ``in``/``out`` and the signed difference
    for ``adjustment``. ``consume_reserved`` lowers the reserved quantity by the
    same amount, which is how a reservation becomes an ``out`` movement.
    ``counted_on`` stamps the record's last count date, for adjustments that
    settle a physical count.

    A reference that is already in the ledger is a no-op: the existing entry is
    returned with ``applied=False`` and the stock record is left alone.
    """
    movement_type = MovementType(movement_type)
    reference_type = ReferenceType(reference_type)
    reference_id = (reference_id or '').strip()
    if not reference_id:
        raise ValueError('Movement reference id is required')
    delta = _signed_delta(movement_type, quantity)
    if consume_reserved < 0:
        raise ValueError('Consumed reservation quantity cannot be negative')
    if consume_reserved and movement_type != MovementType.OUT:
        raise ValueError('Only out movements can consume reserved stock')
    if unit_cost is not None and unit_cost < 0:
        raise ValueError('Unit cost cannot be negative')

    if record is None:
        record = lock_stock_record(db, store_id=store_id, sku=sku)
    if record is None:
        if movement_type != MovementType.IN:
            raise NotFound(f'No stock record for sku {sku} in store {store_id}', details={'store_id': store_id, 'sku': sku})
        record = register_stock_record(db, store_id=store_id, sku=sku)

    existing = find_by_reference(
        db,
        reference_type=reference_type,
        reference_id=reference_id,
        inventory_id=record.id,
        movement_type=movement_type,
    )
    if existing:
        logger.info(
            'Ignoring repeated movement %s:%s for inventory=%s (movement id=%s)',
            reference_type.value,
            reference_id,
            record.id,
            existing.id,
        )
        return MovementResult(entry=existing, stock=record, applied=False)

    new_on_hand = record.quantity_on_hand + delta
    new_reserved = record.quantity_reserved - consume_reserved
    if new_reserved < 0:
        raise ValueError(f'Cannot consume {consume_reserved} reserved units of {record.sku}; only {record.quantity_reserved} reserved')
    # validate before anything reaches the ledger
    check_quantities(record, on_hand=new_on_hand, reserved=new_reserved)

    if movement_type == MovementType.IN and unit_cost is not None:
        new_unit_cost = _weighted_unit_cost(record, abs(delta), unit_cost)
        entry_cost = unit_cost
    else:
        new_unit_cost = Decimal(record.unit_cost or 0)
        entry_cost = unit_cost if unit_cost is not None else new_unit_cost

    now = _now()
    entry = append(
        db,
        entry=InventoryMovement(
            store_id=record.store_id,
            inventory_id=record.id,
            reference_type=reference_type,
            reference_id=reference_id,
            movement_type=movement_type,
            quantity=abs(delta),
            delta=delta,
            unit_cost=entry_cost,
            total_cost=(Decimal(abs(delta)) * entry_cost).quantize(_COST_QUANT),
            reason=reason,
            notes=notes,
            user_id=user_id,
            created_at=now,
        ),
    )

    record.unit_cost = new_unit_cost
    set_quantities(record, on_hand=new_on_hand, reserved=new_reserved)
    record.last_movement_date = now
    if counted_on is not None:
        record.last_count_date = counted_on
    db.flush()

    logger.info(
        'Applied movement id=%s %s %+d store=%s sku=%s ref=%s:%s on_hand=%s reserved=%s available=%s',
        entry.id,
        movement_type.value,
        delta,
        record.store_id,
        record.sku,
        reference_type.value,
        reference_id,
        record.quantity_on_hand,
        record.quantity_reserved,
        record.quantity_available,
    )

    evaluate_stock_record(db, record=record)
    return MovementResult(entry=entry, stock=record, applied=True)
