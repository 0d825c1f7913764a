from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from inventory_engine.errors import InvalidTransition, NotFound
from inventory_engine.models import (
    InventoryMovement,
    MovementType,
    OrderStatus,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    ReferenceType,
)
from inventory_engine.services.fulfillment_service import get_order
from inventory_engine.services.ledger_service import list_for_reference
from inventory_engine.services.movement_service import apply_movement
from inventory_engine.services.stock_service import get_stock_record, lock_stock_record, stock_key

logger = logging.getLogger(__name__)

RECEIVABLE_STATUSES = {PurchaseOrderStatus.PENDING, PurchaseOrderStatus.CONFIRMED, PurchaseOrderStatus.SHIPPED}


@dataclass(frozen=True)
class PurchaseOrderLine:
    sku: str
    quantity: int
    unit_price: Decimal
    product_id: int | None = None
    variant_id: int | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean_reference(reference: str, label: str) -> str:
    clean = (reference or '').strip()
    if not clean:
        raise ValueError(f'{label} is required')
    return clean


def get_purchase_order(db: Session, *, purchase_order_id: int) -> PurchaseOrder:
    purchase_order = db.get(PurchaseOrder, purchase_order_id, options=[selectinload(PurchaseOrder.items)])
    if not purchase_order:
        raise NotFound(f'Purchase order {purchase_order_id} not found')
    return purchase_order


def create_purchase_order(
    db: Session,
    *,
    store_id: str,
    order_number: str,
    lines: list[PurchaseOrderLine],
    user_id: int | None,
    supplier_id: int | None = None,
    expected_date: date | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    clean_number = _clean_reference(order_number, 'Purchase order number')
    if not lines:
        raise ValueError('A purchase order needs at least one item')

    seen: set[str] = set()
    for line in lines:
        sku = _clean_reference(line.sku, 'SKU')
        if sku in seen:
            raise ValueError(f'SKU {sku} appears more than once in the purchase order')
        seen.add(sku)
        if line.quantity <= 0:
            raise ValueError(f'Ordered quantity for {sku} must be greater than zero')
        if line.unit_price < 0:
            raise ValueError(f'Unit price for {sku} cannot be negative')

    existing = db.execute(select(PurchaseOrder).where(PurchaseOrder.order_number == clean_number)).scalar_one_or_none()
    if existing:
        raise ValueError(f'Purchase order {clean_number} already exists')

    purchase_order = PurchaseOrder(
        store_id=store_id,
        supplier_id=supplier_id,
        order_number=clean_number,
        status=PurchaseOrderStatus.PENDING,
        expected_date=expected_date,
        notes=notes,
        user_id=user_id,
        updated_at=_now(),
    )
    db.add(purchase_order)
    for line in lines:
        purchase_order.items.append(
            PurchaseOrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                sku=line.sku.strip(),
                quantity=line.quantity,
                unit_price=line.unit_price,
                received_quantity=0,
            )
        )
    db.flush()
    logger.info('Created purchase order %s with %s items for store=%s', clean_number, len(lines), store_id)
    return purchase_order


def purchase_order_skus(db: Session, *, purchase_order_id: int) -> list[tuple[str, str]]:
    purchase_order = get_purchase_order(db, purchase_order_id=purchase_order_id)
    return sorted({stock_key(purchase_order.store_id, item.sku) for item in purchase_order.items})


def receive_purchase_order(
    db: Session,
    *,
    purchase_order_id: int,
    receipt_reference: str,
    received_by_item: dict[int, int],
    user_id: int | None,
) -> list[InventoryMovement]:
    """Book a supplier delivery as ``in`` movements priced at the line's unit price.

    ``received_by_item`` maps purchase order item ids to delivered quantities.
    Replaying a receipt reference returns the movements it already booked.
    """
    purchase_order = get_purchase_order(db, purchase_order_id=purchase_order_id)
    receipt_reference = _clean_reference(receipt_reference, 'Receipt reference')
    reference_id = f'{purchase_order.id}:{receipt_reference}'

    booked = list_for_reference(db, reference_type=ReferenceType.PURCHASE_ORDER, reference_id=reference_id)
    if booked:
        logger.info('Receipt %s already booked for purchase order %s', receipt_reference, purchase_order.order_number)
        return booked

    if purchase_order.status not in RECEIVABLE_STATUSES:
        raise InvalidTransition(
            f'Purchase order {purchase_order.order_number} is {purchase_order.status.value} and cannot be received',
            details={'status': purchase_order.status.value},
        )
    if not received_by_item:
        raise ValueError('A receipt needs at least one received item')

    items = {item.id: item for item in purchase_order.items}
    for item_id, quantity in received_by_item.items():
        item = items.get(item_id)
        if item is None:
            raise ValueError(f'Item {item_id} is not on purchase order {purchase_order.order_number}')
        if quantity <= 0:
            raise ValueError(f'Received quantity for {item.sku} must be greater than zero')
        outstanding = item.quantity - item.received_quantity
        if quantity > outstanding:
            raise ValueError(f'Received {quantity} of {item.sku} but only {outstanding} outstanding')

    movements: list[InventoryMovement] = []
    for item_id in sorted(received_by_item, key=lambda item_id: items[item_id].sku):
        item = items[item_id]
        quantity = received_by_item[item_id]
        result = apply_movement(
            db,
            store_id=purchase_order.store_id,
            sku=item.sku,
            reference_type=ReferenceType.PURCHASE_ORDER,
            reference_id=reference_id,
            movement_type=MovementType.IN,
            quantity=quantity,
            unit_cost=Decimal(item.unit_price),
            reason=f'purchase order {purchase_order.order_number}',
            user_id=user_id,
        )
        if result.stock.product_id is None and item.product_id is not None:
            result.stock.product_id = item.product_id
            result.stock.variant_id = item.variant_id
        item.received_quantity += quantity
        movements.append(result.entry)

    if all(item.received_quantity >= item.quantity for item in purchase_order.items):
        purchase_order.status = PurchaseOrderStatus.RECEIVED
        purchase_order.received_date = _now().date()
    purchase_order.updated_at = _now()
    db.flush()
    logger.info(
        'Received %s lines on purchase order %s (receipt %s, status %s)',
        len(movements),
        purchase_order.order_number,
        receipt_reference,
        purchase_order.status.value,
    )
    return movements


def cancel_purchase_order(db: Session, *, purchase_order_id: int) -> PurchaseOrder:
    purchase_order = get_purchase_order(db, purchase_order_id=purchase_order_id)
    if purchase_order.status not in RECEIVABLE_STATUSES:
        raise InvalidTransition(
            f'Purchase order {purchase_order.order_number} is {purchase_order.status.value} and cannot be canceled',
            details={'status': purchase_order.status.value},
        )
    if any(item.received_quantity for item in purchase_order.items):
        raise InvalidTransition(f'Purchase order {purchase_order.order_number} has receipts and cannot be canceled')
    purchase_order.status = PurchaseOrderStatus.CANCELED
    purchase_order.updated_at = _now()
    db.flush()
    return purchase_order


def transfer_stock(
    db: Session,
    *,
    from_store_id: str,
    to_store_id: str,
    sku: str,
    quantity: int,
    transfer_reference: str,
    user_id: int | None = None,
) -> tuple[InventoryMovement, InventoryMovement]:
    """Move stock between stores as an ``out``/``in`` pair sharing one reference."""
    transfer_reference = _clean_reference(transfer_reference, 'Transfer reference')
    if from_store_id == to_store_id:
        raise ValueError('Source and destination store must differ')
    if quantity <= 0:
        raise ValueError('Transfer quantity must be greater than zero')

    source = lock_stock_record(db, store_id=from_store_id, sku=sku)
    if source is None:
        raise NotFound(f'No stock record for sku {sku} in store {from_store_id}', details={'store_id': from_store_id, 'sku': sku})

    outgoing = apply_movement(
        db,
        store_id=from_store_id,
        sku=sku,
        reference_type=ReferenceType.TRANSFER,
        reference_id=transfer_reference,
        movement_type=MovementType.OUT,
        quantity=quantity,
        reason=f'transfer to {to_store_id}',
        user_id=user_id,
        record=source,
    )
    incoming = apply_movement(
        db,
        store_id=to_store_id,
        sku=sku,
        reference_type=ReferenceType.TRANSFER,
        reference_id=transfer_reference,
        movement_type=MovementType.IN,
        quantity=quantity,
        unit_cost=Decimal(outgoing.entry.unit_cost or 0),
        reason=f'transfer from {from_store_id}',
        user_id=user_id,
    )
    destination = incoming.stock
    if destination.product_id is None and source.product_id is not None:
        destination.product_id = source.product_id
        destination.variant_id = source.variant_id
    db.flush()
    return outgoing.entry, incoming.entry


def return_skus(db: Session, *, order_id: int, skus: list[str]) -> list[tuple[str, str]]:
    order = get_order(db, order_id=order_id)
    return sorted({stock_key(order.store_id, sku) for sku in skus})


def record_return(
    db: Session,
    *,
    order_id: int,
    return_reference: str,
    quantities_by_sku: dict[str, int],
    user_id: int | None = None,
) -> list[InventoryMovement]:
    """Put returned goods of a completed order back on hand."""
    order = get_order(db, order_id=order_id)
    return_reference = _clean_reference(return_reference, 'Return reference')
    reference_id = f'{order.id}:{return_reference}'

    booked = list_for_reference(db, reference_type=ReferenceType.RETURN, reference_id=reference_id)
    if booked:
        return booked

    if order.status != OrderStatus.COMPLETED:
        raise InvalidTransition(
            f'Only completed orders accept returns; order {order.order_number} is {order.status.value}',
            details={'status': order.status.value},
        )
    if not quantities_by_sku:
        raise ValueError('A return needs at least one sku')

    items_by_sku: dict[str, list] = {}
    for item in order.items:
        items_by_sku.setdefault(item.sku, []).append(item)

    for sku, quantity in quantities_by_sku.items():
        if quantity <= 0:
            raise ValueError(f'Returned quantity for {sku} must be greater than zero')
        items = items_by_sku.get(sku)
        if not items:
            raise ValueError(f'SKU {sku} was not sold on order {order.order_number}')
        returnable = sum(item.quantity - item.returned_quantity for item in items)
        if quantity > returnable:
            raise ValueError(f'Cannot return {quantity} of {sku}; only {returnable} returnable')

    movements: list[InventoryMovement] = []
    for sku in sorted(quantities_by_sku):
        quantity = quantities_by_sku[sku]
        record = get_stock_record(db, store_id=order.store_id, sku=sku)
        result = apply_movement(
            db,
            store_id=order.store_id,
            sku=sku,
            reference_type=ReferenceType.RETURN,
            reference_id=reference_id,
            movement_type=MovementType.IN,
            quantity=quantity,
            reason=f'return on order {order.order_number}',
            user_id=user_id,
            record=lock_stock_record(db, store_id=record.store_id, sku=record.sku),
        )
        remaining = quantity
        for item in items_by_sku[sku]:
            take = min(remaining, item.quantity - item.returned_quantity)
            item.returned_quantity += take
            remaining -= take
            if not remaining:
                break
        movements.append(result.entry)

    db.flush()
    logger.info('Recorded return %s on order %s (%s skus)', return_reference, order.order_number, len(movements))
    return movements
