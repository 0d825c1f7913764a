from __future__ import annotations

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from inventory_engine.errors import InvalidReservationState, InvalidTransition, InventoryError, NotFound
from inventory_engine.models import (
    InventoryMovement,
    Order,
    OrderItem,
    OrderStatus,
    ReferenceType,
    ReleaseReason,
    Reservation,
    StockRecord,
)
from inventory_engine.services.alert_service import evaluate_stock_record
from inventory_engine.services.audit_service import log_audit
from inventory_engine.services.ledger_service import list_for_reference
from inventory_engine.services.reservation_service import consume, list_for_order, release, reserve
from inventory_engine.services.stock_service import get_stock_record_by_id, resolve_stock_record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLine:
    quantity: int
    sku: str | None = None
    product_id: int | None = None
    variant_id: int | None = None


CANCELABLE_STATUSES = {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PREPARING}
FULFILLABLE_STATUSES = {OrderStatus.CONFIRMED, OrderStatus.PREPARING}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _failure_reason(exc: Exception) -> str:
    code = getattr(exc, 'code', None)
    if code:
        return code
    return re.sub(r'(?<!^)(?=[A-Z])', '_', exc.__class__.__name__).lower()


def get_order(db: Session, *, order_id: int) -> Order:
    order = db.get(Order, order_id, options=[selectinload(Order.items)])
    if not order:
        raise NotFound(f'Order {order_id} not found')
    return order


def _transition_error(order: Order, action: str) -> InvalidTransition:
    return InvalidTransition(
        f'Cannot {action} order {order.order_number}: it is {order.status.value}',
        details={'order_id': order.id, 'status': order.status.value},
    )


def create_order(
    db: Session,
    *,
    store_id: str,
    order_number: str,
    lines: list[OrderLine],
    user_id: int | None = None,
) -> Order:
    clean_number = (order_number or '').strip()
    if not clean_number:
        raise ValueError('Order number is required')
    if not lines:
        raise ValueError('An order needs at least one item')
    for line in lines:
        if line.quantity <= 0:
            raise ValueError('Order item quantity must be greater than zero')
        if line.product_id is None and not (line.sku or '').strip():
            raise ValueError('Each order item needs a product id or a sku')

    existing = db.execute(
        select(Order).where(Order.store_id == store_id, Order.order_number == clean_number)
    ).scalar_one_or_none()
    if existing:
        raise ValueError(f'Order {clean_number} already exists in store {store_id}')

    order = Order(
        store_id=store_id,
        order_number=clean_number,
        status=OrderStatus.PENDING,
        user_id=user_id,
        updated_at=_now(),
    )
    db.add(order)
    for line in lines:
        order.items.append(
            OrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                sku=(line.sku or '').strip() or None,
                quantity=line.quantity,
                returned_quantity=0,
            )
        )
    db.flush()
    logger.info('Created order id=%s number=%s with %s items', order.id, clean_number, len(lines))
    return order


def _resolve_item(db: Session, order: Order, item: OrderItem) -> StockRecord:
    if item.inventory_id is not None:
        return get_stock_record_by_id(db, inventory_id=item.inventory_id)
    return resolve_stock_record(
        db,
        store_id=order.store_id,
        product_id=item.product_id,
        variant_id=item.variant_id,
        sku=item.sku,
    )


def order_skus(db: Session, *, order_id: int) -> list[tuple[str, str]]:
    """The sorted (store_id, sku) keys an order touches, for lock acquisition."""
    order = get_order(db, order_id=order_id)
    keys = set()
    for item in order.items:
        try:
            keys.add(_resolve_item(db, order, item).key)
        except NotFound:
            # surfaces again, under the locks, when the order is confirmed
            continue
    return sorted(keys)


def _demand_by_record(db: Session, order: Order) -> OrderedDict[tuple[str, str], tuple[StockRecord, int]]:
    demand: dict[tuple[str, str], tuple[StockRecord, int]] = {}
    for item in order.items:
        record = _resolve_item(db, order, item)
        item.inventory_id = record.id
        if item.sku is None:
            item.sku = record.sku
        previous = demand.get(record.key)
        demand[record.key] = (record, item.quantity + (previous[1] if previous else 0))
    return OrderedDict(sorted(demand.items()))


def confirm_order(db: Session, *, order_id: int, ttl_minutes: int | None = None) -> list[Reservation]:
    """pending -> confirmed, reserving every line in (store_id, sku) order.

    All or nothing: when any line cannot be reserved, the holds already taken
    are released with reason ``rollback``, the order is canceled and the error
    is re-raised. The cancellation is left in the session for the caller to
    commit. Low-stock alerts are only raised once every line is held.
    """
    order = get_order(db, order_id=order_id)
    if order.status != OrderStatus.PENDING:
        raise _transition_error(order, 'confirm')

    taken: list[Reservation] = []
    held: list[StockRecord] = []
    try:
        for (store_id, sku), (record, quantity) in _demand_by_record(db, order).items():
            taken.append(
                reserve(
                    db,
                    store_id=store_id,
                    sku=sku,
                    quantity=quantity,
                    order_id=order.reference,
                    ttl_minutes=ttl_minutes,
                    evaluate_alerts=False,
                )
            )
            held.append(record)
    except (InventoryError, ValueError) as exc:
        for reservation in taken:
            release(db, reservation_id=reservation.id, reason=ReleaseReason.ROLLBACK)
        order.status = OrderStatus.CANCELED
        order.cancel_reason = _failure_reason(exc)
        order.canceled_at = _now()
        order.updated_at = _now()
        db.flush()
        logger.warning(
            'Order %s could not be confirmed (%s); released %s reservations',
            order.order_number,
            exc,
            len(taken),
        )
        raise

    for record in held:
        evaluate_stock_record(db, record=record)

    order.status = OrderStatus.CONFIRMED
    order.confirmed_at = _now()
    order.updated_at = _now()
    db.flush()
    logger.info('Confirmed order %s with %s reservations', order.order_number, len(taken))
    return taken


def start_preparing(db: Session, *, order_id: int) -> Order:
    order = get_order(db, order_id=order_id)
    if order.status != OrderStatus.CONFIRMED:
        raise _transition_error(order, 'start preparing')
    order.status = OrderStatus.PREPARING
    order.updated_at = _now()
    db.flush()
    return order


def fulfill_order(db: Session, *, order_id: int, user_id: int | None = None) -> list[InventoryMovement]:
    """confirmed/preparing -> completed, consuming the hold on every line.

    Every stock record the order needs must still carry an active reservation
    covering its demand; a hold that expired or was released raises
    InvalidReservationState and the order keeps its status. Fulfilling an
    order that is already completed returns the movements it produced the
    first time.
    """
    order = get_order(db, order_id=order_id)
    if order.status == OrderStatus.COMPLETED:
        return order_movements(db, order_id=order.id)
    if order.status not in FULFILLABLE_STATUSES:
        raise _transition_error(order, 'fulfill')

    demand = _demand_by_record(db, order)
    active = {r.inventory_id: r for r in list_for_order(db, order_id=order.reference, active_only=True)}
    uncovered = [
        {'sku': sku, 'needed': quantity, 'held': active[record.id].quantity if record.id in active else 0}
        for (_, sku), (record, quantity) in demand.items()
        if record.id not in active or active[record.id].quantity < quantity
    ]
    if uncovered:
        raise InvalidReservationState(
            f'Order {order.order_number} no longer holds stock for {", ".join(line["sku"] for line in uncovered)}',
            details={'order_id': order.id, 'lines': uncovered},
        )

    for record, _ in demand.values():
        consume(db, reservation_id=active[record.id].id, user_id=user_id)

    order.status = OrderStatus.COMPLETED
    order.completed_at = _now()
    order.updated_at = _now()
    db.flush()
    logger.info('Fulfilled order %s (%s reservations consumed)', order.order_number, len(demand))
    return order_movements(db, order_id=order.id)


def cancel_order(db: Session, *, order_id: int, user_id: int | None, reason: str | None = None) -> Order:
    order = get_order(db, order_id=order_id)
    if order.status not in CANCELABLE_STATUSES:
        raise _transition_error(order, 'cancel')

    released = 0
    for reservation in list_for_order(db, order_id=order.reference, active_only=True):
        release(db, reservation_id=reservation.id, reason=ReleaseReason.CANCELLED)
        released += 1

    previous_status = order.status
    order.status = OrderStatus.CANCELED
    order.cancel_reason = (reason or '').strip() or 'canceled'
    order.canceled_at = _now()
    order.updated_at = _now()
    log_audit(
        db,
        actor_user_id=user_id,
        action='ORDER_CANCELED',
        store_id=order.store_id,
        entity_type='order',
        entity_id=order.id,
        metadata={
            'order_number': order.order_number,
            'previous_status': previous_status.value,
            'released_reservations': released,
            'reason': order.cancel_reason,
        },
    )
    db.flush()
    logger.info('Canceled order %s (%s reservations released)', order.order_number, released)
    return order


def order_movements(db: Session, *, order_id: int) -> list[InventoryMovement]:
    order = get_order(db, order_id=order_id)
    return list_for_reference(db, reference_type=ReferenceType.ORDER, reference_id=order.reference)
