from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_engine.config import settings
from inventory_engine.errors import InsufficientStock, InvalidReservationState, NotFound
from inventory_engine.models import (
    InventoryMovement,
    MovementType,
    ReferenceType,
    ReleaseReason,
    Reservation,
    ReservationStatus,
    StockRecord,
)
from inventory_engine.services.alert_service import evaluate_stock_record
from inventory_engine.services.movement_service import apply_movement
from inventory_engine.services.stock_service import get_stock_record_by_id, lock_stock_record, set_quantities

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_reservation(db: Session, *, reservation_id: int) -> Reservation:
    reservation = db.get(Reservation, reservation_id)
    if not reservation:
        raise NotFound(f'Reservation {reservation_id} not found')
    return reservation


def _lock_reservation(db: Session, *, reservation_id: int) -> tuple[Reservation, StockRecord]:
    reservation = db.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not reservation:
        raise NotFound(f'Reservation {reservation_id} not found')
    record = get_stock_record_by_id(db, inventory_id=reservation.inventory_id)
    record = lock_stock_record(db, store_id=record.store_id, sku=record.sku)
    return reservation, record


def _require_active(reservation: Reservation, action: str) -> None:
    if reservation.status != ReservationStatus.ACTIVE:
        raise InvalidReservationState(
            f'Cannot {action} reservation {reservation.id}: it is already {reservation.status.value}',
            details={'reservation_id': reservation.id, 'status': reservation.status.value},
        )


def find_reservation(db: Session, *, order_id: str, inventory_id: int) -> Reservation | None:
    return db.execute(
        select(Reservation).where(Reservation.order_id == order_id, Reservation.inventory_id == inventory_id)
    ).scalar_one_or_none()


def reserve(
    db: Session,
    *,
    store_id: str,
    sku: str,
    quantity: int,
    order_id: str,
    ttl_minutes: int | None = None,
    now: datetime | None = None,
    evaluate_alerts: bool = True,
) -> Reservation:
    """Hold ``quantity`` of a stock record for an order. No ledger entry is written.

    ``evaluate_alerts=False`` leaves the low-stock check to the caller, for
    multi-line holds that may still be rolled back.
    """
    if quantity <= 0:
        raise ValueError('Reservation quantity must be greater than zero')
    order_id = (str(order_id) if order_id is not None else '').strip()
    if not order_id:
        raise ValueError('Order reference is required')

    record = lock_stock_record(db, store_id=store_id, sku=sku)
    if record is None:
        raise NotFound(f'No stock record for sku {sku} in store {store_id}', details={'store_id': store_id, 'sku': sku})

    existing = find_reservation(db, order_id=order_id, inventory_id=record.id)
    if existing:
        if existing.status == ReservationStatus.ACTIVE and existing.quantity == quantity:
            logger.info('Reservation for order=%s sku=%s already held (id=%s)', order_id, sku, existing.id)
            return existing
        raise InvalidReservationState(
            f'Order {order_id} already has a {existing.status.value} reservation of {existing.quantity} for {sku}',
            details={'reservation_id': existing.id, 'status': existing.status.value},
        )

    if record.quantity_available < quantity:
        raise InsufficientStock(
            f'Requested {quantity} of {sku} but only {record.quantity_available} available',
            details={'store_id': record.store_id, 'sku': record.sku, 'requested': quantity, 'available': record.quantity_available},
        )

    now = now or _now()
    ttl = settings.reservation_ttl_minutes if ttl_minutes is None else ttl_minutes
    set_quantities(record, on_hand=record.quantity_on_hand, reserved=record.quantity_reserved + quantity)
    reservation = Reservation(
        store_id=record.store_id,
        inventory_id=record.id,
        order_id=order_id,
        quantity=quantity,
        status=ReservationStatus.ACTIVE,
        expires_at=now + timedelta(minutes=ttl) if ttl > 0 else None,
        created_at=now,
    )
    db.add(reservation)
    db.flush()
    logger.info(
        'Reserved %s of store=%s sku=%s for order=%s (reservation id=%s, available now %s)',
        quantity,
        record.store_id,
        record.sku,
        order_id,
        reservation.id,
        record.quantity_available,
    )

    if evaluate_alerts:
        evaluate_stock_record(db, record=record)
    return reservation


def consume(db: Session, *, reservation_id: int, user_id: int | None = None) -> InventoryMovement:
    """Turn an active hold into an ``out`` movement against on-hand and reserved."""
    reservation, record = _lock_reservation(db, reservation_id=reservation_id)
    _require_active(reservation, 'consume')

    result = apply_movement(
        db,
        store_id=record.store_id,
        sku=record.sku,
        reference_type=ReferenceType.ORDER,
        reference_id=reservation.order_id,
        movement_type=MovementType.OUT,
        quantity=reservation.quantity,
        consume_reserved=reservation.quantity,
        reason='order fulfillment',
        user_id=user_id,
        record=record,
    )
    if not result.applied:
        raise InvalidReservationState(
            f'Order {reservation.order_id} already has an out movement for {record.sku}',
            details={'reservation_id': reservation.id, 'movement_id': result.entry.id},
        )

    reservation.status = ReservationStatus.CONSUMED
    reservation.consumed_movement_id = result.entry.id
    reservation.settled_at = _now()
    db.flush()
    return result.entry


def release(
    db: Session,
    *,
    reservation_id: int,
    reason: ReleaseReason = ReleaseReason.MANUAL,
) -> Reservation:
    """Give the held quantity back to availability; on-hand is untouched."""
    reservation, record = _lock_reservation(db, reservation_id=reservation_id)
    _require_active(reservation, 'release')

    set_quantities(record, on_hand=record.quantity_on_hand, reserved=record.quantity_reserved - reservation.quantity)
    reservation.status = ReservationStatus.RELEASED
    reservation.release_reason = ReleaseReason(reason)
    reservation.settled_at = _now()
    db.flush()
    logger.info(
        'Released reservation id=%s (%s) order=%s sku=%s qty=%s',
        reservation.id,
        reservation.release_reason.value,
        reservation.order_id,
        record.sku,
        reservation.quantity,
    )
    return reservation


def list_for_order(db: Session, *, order_id: str, active_only: bool = False) -> list[Reservation]:
    query = select(Reservation).where(Reservation.order_id == str(order_id))
    if active_only:
        query = query.where(Reservation.status == ReservationStatus.ACTIVE)
    return db.execute(query.order_by(Reservation.id.asc())).scalars().all()


def list_expired(db: Session, *, now: datetime | None = None, limit: int = 500) -> list[Reservation]:
    now = now or _now()
    return db.execute(
        select(Reservation)
        .where(
            Reservation.status == ReservationStatus.ACTIVE,
            Reservation.expires_at.is_not(None),
            Reservation.expires_at <= now,
        )
        .order_by(Reservation.expires_at.asc(), Reservation.id.asc())
        .limit(limit)
    ).scalars().all()
