from __future__ import annotations

from fastapi import APIRouter, Depends, status

from inventory_engine.auth import Principal, assert_store_scope, get_current_principal
from inventory_engine.dependencies import get_engine, to_http_error
from inventory_engine.engine import InventoryEngine
from inventory_engine.errors import InventoryError
from inventory_engine.schemas import MovementOut, ReservationCreate, ReservationOut, ReservationRelease

router = APIRouter(prefix='/reservations', tags=['reservations'])


@router.post('', response_model=ReservationOut, status_code=status.HTTP_201_CREATED)
def reserve_stock(
    payload: ReservationCreate,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, payload.store_id)
    try:
        reservation_id = engine.reserve_stock(
            payload.store_id,
            payload.sku,
            payload.quantity,
            payload.order_ref,
            ttl_minutes=payload.ttl_minutes,
        )
        return engine.get_reservation(reservation_id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.get('/order/{order_ref}', response_model=list[ReservationOut])
def list_order_reservations(
    order_ref: str,
    active_only: bool = False,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    return engine.list_reservations(order_ref, active_only=active_only)


@router.get('/{reservation_id}', response_model=ReservationOut)
def get_reservation(
    reservation_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.get_reservation(reservation_id)
    except InventoryError as exc:
        raise to_http_error(exc) from exc


@router.post('/{reservation_id}/consume', response_model=MovementOut)
def consume_reservation(
    reservation_id: int,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    try:
        return engine.consume_reservation(reservation_id, user_id=principal.id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{reservation_id}/release', response_model=ReservationOut)
def release_reservation(
    reservation_id: int,
    payload: ReservationRelease | None = None,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    reason = payload.reason if payload else ReservationRelease().reason
    try:
        engine.release_reservation(reservation_id, reason=reason)
        return engine.get_reservation(reservation_id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc
