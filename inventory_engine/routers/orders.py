from __future__ import annotations

from fastapi import APIRouter, Depends, status

from inventory_engine.auth import Principal, Role, assert_store_scope, get_current_principal, require_role
from inventory_engine.dependencies import get_engine, to_http_error
from inventory_engine.engine import InventoryEngine
from inventory_engine.errors import InventoryError
from inventory_engine.schemas import (
    MovementOut,
    OrderCancel,
    OrderConfirm,
    OrderCreate,
    OrderOut,
    OrderReturn,
    PurchaseOrderCreate,
    PurchaseOrderOut,
    PurchaseOrderReceipt,
    ReservationOut,
)
from inventory_engine.services.fulfillment_service import OrderLine
from inventory_engine.services.receiving_service import PurchaseOrderLine

router = APIRouter(prefix='/orders', tags=['orders'])
purchase_router = APIRouter(prefix='/purchase-orders', tags=['purchase-orders'])
admin_access = require_role(Role.ADMIN, Role.MANAGER)


@router.post('', response_model=OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, payload.store_id)
    lines = [OrderLine(**item.model_dump()) for item in payload.items]
    try:
        return engine.create_order(payload.store_id, payload.order_number, lines, user_id=principal.id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.get('/{order_id}', response_model=OrderOut)
def get_order(
    order_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.get_order(order_id)
    except InventoryError as exc:
        raise to_http_error(exc) from exc


@router.post('/{order_id}/confirm', response_model=list[ReservationOut])
def confirm_order(
    order_id: int,
    payload: OrderConfirm | None = None,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.confirm_order(order_id, ttl_minutes=payload.ttl_minutes if payload else None)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{order_id}/prepare', response_model=OrderOut)
def start_preparing(
    order_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.start_preparing(order_id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{order_id}/fulfill', response_model=list[MovementOut])
def fulfill_order(
    order_id: int,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    try:
        return engine.fulfill_order(order_id, user_id=principal.id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{order_id}/cancel', response_model=OrderOut)
def cancel_order(
    order_id: int,
    payload: OrderCancel | None = None,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    try:
        return engine.cancel_order(order_id, user_id=principal.id, reason=payload.reason if payload else None)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{order_id}/returns', response_model=list[MovementOut], status_code=status.HTTP_201_CREATED)
def record_return(
    order_id: int,
    payload: OrderReturn,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    try:
        return engine.record_return(
            order_id,
            payload.return_reference,
            payload.quantities_by_sku,
            user_id=principal.id,
        )
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.get('/{order_id}/movements', response_model=list[MovementOut])
def order_movements(
    order_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.order_movements(order_id)
    except InventoryError as exc:
        raise to_http_error(exc) from exc


@purchase_router.post('', response_model=PurchaseOrderOut, status_code=status.HTTP_201_CREATED)
def create_purchase_order(
    payload: PurchaseOrderCreate,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(admin_access),
):
    lines = [PurchaseOrderLine(**item.model_dump()) for item in payload.items]
    try:
        return engine.create_purchase_order(
            payload.store_id,
            payload.order_number,
            lines,
            user_id=principal.id,
            supplier_id=payload.supplier_id,
            expected_date=payload.expected_date,
            notes=payload.notes,
        )
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@purchase_router.get('/{purchase_order_id}', response_model=PurchaseOrderOut)
def get_purchase_order(
    purchase_order_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.get_purchase_order(purchase_order_id)
    except InventoryError as exc:
        raise to_http_error(exc) from exc


@purchase_router.post('/{purchase_order_id}/receipts', response_model=list[MovementOut], status_code=status.HTTP_201_CREATED)
def receive_purchase_order(
    purchase_order_id: int,
    payload: PurchaseOrderReceipt,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    try:
        return engine.receive_purchase_order(
            purchase_order_id,
            payload.receipt_reference,
            payload.received_by_item,
            user_id=principal.id,
        )
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@purchase_router.post('/{purchase_order_id}/cancel', response_model=PurchaseOrderOut)
def cancel_purchase_order(
    purchase_order_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(admin_access),
):
    try:
        return engine.cancel_purchase_order(purchase_order_id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc
