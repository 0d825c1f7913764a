from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from inventory_engine.auth import Principal, Role, assert_store_scope, get_current_principal, require_role
from inventory_engine.dependencies import get_engine, to_http_error
from inventory_engine.engine import InventoryEngine
from inventory_engine.errors import InventoryError
from inventory_engine.models import ReferenceType
from inventory_engine.schemas import (
    MovementOut,
    StockDriftOut,
    StockLevelOut,
    StockMovementIn,
    StockRecordCreate,
    StockSettingsUpdate,
    TransferIn,
)

router = APIRouter(prefix='/stock', tags=['stock'])
admin_access = require_role(Role.ADMIN, Role.MANAGER)


@router.post('/{store_id}', response_model=StockLevelOut, status_code=status.HTTP_201_CREATED)
def register_stock_record(
    store_id: str,
    payload: StockRecordCreate,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(admin_access),
):
    try:
        return engine.register_stock_record(store_id, payload.sku, **payload.model_dump(exclude={'sku'}))
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.get('/{store_id}', response_model=list[StockLevelOut])
def list_stock(
    store_id: str,
    below_reorder_only: bool = False,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, store_id)
    try:
        return engine.list_stock_levels(store_id, below_reorder_only=below_reorder_only)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.get('/{store_id}/{sku}', response_model=StockLevelOut)
def get_stock_level(
    store_id: str,
    sku: str,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, store_id)
    try:
        return engine.get_stock_level(store_id, sku)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.patch('/{store_id}/{sku}', response_model=StockLevelOut)
def update_stock_settings(
    store_id: str,
    sku: str,
    payload: StockSettingsUpdate,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(admin_access),
):
    try:
        return engine.update_stock_settings(store_id, sku, **payload.model_dump())
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.get('/{store_id}/{sku}/movements', response_model=list[MovementOut])
def list_movements(
    store_id: str,
    sku: str,
    since_id: int | None = Query(default=None, ge=0),
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, store_id)
    try:
        return engine.list_movements(store_id, sku, since_id=since_id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{store_id}/{sku}/receive', response_model=MovementOut, status_code=status.HTTP_201_CREATED)
def receive_stock(
    store_id: str,
    sku: str,
    payload: StockMovementIn,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, store_id)
    try:
        return engine.receive_stock(
            store_id,
            sku,
            payload.quantity,
            reference_id=payload.reference_id,
            reference_type=payload.reference_type or ReferenceType.PURCHASE_ORDER,
            unit_cost=payload.unit_cost,
            reason=payload.reason,
            user_id=principal.id,
        )
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{store_id}/{sku}/issue', response_model=MovementOut, status_code=status.HTTP_201_CREATED)
def issue_stock(
    store_id: str,
    sku: str,
    payload: StockMovementIn,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, store_id)
    try:
        return engine.issue_stock(
            store_id,
            sku,
            payload.quantity,
            reference_id=payload.reference_id,
            reference_type=payload.reference_type or ReferenceType.ORDER,
            reason=payload.reason,
            user_id=principal.id,
        )
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{store_id}/{sku}/transfer', response_model=list[MovementOut], status_code=status.HTTP_201_CREATED)
def transfer_stock(
    store_id: str,
    sku: str,
    payload: TransferIn,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(admin_access),
):
    try:
        return list(
            engine.transfer_stock(
                store_id,
                payload.to_store_id,
                sku,
                payload.quantity,
                payload.transfer_reference,
                user_id=principal.id,
            )
        )
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.get('/{store_id}/{sku}/verify', response_model=StockDriftOut)
def verify_stock(
    store_id: str,
    sku: str,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(admin_access),
):
    try:
        return engine.verify_stock(store_id, sku)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{store_id}/{sku}/rebuild', response_model=StockDriftOut)
def rebuild_stock(
    store_id: str,
    sku: str,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(admin_access),
):
    try:
        return engine.rebuild_stock(store_id, sku, user_id=principal.id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc
