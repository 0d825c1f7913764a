from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from inventory_engine.auth import Principal, Role, assert_store_scope, get_current_principal, require_role
from inventory_engine.dependencies import get_engine, to_http_error
from inventory_engine.engine import InventoryEngine
from inventory_engine.errors import InventoryError
from inventory_engine.models import AdjustmentStatus
from inventory_engine.schemas import (
    AdjustmentCreate,
    AdjustmentOut,
    AdjustmentReject,
    CountCreate,
    CountOut,
    CountRecord,
    MovementOut,
    ProposedAdjustmentItemOut,
)
from inventory_engine.services.adjustment_service import AdjustmentLine

router = APIRouter(prefix='/adjustments', tags=['adjustments'])
count_router = APIRouter(prefix='/counts', tags=['counts'])
admin_access = require_role(Role.ADMIN, Role.MANAGER)


@router.post('', response_model=AdjustmentOut, status_code=status.HTTP_201_CREATED)
def create_adjustment(
    payload: AdjustmentCreate,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, payload.store_id)
    lines = [AdjustmentLine(**item.model_dump()) for item in payload.items]
    try:
        return engine.create_adjustment(payload.store_id, payload.reason, lines, user_id=principal.id, notes=payload.notes)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.get('', response_model=list[AdjustmentOut])
def list_adjustments(
    store_id: str,
    status_filter: AdjustmentStatus | None = Query(default=None, alias='status'),
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, store_id)
    return engine.list_adjustments(store_id, status=status_filter)


@router.get('/{adjustment_id}', response_model=AdjustmentOut)
def get_adjustment(
    adjustment_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.get_adjustment(adjustment_id)
    except InventoryError as exc:
        raise to_http_error(exc) from exc


@router.post('/{adjustment_id}/approve', response_model=list[MovementOut])
def approve_adjustment(
    adjustment_id: int,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(admin_access),
):
    try:
        return engine.approve_adjustment(adjustment_id, approver=principal.id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{adjustment_id}/post', response_model=list[MovementOut])
def post_adjustment(
    adjustment_id: int,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(admin_access),
):
    try:
        return engine.post_adjustment(adjustment_id, user_id=principal.id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@router.post('/{adjustment_id}/reject', response_model=AdjustmentOut)
def reject_adjustment(
    adjustment_id: int,
    payload: AdjustmentReject | None = None,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(admin_access),
):
    try:
        return engine.reject_adjustment(adjustment_id, user_id=principal.id, note=payload.note if payload else None)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@count_router.post('', response_model=CountOut, status_code=status.HTTP_201_CREATED)
def start_count(
    payload: CountCreate,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, payload.store_id)
    try:
        return engine.start_count(
            payload.store_id,
            payload.count_type,
            started_by=principal.id,
            skus=payload.skus,
            location=payload.location,
            notes=payload.notes,
        )
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@count_router.get('/{count_id}', response_model=CountOut)
def get_count(
    count_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.get_count(count_id)
    except InventoryError as exc:
        raise to_http_error(exc) from exc


@count_router.post('/{count_id}/items', response_model=CountOut)
def record_counts(
    count_id: int,
    payload: CountRecord,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.record_counts(count_id, payload.counted_by_sku, notes_by_sku=payload.notes_by_sku)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@count_router.post('/{count_id}/complete', response_model=list[ProposedAdjustmentItemOut])
def complete_count(
    count_id: int,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    try:
        return engine.complete_count(count_id, completed_by=principal.id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc


@count_router.get('/{count_id}/proposals', response_model=list[ProposedAdjustmentItemOut])
def proposed_adjustment_items(
    count_id: int,
    engine: InventoryEngine = Depends(get_engine),
    _: Principal = Depends(get_current_principal),
):
    try:
        return engine.proposed_adjustment_items(count_id)
    except InventoryError as exc:
        raise to_http_error(exc) from exc


@count_router.post('/{count_id}/adjustment', response_model=AdjustmentOut, status_code=status.HTTP_201_CREATED)
def create_adjustment_from_count(
    count_id: int,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    try:
        adjustment = engine.create_adjustment_from_count(count_id, user_id=principal.id)
    except (InventoryError, ValueError) as exc:
        raise to_http_error(exc) from exc
    if adjustment is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return adjustment
