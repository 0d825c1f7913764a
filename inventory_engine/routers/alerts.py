from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from inventory_engine.auth import Principal, assert_store_scope, get_current_principal
from inventory_engine.dependencies import get_engine, to_http_error
from inventory_engine.engine import InventoryEngine
from inventory_engine.errors import InventoryError
from inventory_engine.schemas import AlertOut

router = APIRouter(prefix='/alerts', tags=['alerts'])


@router.get('', response_model=list[AlertOut])
def list_alerts(
    store_id: str,
    open_only: bool = True,
    limit: int = Query(default=200, ge=1, le=1000),
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    assert_store_scope(principal, store_id)
    return engine.list_alerts(store_id, open_only=open_only, limit=limit)


@router.post('/{alert_id}/acknowledge', status_code=status.HTTP_204_NO_CONTENT)
def acknowledge_alert(
    alert_id: int,
    engine: InventoryEngine = Depends(get_engine),
    principal: Principal = Depends(get_current_principal),
):
    try:
        engine.acknowledge_alert(alert_id, principal.id)
    except InventoryError as exc:
        raise to_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
