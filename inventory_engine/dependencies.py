from fastapi import HTTPException, Request

from inventory_engine.engine import InventoryEngine
from inventory_engine.errors import InventoryError


def get_engine(request: Request) -> InventoryEngine:
    return request.app.state.engine


def to_http_error(exc: InventoryError | ValueError) -> HTTPException:
    if isinstance(exc, InventoryError):
        return HTTPException(status_code=exc.status_code, detail=exc.to_dict())
    return HTTPException(status_code=400, detail=str(exc))
