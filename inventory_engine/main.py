from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from inventory_engine.config import settings
from inventory_engine.db import SessionLocal
from inventory_engine.engine import InventoryEngine
from inventory_engine.logging_setup import setup_logging
from inventory_engine.routers import adjustments, alerts, orders, reservations, stock

logger = setup_logging(settings)


def create_app(inventory_engine: InventoryEngine | None = None) -> FastAPI:
    app = FastAPI(title='Inventory Engine')
    app.state.engine = inventory_engine or InventoryEngine(SessionLocal)

    app.include_router(stock.router)
    app.include_router(reservations.router)
    app.include_router(orders.router)
    app.include_router(orders.purchase_router)
    app.include_router(adjustments.router)
    app.include_router(adjustments.count_router)
    app.include_router(alerts.router)

    @app.get('/healthz', response_class=PlainTextResponse)
    def healthz() -> str:
        return 'ok'

    return app


app = create_app()
