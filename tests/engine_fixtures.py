from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from inventory_engine.db import build_engine, build_session_factory
from inventory_engine.engine import InventoryEngine
from inventory_engine.models import Base
from inventory_engine.services.locking import StockLockManager


def memory_database() -> Engine:
    bind = build_engine('sqlite+pysqlite:///:memory:', poolclass=StaticPool)
    Base.metadata.create_all(bind)
    return bind


class EngineTestCase(unittest.TestCase):
    store_id = 'store-1'

    def setUp(self) -> None:
        self.bind = self.make_database()
        self.session_factory = build_session_factory(self.bind)
        self.engine = InventoryEngine(self.session_factory, lock_manager=StockLockManager(timeout_seconds=2.0))

    def tearDown(self) -> None:
        self.bind.dispose()

    def make_database(self) -> Engine:
        return memory_database()

    def add_stock(
        self,
        sku: str,
        on_hand: int = 0,
        *,
        store_id: str | None = None,
        reorder_level: int = 0,
        unit_cost: Decimal | None = None,
        product_id: int | None = None,
        variant_id: int | None = None,
    ):
        store_id = store_id or self.store_id
        self.engine.register_stock_record(
            store_id,
            sku,
            reorder_level=reorder_level,
            unit_cost=unit_cost,
            product_id=product_id,
            variant_id=variant_id,
        )
        if on_hand:
            self.engine.receive_stock(store_id, sku, on_hand, reference_id=f'opening-{sku}', unit_cost=unit_cost)
        return self.engine.get_stock_level(store_id, sku)

    def level(self, sku: str, *, store_id: str | None = None):
        return self.engine.get_stock_level(store_id or self.store_id, sku)

    def assert_consistent(self, sku: str, *, store_id: str | None = None) -> None:
        level = self.level(sku, store_id=store_id)
        self.assertEqual(level.quantity_available, level.quantity_on_hand - level.quantity_reserved)
        self.assertGreaterEqual(level.quantity_reserved, 0)
        self.assertGreaterEqual(level.quantity_available, 0)
        self.assertTrue(self.engine.verify_stock(level.store_id, sku).in_sync)
