from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import select

from inventory_engine.expire_reservations import expire_reservations
from inventory_engine.models import StockRecord
from inventory_engine.reconcile_stock import main as reconcile_main, reconcile_store
from inventory_engine.services.audit_service import list_audit_entries

from engine_fixtures import EngineTestCase


class ReconciliationTests(EngineTestCase):
    def _tamper(self, sku: str, *, on_hand: int, reserved: int) -> None:
        with self.session_factory() as db:
            record = db.execute(select(StockRecord).where(StockRecord.sku == sku)).scalar_one()
            record.quantity_on_hand = on_hand
            record.quantity_reserved = reserved
            record.quantity_available = on_hand - reserved
            db.commit()

    def test_verify_reports_drift_and_rebuild_repairs_it(self) -> None:
        self.add_stock('SKU-1', 10)
        self.engine.reserve_stock(self.store_id, 'SKU-1', 3, 'order-1')
        self._tamper('SKU-1', on_hand=12, reserved=1)

        drift = self.engine.verify_stock(self.store_id, 'SKU-1')
        self.assertFalse(drift.in_sync)
        self.assertEqual((drift.recorded_on_hand, drift.ledger_on_hand), (12, 10))
        self.assertEqual((drift.recorded_reserved, drift.reservation_reserved), (1, 3))

        self.engine.rebuild_stock(self.store_id, 'SKU-1', user_id=4)

        level = self.level('SKU-1')
        self.assertEqual((level.quantity_on_hand, level.quantity_reserved, level.quantity_available), (10, 3, 7))
        self.assert_consistent('SKU-1')
        with self.session_factory() as db:
            entries = list_audit_entries(db, entity_type='inventory', entity_id=level.inventory_id)
        self.assertEqual([entry.action for entry in entries], ['STOCK_REBUILT'])
        self.assertEqual(entries[0].meta['ledger_on_hand'], 10)

    def test_rebuild_of_a_clean_record_changes_nothing(self) -> None:
        self.add_stock('SKU-1', 10)

        drift = self.engine.rebuild_stock(self.store_id, 'SKU-1')

        self.assertTrue(drift.in_sync)
        self.assertEqual(self.level('SKU-1').quantity_on_hand, 10)

    def test_reconcile_store_lists_and_optionally_rebuilds(self) -> None:
        self.add_stock('SKU-1', 10)
        self.add_stock('SKU-2', 5)
        self._tamper('SKU-2', on_hand=2, reserved=0)

        drifted = reconcile_store(self.store_id, engine=self.engine)
        self.assertEqual([d.sku for d in drifted], ['SKU-2'])
        self.assertEqual(self.level('SKU-2').quantity_on_hand, 2)

        reconcile_store(self.store_id, engine=self.engine, rebuild=True)
        self.assertEqual(self.level('SKU-2').quantity_on_hand, 5)

    @patch('inventory_engine.reconcile_stock.setup_logging')
    @patch('inventory_engine.reconcile_stock.reconcile_store')
    def test_reconcile_cli_passes_arguments(self, reconcile_mock, _setup_logging_mock) -> None:
        reconcile_mock.return_value = []
        with patch('sys.argv', ['reconcile_stock', 'store-9', '--rebuild']), patch('builtins.print'):
            reconcile_main()
        reconcile_mock.assert_called_once_with('store-9', rebuild=True)

    def test_expiry_job_drains_in_batches(self) -> None:
        self.add_stock('SKU-1', 10)
        for index in range(5):
            self.engine.reserve_stock(self.store_id, 'SKU-1', 1, f'order-{index}', ttl_minutes=1)

        released = expire_reservations(
            engine=self.engine,
            now=datetime.now(tz=timezone.utc) + timedelta(minutes=5),
            batch_size=2,
        )

        self.assertEqual(released, 5)
        self.assertEqual(self.level('SKU-1').quantity_reserved, 0)


if __name__ == '__main__':
    unittest.main()
