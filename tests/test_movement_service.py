from __future__ import annotations

import unittest
from decimal import Decimal

from inventory_engine.errors import InsufficientStock, NotFound
from inventory_engine.models import MovementType, ReferenceType

from engine_fixtures import EngineTestCase


class MovementServiceTests(EngineTestCase):
    def test_receipt_to_unknown_sku_creates_the_record(self) -> None:
        entry = self.engine.receive_stock(self.store_id, 'NEW-1', 7, reference_id='po-1')

        self.assertEqual(entry.movement_type, MovementType.IN)
        self.assertEqual(entry.delta, 7)
        level = self.level('NEW-1')
        self.assertEqual(level.quantity_on_hand, 7)
        self.assertEqual(level.quantity_available, 7)

    def test_issue_from_unknown_sku_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            self.engine.issue_stock(self.store_id, 'MISSING', 1, reference_id='order-1')

    def test_issue_beyond_on_hand_changes_nothing(self) -> None:
        self.add_stock('SKU-1', 3)

        with self.assertRaises(InsufficientStock):
            self.engine.issue_stock(self.store_id, 'SKU-1', 4, reference_id='order-1')

        self.assertEqual(self.level('SKU-1').quantity_on_hand, 3)
        self.assertEqual(len(self.engine.list_movements(self.store_id, 'SKU-1')), 1)

    def test_issue_cannot_eat_into_reserved_stock(self) -> None:
        self.add_stock('SKU-1', 5)
        self.engine.reserve_stock(self.store_id, 'SKU-1', 4, 'order-1')

        with self.assertRaises(InsufficientStock):
            self.engine.issue_stock(self.store_id, 'SKU-1', 2, reference_id='manual-1')

        self.assert_consistent('SKU-1')

    def test_repeated_reference_is_applied_once(self) -> None:
        self.add_stock('SKU-1', 10)

        first = self.engine.issue_stock(self.store_id, 'SKU-1', 2, reference_id='order-9')
        second = self.engine.issue_stock(self.store_id, 'SKU-1', 2, reference_id='order-9')

        self.assertEqual(first.id, second.id)
        self.assertEqual(self.level('SKU-1').quantity_on_hand, 8)
        outs = [e for e in self.engine.list_movements(self.store_id, 'SKU-1') if e.movement_type == MovementType.OUT]
        self.assertEqual(len(outs), 1)

    def test_priced_receipts_move_unit_cost_to_weighted_average(self) -> None:
        self.add_stock('SKU-1', 10, unit_cost=Decimal('2.00'))

        self.engine.receive_stock(self.store_id, 'SKU-1', 10, reference_id='po-2', unit_cost=Decimal('4.00'))

        level = self.level('SKU-1')
        self.assertEqual(level.unit_cost, Decimal('3.0000'))
        self.assertEqual(level.total_value, Decimal('60.0000'))

    def test_zero_or_negative_quantity_is_rejected(self) -> None:
        self.add_stock('SKU-1', 1)
        with self.assertRaises(ValueError):
            self.engine.receive_stock(self.store_id, 'SKU-1', 0, reference_id='po-3')
        with self.assertRaises(ValueError):
            self.engine.issue_stock(self.store_id, 'SKU-1', -1, reference_id='order-3')

    def test_ledger_replay_matches_on_hand_after_mixed_movements(self) -> None:
        self.add_stock('SKU-1', 10)
        self.engine.issue_stock(self.store_id, 'SKU-1', 4, reference_id='order-1')
        self.engine.receive_stock(self.store_id, 'SKU-1', 6, reference_id='return-1', reference_type=ReferenceType.RETURN)
        self.engine.issue_stock(self.store_id, 'SKU-1', 1, reference_id='order-2')

        level = self.level('SKU-1')
        replayed = sum(e.delta for e in self.engine.list_movements(self.store_id, 'SKU-1'))
        self.assertEqual(level.quantity_on_hand, 11)
        self.assertEqual(replayed, level.quantity_on_hand)
        self.assert_consistent('SKU-1')

    def test_list_movements_since_id(self) -> None:
        self.add_stock('SKU-1', 10)
        first = self.engine.list_movements(self.store_id, 'SKU-1')[0]
        self.engine.issue_stock(self.store_id, 'SKU-1', 1, reference_id='order-1')

        later = self.engine.list_movements(self.store_id, 'SKU-1', since_id=first.id)
        self.assertEqual([e.reference_id for e in later], ['order-1'])


if __name__ == '__main__':
    unittest.main()
