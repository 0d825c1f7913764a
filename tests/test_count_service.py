from __future__ import annotations

import unittest
from decimal import Decimal

from inventory_engine.errors import InvalidTransition
from inventory_engine.models import AdjustmentStatus, CountStatus, CountType

from engine_fixtures import EngineTestCase


class CountServiceTests(EngineTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.add_stock('SKU-A', 10, unit_cost=Decimal('2.50'))
        self.add_stock('SKU-B', 4)
        self.add_stock('SKU-C', 6)

    def test_full_count_snapshots_every_record(self) -> None:
        count = self.engine.start_count(self.store_id, CountType.FULL, started_by=2)

        self.assertEqual(count.status, CountStatus.IN_PROGRESS)
        self.assertEqual(sorted(item.expected_quantity for item in count.items), [4, 6, 10])
        self.assertTrue(all(item.counted_quantity is None for item in count.items))

    def test_partial_count_requires_skus(self) -> None:
        with self.assertRaises(ValueError):
            self.engine.start_count(self.store_id, CountType.PARTIAL, started_by=2)

        count = self.engine.start_count(self.store_id, CountType.PARTIAL, started_by=2, skus=['SKU-B'])
        self.assertEqual(len(count.items), 1)

    def test_complete_returns_discrepancies_without_touching_stock(self) -> None:
        count = self.engine.start_count(self.store_id, CountType.FULL, started_by=2)
        self.engine.record_counts(count.id, {'SKU-A': 8, 'SKU-B': 4})

        proposals = self.engine.complete_count(count.id, completed_by=2)

        self.assertEqual(len(proposals), 1)
        proposal = proposals[0]
        self.assertEqual((proposal.sku, proposal.expected_quantity, proposal.actual_quantity), ('SKU-A', 10, 8))
        self.assertEqual(proposal.difference, -2)
        self.assertEqual(proposal.cost_impact, Decimal('-5.0000'))
        self.assertEqual(self.level('SKU-A').quantity_on_hand, 10)
        # completing a count never writes the stock record
        self.assertIsNone(self.level('SKU-A').last_count_date)
        self.assertIsNone(self.level('SKU-C').last_count_date)

    def test_count_is_frozen_once_completed(self) -> None:
        count = self.engine.start_count(self.store_id, CountType.FULL, started_by=2)
        self.engine.complete_count(count.id, completed_by=2)

        with self.assertRaises(InvalidTransition):
            self.engine.complete_count(count.id, completed_by=2)
        with self.assertRaises(InvalidTransition):
            self.engine.record_counts(count.id, {'SKU-A': 1})

    def test_unknown_or_negative_counts_are_rejected(self) -> None:
        count = self.engine.start_count(self.store_id, CountType.PARTIAL, started_by=2, skus=['SKU-A'])

        with self.assertRaises(ValueError):
            self.engine.record_counts(count.id, {'SKU-B': 1})
        with self.assertRaises(ValueError):
            self.engine.record_counts(count.id, {'SKU-A': -1})

    def test_adjustment_from_count_is_an_explicit_second_step(self) -> None:
        count = self.engine.start_count(self.store_id, CountType.FULL, started_by=2)
        self.engine.record_counts(count.id, {'SKU-A': 8, 'SKU-B': 5, 'SKU-C': 6})
        self.engine.complete_count(count.id, completed_by=2)

        adjustment = self.engine.create_adjustment_from_count(count.id, user_id=2)
        again = self.engine.create_adjustment_from_count(count.id, user_id=2)

        self.assertEqual(adjustment.id, again.id)
        self.assertEqual(adjustment.status, AdjustmentStatus.PENDING)
        self.assertEqual(adjustment.source_count_id, count.id)
        self.assertEqual(sorted(item.difference for item in adjustment.items), [-2, 1])

        self.assertIsNone(self.level('SKU-A').last_count_date)
        self.engine.approve_adjustment(adjustment.id, approver=1)
        self.assertEqual(self.level('SKU-A').quantity_on_hand, 8)
        self.assertEqual(self.level('SKU-B').quantity_on_hand, 5)
        self.assertIsNotNone(self.level('SKU-A').last_count_date)
        self.assertIsNotNone(self.level('SKU-B').last_count_date)
        # matched its count, so no movement and nothing to stamp
        self.assertIsNone(self.level('SKU-C').last_count_date)
        self.assert_consistent('SKU-A')

    def test_proposals_are_readable_after_completion(self) -> None:
        count = self.engine.start_count(self.store_id, CountType.PARTIAL, started_by=2, skus=['SKU-A'])
        with self.assertRaises(InvalidTransition):
            self.engine.proposed_adjustment_items(count.id)

        self.engine.record_counts(count.id, {'SKU-A': 12})
        completed = self.engine.complete_count(count.id, completed_by=2)

        self.assertEqual(self.engine.proposed_adjustment_items(count.id), completed)
        self.assertEqual(completed[0].difference, 2)

    def test_adjustment_from_count_needs_a_completed_count(self) -> None:
        count = self.engine.start_count(self.store_id, CountType.FULL, started_by=2)
        with self.assertRaises(InvalidTransition):
            self.engine.create_adjustment_from_count(count.id, user_id=2)

    def test_count_without_discrepancies_creates_no_adjustment(self) -> None:
        count = self.engine.start_count(self.store_id, CountType.PARTIAL, started_by=2, skus=['SKU-B'])
        self.engine.record_counts(count.id, {'SKU-B': 4})
        self.assertEqual(self.engine.complete_count(count.id, completed_by=2), [])

        self.assertIsNone(self.engine.create_adjustment_from_count(count.id, user_id=2))


if __name__ == '__main__':
    unittest.main()
