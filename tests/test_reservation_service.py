from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from inventory_engine.errors import InsufficientStock, InvalidReservationState, NotFound
from inventory_engine.models import MovementType, ReleaseReason, ReservationStatus

from engine_fixtures import EngineTestCase


class ReservationServiceTests(EngineTestCase):
    def test_reserve_consume_walkthrough(self) -> None:
        self.add_stock('SKU-1', 10)

        reservation_a = self.engine.reserve_stock(self.store_id, 'SKU-1', 6, 'order-A')
        level = self.level('SKU-1')
        self.assertEqual((level.quantity_on_hand, level.quantity_reserved, level.quantity_available), (10, 6, 4))

        with self.assertRaises(InsufficientStock):
            self.engine.reserve_stock(self.store_id, 'SKU-1', 5, 'order-B')
        level = self.level('SKU-1')
        self.assertEqual((level.quantity_on_hand, level.quantity_reserved, level.quantity_available), (10, 6, 4))

        entry = self.engine.consume_reservation(reservation_a)
        level = self.level('SKU-1')
        self.assertEqual((level.quantity_on_hand, level.quantity_reserved, level.quantity_available), (4, 0, 4))
        self.assertEqual(entry.movement_type, MovementType.OUT)
        self.assertEqual(entry.quantity, 6)
        self.assertEqual(entry.reference_id, 'order-A')
        outs = [e for e in self.engine.list_movements(self.store_id, 'SKU-1') if e.movement_type == MovementType.OUT]
        self.assertEqual(len(outs), 1)
        self.assert_consistent('SKU-1')

    def test_reservation_writes_no_ledger_entry(self) -> None:
        self.add_stock('SKU-1', 10)
        before = len(self.engine.list_movements(self.store_id, 'SKU-1'))

        self.engine.reserve_stock(self.store_id, 'SKU-1', 3, 'order-A')

        self.assertEqual(len(self.engine.list_movements(self.store_id, 'SKU-1')), before)

    def test_release_returns_availability_and_keeps_on_hand(self) -> None:
        self.add_stock('SKU-1', 10)
        reservation_id = self.engine.reserve_stock(self.store_id, 'SKU-1', 4, 'order-A')

        self.engine.release_reservation(reservation_id)

        level = self.level('SKU-1')
        self.assertEqual((level.quantity_on_hand, level.quantity_reserved, level.quantity_available), (10, 0, 10))
        reservation = self.engine.get_reservation(reservation_id)
        self.assertEqual(reservation.status, ReservationStatus.RELEASED)
        self.assertEqual(reservation.release_reason, ReleaseReason.MANUAL)

    def test_consume_and_release_are_mutually_exclusive(self) -> None:
        self.add_stock('SKU-1', 10)
        consumed = self.engine.reserve_stock(self.store_id, 'SKU-1', 2, 'order-A')
        released = self.engine.reserve_stock(self.store_id, 'SKU-1', 2, 'order-B')

        self.engine.consume_reservation(consumed)
        self.engine.release_reservation(released)

        with self.assertRaises(InvalidReservationState):
            self.engine.release_reservation(consumed)
        with self.assertRaises(InvalidReservationState):
            self.engine.consume_reservation(consumed)
        with self.assertRaises(InvalidReservationState):
            self.engine.consume_reservation(released)

        level = self.level('SKU-1')
        self.assertEqual((level.quantity_on_hand, level.quantity_reserved), (8, 0))
        self.assert_consistent('SKU-1')

    def test_same_order_and_quantity_returns_the_existing_hold(self) -> None:
        self.add_stock('SKU-1', 10)

        first = self.engine.reserve_stock(self.store_id, 'SKU-1', 3, 'order-A')
        second = self.engine.reserve_stock(self.store_id, 'SKU-1', 3, 'order-A')

        self.assertEqual(first, second)
        self.assertEqual(self.level('SKU-1').quantity_reserved, 3)

    def test_same_order_with_different_quantity_is_rejected(self) -> None:
        self.add_stock('SKU-1', 10)
        self.engine.reserve_stock(self.store_id, 'SKU-1', 3, 'order-A')

        with self.assertRaises(InvalidReservationState):
            self.engine.reserve_stock(self.store_id, 'SKU-1', 4, 'order-A')
        self.assertEqual(self.level('SKU-1').quantity_reserved, 3)

    def test_reserving_unknown_sku_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            self.engine.reserve_stock(self.store_id, 'MISSING', 1, 'order-A')

    def test_non_positive_quantity_is_rejected(self) -> None:
        self.add_stock('SKU-1', 10)
        with self.assertRaises(ValueError):
            self.engine.reserve_stock(self.store_id, 'SKU-1', 0, 'order-A')

    def test_expired_reservations_are_released(self) -> None:
        self.add_stock('SKU-1', 10)
        short = self.engine.reserve_stock(self.store_id, 'SKU-1', 2, 'order-A', ttl_minutes=5)
        unlimited = self.engine.reserve_stock(self.store_id, 'SKU-1', 3, 'order-B', ttl_minutes=0)

        released = self.engine.expire_reservations(now=datetime.now(tz=timezone.utc) + timedelta(minutes=10))

        self.assertEqual(released, 1)
        self.assertEqual(self.engine.get_reservation(short).release_reason, ReleaseReason.EXPIRED)
        self.assertEqual(self.engine.get_reservation(unlimited).status, ReservationStatus.ACTIVE)
        self.assertEqual(self.level('SKU-1').quantity_reserved, 3)

    def test_unexpired_reservations_are_left_alone(self) -> None:
        self.add_stock('SKU-1', 10)
        self.engine.reserve_stock(self.store_id, 'SKU-1', 2, 'order-A', ttl_minutes=30)

        self.assertEqual(self.engine.expire_reservations(), 0)
        self.assertEqual(self.level('SKU-1').quantity_reserved, 2)


if __name__ == '__main__':
    unittest.main()
