from __future__ import annotations

import unittest
from decimal import Decimal

from inventory_engine.errors import InsufficientStock, InvalidTransition
from inventory_engine.models import MovementType, PurchaseOrderStatus, ReferenceType
from inventory_engine.services.fulfillment_service import OrderLine
from inventory_engine.services.receiving_service import PurchaseOrderLine

from engine_fixtures import EngineTestCase


class PurchaseReceivingTests(EngineTestCase):
    def _purchase_order(self):
        return self.engine.create_purchase_order(
            self.store_id,
            'PO-100',
            [
                PurchaseOrderLine(sku='SKU-A', quantity=10, unit_price=Decimal('2.00')),
                PurchaseOrderLine(sku='SKU-B', quantity=4, unit_price=Decimal('5.00'), product_id=200),
            ],
            user_id=1,
            supplier_id=9,
        )

    def test_partial_then_full_receipt(self) -> None:
        purchase_order = self._purchase_order()
        items = {item.sku: item.id for item in purchase_order.items}

        first = self.engine.receive_purchase_order(purchase_order.id, 'delivery-1', {items['SKU-A']: 6})

        self.assertEqual(len(first), 1)
        self.assertEqual(first[0].reference_type, ReferenceType.PURCHASE_ORDER)
        self.assertEqual(first[0].reference_id, f'{purchase_order.id}:delivery-1')
        self.assertEqual(first[0].unit_cost, Decimal('2.00'))
        self.assertEqual(self.level('SKU-A').quantity_on_hand, 6)
        self.assertEqual(self.engine.get_purchase_order(purchase_order.id).status, PurchaseOrderStatus.PENDING)

        self.engine.receive_purchase_order(purchase_order.id, 'delivery-2', {items['SKU-A']: 4, items['SKU-B']: 4})

        stored = self.engine.get_purchase_order(purchase_order.id)
        self.assertEqual(stored.status, PurchaseOrderStatus.RECEIVED)
        self.assertIsNotNone(stored.received_date)
        self.assertEqual(self.level('SKU-A').quantity_on_hand, 10)
        self.assertEqual(self.level('SKU-B').product_id, 200)
        self.assert_consistent('SKU-B')

    def test_replayed_receipt_is_booked_once(self) -> None:
        purchase_order = self._purchase_order()
        item_id = purchase_order.items[0].id

        first = self.engine.receive_purchase_order(purchase_order.id, 'delivery-1', {item_id: 3})
        second = self.engine.receive_purchase_order(purchase_order.id, 'delivery-1', {item_id: 3})

        self.assertEqual([m.id for m in first], [m.id for m in second])
        self.assertEqual(self.level('SKU-A').quantity_on_hand, 3)
        self.assertEqual(self.engine.get_purchase_order(purchase_order.id).items[0].received_quantity, 3)

    def test_over_receipt_is_rejected(self) -> None:
        purchase_order = self._purchase_order()
        item_id = purchase_order.items[1].id

        with self.assertRaises(ValueError):
            self.engine.receive_purchase_order(purchase_order.id, 'delivery-1', {item_id: 5})

    def test_canceled_purchase_order_cannot_be_received(self) -> None:
        purchase_order = self._purchase_order()
        self.engine.cancel_purchase_order(purchase_order.id)

        with self.assertRaises(InvalidTransition):
            self.engine.receive_purchase_order(purchase_order.id, 'delivery-1', {purchase_order.items[0].id: 1})

    def test_duplicate_skus_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.engine.create_purchase_order(
                self.store_id,
                'PO-200',
                [
                    PurchaseOrderLine(sku='SKU-A', quantity=1, unit_price=Decimal('1')),
                    PurchaseOrderLine(sku='SKU-A', quantity=2, unit_price=Decimal('1')),
                ],
                user_id=1,
            )


class TransferTests(EngineTestCase):
    def test_transfer_moves_stock_and_cost(self) -> None:
        self.add_stock('SKU-A', 10, store_id='store-1', unit_cost=Decimal('3.00'), product_id=5)

        outgoing, incoming = self.engine.transfer_stock('store-1', 'store-2', 'SKU-A', 4, 'TR-1')

        self.assertEqual((outgoing.movement_type, incoming.movement_type), (MovementType.OUT, MovementType.IN))
        self.assertEqual(outgoing.reference_id, incoming.reference_id)
        self.assertEqual(self.level('SKU-A', store_id='store-1').quantity_on_hand, 6)
        destination = self.level('SKU-A', store_id='store-2')
        self.assertEqual(destination.quantity_on_hand, 4)
        self.assertEqual(destination.unit_cost, Decimal('3.00'))
        self.assertEqual(destination.product_id, 5)

    def test_transfer_is_idempotent_and_bounded(self) -> None:
        self.add_stock('SKU-A', 5, store_id='store-1')

        self.engine.transfer_stock('store-1', 'store-2', 'SKU-A', 2, 'TR-1')
        self.engine.transfer_stock('store-1', 'store-2', 'SKU-A', 2, 'TR-1')
        self.assertEqual(self.level('SKU-A', store_id='store-1').quantity_on_hand, 3)
        self.assertEqual(self.level('SKU-A', store_id='store-2').quantity_on_hand, 2)

        with self.assertRaises(InsufficientStock):
            self.engine.transfer_stock('store-1', 'store-2', 'SKU-A', 4, 'TR-2')
        with self.assertRaises(ValueError):
            self.engine.transfer_stock('store-1', 'store-1', 'SKU-A', 1, 'TR-3')


class ReturnTests(EngineTestCase):
    def _completed_order(self):
        self.add_stock('SKU-A', 10)
        order = self.engine.create_order(self.store_id, 'R-1', [OrderLine(quantity=3, sku='SKU-A')])
        self.engine.confirm_order(order.id)
        self.engine.fulfill_order(order.id)
        return order

    def test_return_puts_stock_back(self) -> None:
        order = self._completed_order()

        movements = self.engine.record_return(order.id, 'RMA-1', {'SKU-A': 2})

        self.assertEqual(movements[0].reference_type, ReferenceType.RETURN)
        self.assertEqual(movements[0].reference_id, f'{order.id}:RMA-1')
        self.assertEqual(self.level('SKU-A').quantity_on_hand, 9)
        self.assertEqual(self.engine.get_order(order.id).items[0].returned_quantity, 2)

        again = self.engine.record_return(order.id, 'RMA-1', {'SKU-A': 2})
        self.assertEqual([m.id for m in again], [m.id for m in movements])
        self.assertEqual(self.level('SKU-A').quantity_on_hand, 9)

    def test_cannot_return_more_than_sold(self) -> None:
        order = self._completed_order()
        self.engine.record_return(order.id, 'RMA-1', {'SKU-A': 2})

        with self.assertRaises(ValueError):
            self.engine.record_return(order.id, 'RMA-2', {'SKU-A': 2})
        with self.assertRaises(ValueError):
            self.engine.record_return(order.id, 'RMA-3', {'SKU-Z': 1})

    def test_only_completed_orders_take_returns(self) -> None:
        self.add_stock('SKU-A', 10)
        order = self.engine.create_order(self.store_id, 'R-2', [OrderLine(quantity=1, sku='SKU-A')])

        with self.assertRaises(InvalidTransition):
            self.engine.record_return(order.id, 'RMA-1', {'SKU-A': 1})


if __name__ == '__main__':
    unittest.main()
