from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from inventory_engine.main import create_app

from engine_fixtures import EngineTestCase

MANAGER = {'X-User-Id': '1', 'X-User-Role': 'MANAGER'}
CLERK = {'X-User-Id': '2', 'X-User-Role': 'STORE', 'X-Store-Id': 'store-1'}


class RouterTests(EngineTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = TestClient(create_app(self.engine))
        self.add_stock('SKU-1', 10, reorder_level=5)

    def test_requests_without_identity_are_rejected(self) -> None:
        response = self.client.get('/stock/store-1/SKU-1')
        self.assertEqual(response.status_code, 401)

    def test_store_role_is_scoped_to_its_store(self) -> None:
        self.assertEqual(self.client.get('/stock/store-1/SKU-1', headers=CLERK).status_code, 200)
        self.assertEqual(self.client.get('/stock/store-2', headers=CLERK).status_code, 403)

    def test_stock_level_and_movements(self) -> None:
        body = self.client.get('/stock/store-1/SKU-1', headers=CLERK).json()
        self.assertEqual((body['quantity_on_hand'], body['quantity_available']), (10, 10))

        movements = self.client.get('/stock/store-1/SKU-1/movements', headers=CLERK).json()
        self.assertEqual([m['delta'] for m in movements], [10])

        missing = self.client.get('/stock/store-1/NOPE', headers=CLERK)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()['detail']['error'], 'NotFound')

    def test_reservation_lifecycle_over_http(self) -> None:
        created = self.client.post(
            '/reservations',
            json={'store_id': 'store-1', 'sku': 'SKU-1', 'quantity': 6, 'order_ref': 'web-1'},
            headers=CLERK,
        )
        self.assertEqual(created.status_code, 201)
        reservation_id = created.json()['id']
        self.assertEqual(created.json()['status'], 'active')

        refused = self.client.post(
            '/reservations',
            json={'store_id': 'store-1', 'sku': 'SKU-1', 'quantity': 5, 'order_ref': 'web-2'},
            headers=CLERK,
        )
        self.assertEqual(refused.status_code, 409)
        self.assertEqual(refused.json()['detail']['error'], 'InsufficientStock')

        consumed = self.client.post(f'/reservations/{reservation_id}/consume', headers=CLERK)
        self.assertEqual(consumed.status_code, 200)
        self.assertEqual(consumed.json()['delta'], -6)

        again = self.client.post(f'/reservations/{reservation_id}/release', headers=CLERK)
        self.assertEqual(again.status_code, 409)

    def test_invalid_payload_is_unprocessable(self) -> None:
        response = self.client.post(
            '/reservations',
            json={'store_id': 'store-1', 'sku': 'SKU-1', 'quantity': 0, 'order_ref': 'web-1'},
            headers=CLERK,
        )
        self.assertEqual(response.status_code, 422)

    def test_adjustment_approval_needs_a_manager(self) -> None:
        created = self.client.post(
            '/adjustments',
            json={'store_id': 'store-1', 'reason': 'breakage', 'items': [{'sku': 'SKU-1', 'actual_quantity': 7}]},
            headers=CLERK,
        )
        self.assertEqual(created.status_code, 201)
        adjustment_id = created.json()['id']

        self.assertEqual(self.client.post(f'/adjustments/{adjustment_id}/approve', headers=CLERK).status_code, 403)

        approved = self.client.post(f'/adjustments/{adjustment_id}/approve', headers=MANAGER)
        self.assertEqual(approved.status_code, 200)
        self.assertEqual([m['delta'] for m in approved.json()], [-3])

        listed = self.client.get('/adjustments', params={'store_id': 'store-1', 'status': 'approved'}, headers=MANAGER)
        self.assertEqual([a['id'] for a in listed.json()], [adjustment_id])

    def test_count_flow_over_http(self) -> None:
        count = self.client.post('/counts', json={'store_id': 'store-1', 'count_type': 'full'}, headers=CLERK).json()
        self.client.post(f'/counts/{count["id"]}/items', json={'counted_by_sku': {'SKU-1': 9}}, headers=CLERK)
        self.assertEqual(self.client.get(f'/counts/{count["id"]}/proposals', headers=CLERK).status_code, 409)

        proposals = self.client.post(f'/counts/{count["id"]}/complete', headers=CLERK).json()
        self.assertEqual([(p['sku'], p['difference']) for p in proposals], [('SKU-1', -1)])
        self.assertEqual(self.client.get(f'/counts/{count["id"]}/proposals', headers=CLERK).json(), proposals)

        adjustment = self.client.post(f'/counts/{count["id"]}/adjustment', headers=CLERK)
        self.assertEqual(adjustment.status_code, 201)
        self.assertEqual(adjustment.json()['status'], 'pending')

    def test_order_flow_and_alerts(self) -> None:
        order = self.client.post(
            '/orders',
            json={'store_id': 'store-1', 'order_number': 'W-1', 'items': [{'sku': 'SKU-1', 'quantity': 6}]},
            headers=CLERK,
        ).json()
        confirmed = self.client.post(f'/orders/{order["id"]}/confirm', headers=CLERK)
        self.assertEqual(confirmed.status_code, 200)

        alerts = self.client.get('/alerts', params={'store_id': 'store-1'}, headers=CLERK).json()
        self.assertEqual([a['alert_level'] for a in alerts], ['low'])

        fulfilled = self.client.post(f'/orders/{order["id"]}/fulfill', headers=CLERK)
        self.assertEqual([m['quantity'] for m in fulfilled.json()], [6])
        self.assertEqual(self.client.get(f'/orders/{order["id"]}', headers=CLERK).json()['status'], 'completed')

        acknowledged = self.client.post(f'/alerts/{alerts[0]["id"]}/acknowledge', headers=CLERK)
        self.assertEqual(acknowledged.status_code, 204)
        self.assertEqual(self.client.post(f'/alerts/{alerts[0]["id"]}/acknowledge', headers=CLERK).status_code, 409)


if __name__ == '__main__':
    unittest.main()
