from __future__ import annotations

import argparse

from inventory_engine.config import settings
from inventory_engine.db import SessionLocal
from inventory_engine.engine import InventoryEngine
from inventory_engine.logging_setup import setup_logging
from inventory_engine.services.stock_service import StockDrift


def reconcile_store(store_id: str, *, engine: InventoryEngine | None = None, rebuild: bool = False) -> list[StockDrift]:
    """Compare every stock record of a store with its ledger; optionally rewrite the drifted ones."""
    engine = engine or InventoryEngine(SessionLocal)
    drifted: list[StockDrift] = []
    for sku in engine.store_skus(store_id):
        drift = engine.verify_stock(store_id, sku)
        if drift.in_sync:
            continue
        if rebuild:
            drift = engine.rebuild_stock(store_id, sku)
        drifted.append(drift)
    return drifted


def main() -> None:
    parser = argparse.ArgumentParser(description='Check cached stock totals against the movement ledger.')
    parser.add_argument('store_id', help='Store whose stock records are checked.')
    parser.add_argument(
        '--rebuild',
        action='store_true',
        help='Rewrite drifted records from the ledger and the active reservations.',
    )
    args = parser.parse_args()

    setup_logging(settings)
    drifted = reconcile_store(args.store_id, rebuild=args.rebuild)
    for drift in drifted:
        print(
            f'{drift.sku}: on_hand {drift.recorded_on_hand} vs ledger {drift.ledger_on_hand}, '
            f'reserved {drift.recorded_reserved} vs active {drift.reservation_reserved}'
        )
    action = 'rebuilt' if args.rebuild else 'drifted'
    print(f'Stock reconciliation complete: store={args.store_id}, {action}={len(drifted)}')


if __name__ == '__main__':
    main()
