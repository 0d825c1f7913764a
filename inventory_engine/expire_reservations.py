from __future__ import annotations

import argparse
from datetime import datetime

from inventory_engine.config import settings
from inventory_engine.db import SessionLocal
from inventory_engine.engine import InventoryEngine
from inventory_engine.logging_setup import setup_logging


def expire_reservations(*, engine: InventoryEngine | None = None, now: datetime | None = None, batch_size: int = 500) -> int:
    engine = engine or InventoryEngine(SessionLocal)
    total = 0
    while True:
        released = engine.expire_reservations(now=now, limit=batch_size)
        total += released
        if released < batch_size:
            return total


def main() -> None:
    parser = argparse.ArgumentParser(description='Release stock reservations whose hold has expired.')
    parser.add_argument(
        '--batch-size',
        type=int,
        default=500,
        help='How many expired reservations to load per pass.',
    )
    args = parser.parse_args()

    setup_logging(settings)
    released = expire_reservations(batch_size=args.batch_size)
    print(f'Reservation expiry complete: released={released}')


if __name__ == '__main__':
    main()
