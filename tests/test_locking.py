from __future__ import annotations

import threading
import unittest

from inventory_engine.errors import LockTimeout
from inventory_engine.services.locking import StockLockManager


class StockLockManagerTests(unittest.TestCase):
    def test_hold_yields_sorted_unique_keys(self) -> None:
        manager = StockLockManager(timeout_seconds=1.0)
        with manager.hold([('s1', 'B'), ('s1', 'A'), ('s1', 'B')]) as keys:
            self.assertEqual(keys, [('s1', 'A'), ('s1', 'B')])

    def test_contended_key_times_out(self) -> None:
        manager = StockLockManager(timeout_seconds=1.0)
        held = threading.Event()
        done = threading.Event()

        def holder() -> None:
            with manager.hold([('s1', 'A')]):
                held.set()
                done.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            self.assertTrue(held.wait(2))
            with self.assertRaises(LockTimeout) as ctx:
                with manager.hold([('s1', 'A')], timeout=0.05):
                    pass
            self.assertEqual(ctx.exception.details['sku'], 'A')
            self.assertEqual(ctx.exception.status_code, 503)
        finally:
            done.set()
            thread.join()

    def test_partial_acquisition_is_released_on_timeout(self) -> None:
        manager = StockLockManager(timeout_seconds=1.0)
        held = threading.Event()
        done = threading.Event()

        def holder() -> None:
            with manager.hold([('s1', 'B')]):
                held.set()
                done.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            self.assertTrue(held.wait(2))
            with self.assertRaises(LockTimeout):
                with manager.hold([('s1', 'A'), ('s1', 'B')], timeout=0.05):
                    pass
            # A was taken before B timed out and must be free again
            with manager.hold([('s1', 'A')], timeout=0.05):
                pass
        finally:
            done.set()
            thread.join()

    def test_released_key_can_be_reacquired(self) -> None:
        manager = StockLockManager(timeout_seconds=0.1)
        with manager.hold([('s1', 'A')]):
            pass
        with manager.hold([('s1', 'A')]):
            pass

    def test_released_keys_are_forgotten(self) -> None:
        manager = StockLockManager(timeout_seconds=0.1)
        for index in range(50):
            with manager.hold([('s1', f'SKU-{index}'), ('s2', f'SKU-{index}')]):
                self.assertEqual(manager.tracked_keys(), 2)
        self.assertEqual(manager.tracked_keys(), 0)

    def test_timed_out_waiter_does_not_leak_its_entry(self) -> None:
        manager = StockLockManager(timeout_seconds=1.0)
        held = threading.Event()
        done = threading.Event()

        def holder() -> None:
            with manager.hold([('s1', 'A')]):
                held.set()
                done.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            self.assertTrue(held.wait(2))
            with self.assertRaises(LockTimeout):
                with manager.hold([('s1', 'A'), ('s1', 'Z')], timeout=0.05):
                    pass
            self.assertEqual(manager.tracked_keys(), 1)
        finally:
            done.set()
            thread.join()
        self.assertEqual(manager.tracked_keys(), 0)


if __name__ == '__main__':
    unittest.main()
