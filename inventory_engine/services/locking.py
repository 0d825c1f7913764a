from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from inventory_engine.errors import LockTimeout

logger = logging.getLogger(__name__)

StockKey = tuple[str, str]


class StockLockManager:
    """Per-(store_id, sku) mutual exclusion for a single process.

    Keys are always taken in sorted order so two callers locking overlapping
    key sets cannot deadlock. Every acquisition shares one deadline; when it
    passes, the locks already held are released and LockTimeout is raised.
    """

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        # key -> [lock, holders and waiters]; dropped when the count reaches zero
        self._locks: dict[StockKey, list] = {}

    def tracked_keys(self) -> int:
        """How many keys are currently held or awaited."""
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: StockKey) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: StockKey) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[StockKey], *, timeout: float | None = None) -> Iterator[list[StockKey]]:
        ordered = sorted(set(keys))
        budget = self.timeout_seconds if timeout is None else timeout
        deadline = time.monotonic() + budget
        checked_out: list[StockKey] = []
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                remaining = max(deadline - time.monotonic(), 0)
                lock = self._checkout(key)
                checked_out.append(key)
                if not lock.acquire(timeout=remaining):
                    logger.warning('Lock timeout on store=%s sku=%s after %.2fs', key[0], key[1], budget)
                    raise LockTimeout(
                        f'Timed out waiting for stock lock on {key[1]}',
                        details={'store_id': key[0], 'sku': key[1], 'timeout_seconds': budget},
                    )
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)
