"""
drainpay/core/locks.py

Per-channel mutual exclusion.

The check-then-update sequence in the request path (validate against
total_charged, then commit) and the claim path (read highest voucher,
claim, mark claimed) must not interleave for the same channel. Different
channels never contend.

Locks are re-entrant so that commit() can call store_voucher() while
already holding the channel's lock.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class ChannelLocks:
    """Lazily created RLock per channel id. Thread-safe (single process)."""

    def __init__(self) -> None:
        self._guard: threading.Lock = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, channel_id: str) -> threading.RLock:
        key = channel_id.lower()
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, channel_id: str) -> Iterator[None]:
        lock = self.get(channel_id)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
