"""
Account Lock Manager

Serializes balance mutations per account. Multi-account acquisition always
takes locks in ascending key order so that two transfers touching the same
pair of accounts in opposite directions cannot deadlock.

Entries exist only while some thread holds or waits for them, so the map
does not grow with every id a caller ever mentions.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List

from .errors import ContentionError


def customer_key(customer_id: str) -> str:
    """Lock key guarding a customer's existence against account creation"""
    return f"customer:{customer_id}"


class _LockEntry:
    """A re-entrant lock and the number of threads using it"""

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class AccountLockManager:
    """Hands out one re-entrant lock per key with a bounded wait"""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: Dict[str, _LockEntry] = {}
        self._registry_lock = threading.Lock()

    def _checkout(self, key: str) -> _LockEntry:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = _LockEntry()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str) -> None:
        with self._registry_lock:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[str]):
        """
        Acquire every listed lock in global order

        Raises:
            ContentionError: If any lock is not obtained within the timeout;
                locks already taken are released first
        """
        ordered = sorted(set(keys))
        checked_out: List[str] = []
        acquired: List[threading.RLock] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                checked_out.append(key)
                if not entry.lock.acquire(timeout=self.timeout):
                    raise ContentionError(
                        f"Timed out after {self.timeout}s waiting for {key}",
                        lock_key=key
                    )
                acquired.append(entry.lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)

    def active_keys(self) -> List[str]:
        """Keys currently held or waited for"""
        with self._registry_lock:
            return sorted(self._locks)
