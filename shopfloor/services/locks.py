"""Per-resource mutexes for the task write path.

A write that checks conflicts for machine M1 holds ``("machine", "M1")``
from before the check until after the commit, so two requests can never
both pass the check for the same resource and both commit.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from shopfloor.domain.errors import ShopfloorError

logger = logging.getLogger(__name__)

LockKey = tuple[str, str]


class ResourceBusy(ShopfloorError):
    status = 503

    def __init__(self, key: LockKey) -> None:
        super().__init__(
            "RESOURCE_BUSY",
            f"Timed out waiting for {key[0]} {key[1]}; try again",
            details={"resource_type": key[0], "resource_id": key[1]},
        )


def task_key(task_id: str) -> LockKey:
    return ("task", task_id)


def machine_keys(machine_ids: Iterable[str]) -> list[LockKey]:
    return [("machine", machine_id) for machine_id in machine_ids]


def operator_keys(operator_ids: Iterable[str]) -> list[LockKey]:
    return [("operator", operator_id) for operator_id in operator_ids]


class ResourceLocks:
    """Registry of one ``threading.Lock`` per key, created on first use.

    Entries are weak: a key's lock is dropped once no caller holds or waits
    on it, so ids of deleted tasks do not accumulate.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[LockKey, threading.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: LockKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, keys: Iterable[LockKey]) -> Iterator[None]:
        """Acquire every key (sorted, so concurrent holders never deadlock)."""
        acquired: list[threading.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                if not lock.acquire(timeout=self._timeout):
                    logger.warning("Timed out waiting for lock %s", key)
                    raise ResourceBusy(key)
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
