"""
In-process per-SKU serialization. Locks are re-entrant, always taken in
sorted SKU order, and held only for the duration of one ledger transaction.
Cross-process safety comes from row locks and the layer version counter.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterable, Iterator, List

from ._errors import ConcurrencyConflictError

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
# Entries vanish once no thread holds or waits on the lock
_sku_locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()


def _lock_for(sku_id: str) -> threading.RLock:
    with _registry_guard:
        lock = _sku_locks.get(sku_id)
        if lock is None:
            lock = threading.RLock()
            _sku_locks[sku_id] = lock
        return lock


def lock_order(sku_ids: Iterable[str]) -> List[str]:
    return sorted({s for s in sku_ids if s})


@contextmanager
def sku_locks(sku_ids: Iterable[str], timeout: float = 10.0) -> Iterator[List[str]]:
    ordered = lock_order(sku_ids)
    held: List[threading.RLock] = []
    try:
        for sku_id in ordered:
            lock = _lock_for(sku_id)
            if not lock.acquire(timeout=timeout):
                logger.warning("LOCK: timed out after %ss waiting for SKU %s", timeout, sku_id)
                raise ConcurrencyConflictError(
                    f"Timed out waiting for SKU {sku_id}",
                    details={'sku_id': sku_id, 'timeout': timeout},
                    code='lock_timeout',
                )
            held.append(lock)
        yield ordered
    finally:
        for lock in reversed(held):
            lock.release()
