"""
Per-item mutual exclusion for read-then-write inventory operations.

Every operation that checks stock and then writes (consume, restock, dispose,
set_batch_quantity, reserve, complete, release, expire) runs inside
item_locks() for all items it touches. Locks are re-entrant so a service may
call another service for the same item (complete -> consume), and are always
taken in ascending id order so two multi-item operations cannot deadlock.

Within one process this serializes threads; across worker processes the
services additionally lock item rows with select_for_update().
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List


class ItemLockRegistry:
    _registry_lock = threading.Lock()
    _locks: Dict[int, threading.RLock] = {}

    @classmethod
    def get_lock(cls, item_id: int) -> threading.RLock:
        with cls._registry_lock:
            lock = cls._locks.get(item_id)
            if lock is None:
                lock = threading.RLock()
                cls._locks[item_id] = lock
            return lock

    @classmethod
    def size(cls) -> int:
        with cls._registry_lock:
            return len(cls._locks)


def _normalize_ids(item_ids: Iterable) -> List[int]:
    return sorted({int(item_id) for item_id in item_ids if item_id is not None})


@contextmanager
def item_locks(item_ids: Iterable) -> Iterator[List[int]]:
    ids = _normalize_ids(item_ids)
    acquired = []
    try:
        for item_id in ids:
            lock = ItemLockRegistry.get_lock(item_id)
            lock.acquire()
            acquired.append(lock)
        yield ids
    finally:
        for lock in reversed(acquired):
            lock.release()


@contextmanager
def item_lock(item_id: int) -> Iterator[List[int]]:
    with item_locks([item_id]) as ids:
        yield ids
