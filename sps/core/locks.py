"""
Per-key locking to serialize read-check-write sequences on one identity.

Keys: lock:user:{user_id}:refresh, etc. Locks are in-process; with several
worker processes the Redis transaction semantics are what keeps counters safe.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Generator

LOCK_TIMEOUT_SECONDS = 5

_registry_lock = threading.Lock()
_locks: Dict[str, threading.Lock] = {}
_holders: Dict[str, int] = {}


def _get_lock(key: str) -> threading.Lock:
    with _registry_lock:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        _holders[key] = _holders.get(key, 0) + 1
        return lock


def _release_ref(key: str) -> None:
    with _registry_lock:
        remaining = _holders.get(key, 1) - 1
        if remaining <= 0:
            _holders.pop(key, None)
            _locks.pop(key, None)
        else:
            _holders[key] = remaining


@contextmanager
def acquire_lock(key: str, timeout_seconds: float = LOCK_TIMEOUT_SECONDS) -> Generator[None, None, None]:
    """
    Acquire a named lock (e.g. lock:user:{id}:refresh).
    Blocks until acquired or raises TimeoutError.
    """
    lock = _get_lock(key)
    try:
        if not lock.acquire(timeout=timeout_seconds):
            raise TimeoutError(f"Could not acquire lock {key} within {timeout_seconds}s")
        try:
            yield
        finally:
            lock.release()
    finally:
        _release_ref(key)


def lock_key_refresh(user_id: int) -> str:
    return f"lock:user:{user_id}:refresh"
