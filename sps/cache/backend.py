"""
Key-value backend used for response caching, counters, rate-limit windows,
refresh tokens and audit entries.

MemoryBackend is the in-process implementation; RedisBackend (redis_backend.py)
implements the same contract on top of Redis and fails open.
"""

from __future__ import annotations

import bisect
import copy
import fnmatch
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

COUNTER_TTL_SECONDS = 24 * 3600


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: int  # epoch milliseconds
    current_count: int
    limit: int

    @property
    def reset_seconds(self) -> int:
        """Reset time as epoch seconds (X-RateLimit-Reset)."""
        return math.ceil(self.reset_time / 1000)

    def retry_after(self, now_ms: int) -> int:
        return max(1, math.ceil((self.reset_time - now_ms) / 1000))


def counter_key(name: str, date: Optional[str] = None, now: Optional[float] = None) -> str:
    """Daily counter key: metrics:{name}:{YYYY-MM-DD} (UTC)."""
    if date is None:
        ts = time.time() if now is None else now
        date = datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")
    return f"metrics:{name}:{date}"


def allow_all(limit: int, window_ms: int, now_ms: int) -> RateLimitResult:
    """Fail-open admission result."""
    return RateLimitResult(
        allowed=True,
        remaining=limit,
        reset_time=now_ms + window_ms,
        current_count=0,
        limit=limit,
    )


class CacheBackend(ABC):
    """Contract shared by the memory and Redis backends."""

    name = "base"

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        ...

    @abstractmethod
    def keys(self, pattern: str = "*") -> List[str]:
        ...

    @abstractmethod
    def increment_counter(self, name: str, amount: int = 1) -> int:
        ...

    @abstractmethod
    def get_counter(self, name: str, date: Optional[str] = None) -> int:
        ...

    @abstractmethod
    def sliding_window_admit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        ...

    @abstractmethod
    def list_push(self, key: str, value: str, ttl: int) -> bool:
        ...

    @abstractmethod
    def list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        ...

    @abstractmethod
    def list_remove(self, key: str, value: str) -> int:
        ...

    @abstractmethod
    def ping(self) -> bool:
        ...

    @abstractmethod
    def flush(self) -> bool:
        ...

    def get_counters(self, names: List[str], date: Optional[str] = None) -> Dict[str, int]:
        return {name: self.get_counter(name, date) for name in names}


class MemoryBackend(CacheBackend):
    """
    In-process backend.

    Every operation runs under one lock, so the sliding-window admit
    (prune, count, record) is atomic. ``clock`` returns epoch seconds and can
    be replaced in tests.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._values: Dict[str, Any] = {}
        self._expiry: Dict[str, float] = {}
        self._lock = Lock()

    # -- internals (caller holds the lock) --

    def _alive(self, key: str) -> bool:
        if key not in self._values:
            return False
        expires_at = self._expiry.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            del self._expiry[key]
            return False
        return True

    def _expire(self, key: str, ttl: int) -> None:
        self._expiry[key] = self._clock() + ttl

    def _purge_expired(self) -> None:
        for key in list(self._values):
            self._alive(key)

    # -- key/value --

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            if not self._alive(key):
                return None
            return copy.deepcopy(self._values[key])

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        with self._lock:
            self._values[key] = copy.deepcopy(value)
            self._expire(key, ttl)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._expiry.pop(key, None)
            return self._values.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            matched = [k for k in self._values if fnmatch.fnmatchcase(k, pattern)]
            for key in matched:
                self._values.pop(key, None)
                self._expiry.pop(key, None)
            return len(matched)

    def keys(self, pattern: str = "*") -> List[str]:
        with self._lock:
            self._purge_expired()
            return sorted(k for k in self._values if fnmatch.fnmatchcase(k, pattern))

    # -- counters --

    def increment_counter(self, name: str, amount: int = 1) -> int:
        key = counter_key(name, now=self._clock())
        with self._lock:
            current = self._values[key] if self._alive(key) else 0
            new_value = int(current) + amount
            self._values[key] = new_value
            self._expire(key, COUNTER_TTL_SECONDS)
            return new_value

    def get_counter(self, name: str, date: Optional[str] = None) -> int:
        key = counter_key(name, date=date, now=self._clock())
        with self._lock:
            if not self._alive(key):
                return 0
            return int(self._values[key])

    # -- rate limiting --

    def sliding_window_admit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        with self._lock:
            now_ms = int(self._clock() * 1000)
            window_start = now_ms - window_ms
            stamps: List[int] = self._values[key] if self._alive(key) else []

            # Prune entries outside the trailing window, then count-then-add
            del stamps[: bisect.bisect_right(stamps, window_start)]
            count = len(stamps)
            bisect.insort(stamps, now_ms)
            self._values[key] = stamps
            self._expire(key, math.ceil(window_ms / 1000))

            return RateLimitResult(
                allowed=count < limit,
                remaining=max(0, limit - (count + 1)),
                reset_time=stamps[0] + window_ms,
                current_count=count,
                limit=limit,
            )

    # -- lists (newest first, like LPUSH) --

    def list_push(self, key: str, value: str, ttl: int) -> bool:
        with self._lock:
            items: List[str] = self._values[key] if self._alive(key) else []
            items.insert(0, value)
            self._values[key] = items
            self._expire(key, ttl)
        return True

    def list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        with self._lock:
            if not self._alive(key):
                return []
            items = self._values[key]
            stop = None if end == -1 else end + 1
            return list(items[start:stop])

    def list_remove(self, key: str, value: str) -> int:
        with self._lock:
            if not self._alive(key):
                return 0
            items = self._values[key]
            kept = [v for v in items if v != value]
            removed = len(items) - len(kept)
            if kept:
                self._values[key] = kept
            else:
                self._values.pop(key, None)
                self._expiry.pop(key, None)
            return removed

    # -- admin --

    def ping(self) -> bool:
        return True

    def flush(self) -> bool:
        with self._lock:
            self._values.clear()
            self._expiry.clear()
        return True
