"""
Request, error, cache and pagination metrics.

Two layers: in-process counters (cheap, reset on restart, last 100 response
times) and daily counters in the backend (metrics:{name}:{YYYY-MM-DD}).
"""

import re
import threading
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict

from ..cache.backend import CacheBackend
from ..utils.logger import get_logger

logger = get_logger(__name__)

RESPONSE_TIME_WINDOW = 100
METHODS = ("get", "post", "put", "delete")
ERROR_STATUSES = ("400", "401", "403", "404", "429", "500")

_ID_SEGMENT = re.compile(r"/\d+(?=/|$)")
_COUNTER_DATE = re.compile(r"^metrics:.+:(\d{4}-\d{2}-\d{2})$")


def endpoint_name(path: str) -> str:
    """/api/users/42?x=1 -> _api_users_id"""
    path = path.split("?", 1)[0]
    return _ID_SEGMENT.sub("/id", path).replace("/", "_")


def _rate(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class MetricsService:
    def __init__(self, backend: CacheBackend, retention_days: int = 30, clock: Callable[[], float] = time.time):
        self.backend = backend
        self.retention_days = retention_days
        self._clock = clock
        self._started = clock()
        self._lock = threading.Lock()
        self._requests = 0
        self._errors = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._response_times: Deque[float] = deque(maxlen=RESPONSE_TIME_WINDOW)
        self._pagination_queries = 0
        self._pagination_hits = 0
        self._pagination_time = 0.0

    # Recording

    def record_request(self, method: str, path: str, status_code: int, duration_ms: float) -> None:
        with self._lock:
            self._requests += 1
            self._response_times.append(duration_ms)

        self.backend.increment_counter("requests_total")
        self.backend.increment_counter(f"requests_{method.lower()}")
        self.backend.increment_counter(f"requests_{status_code}")
        self.backend.increment_counter(f"requests_{status_code // 100}xx")
        self.backend.increment_counter("response_time_total", int(round(duration_ms)))
        self.backend.increment_counter(f"endpoint_{endpoint_name(path)}")

        if status_code >= 400:
            self.record_error(path, status_code)

    def record_error(self, path: str, status_code: int) -> None:
        with self._lock:
            self._errors += 1
        self.backend.increment_counter("errors_total")
        self.backend.increment_counter(f"errors_{status_code}")
        self.backend.increment_counter(f"errors_{endpoint_name(path)}")

    def record_cache(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._cache_hits += 1
            else:
                self._cache_misses += 1
        self.backend.increment_counter("cache_hits" if hit else "cache_misses")

    def record_pagination(self, hit: bool, duration_ms: float) -> None:
        with self._lock:
            self._pagination_queries += 1
            self._pagination_time += duration_ms
            if hit:
                self._pagination_hits += 1

    # Reading

    def hit_rate(self) -> float:
        with self._lock:
            return _rate(self._cache_hits, self._cache_hits + self._cache_misses)

    def average_response_time(self) -> float:
        with self._lock:
            if not self._response_times:
                return 0.0
            return round(sum(self._response_times) / len(self._response_times), 2)

    def uptime(self) -> float:
        return max(0.0, self._clock() - self._started)

    def summary(self) -> Dict[str, Any]:
        c = self.backend.get_counter
        total = c("requests_total")
        return {
            "requests": {
                "total": total,
                "byMethod": {m: c(f"requests_{m}") for m in METHODS},
                "byStatus": {f"{n}xx": c(f"requests_{n}xx") for n in (2, 3, 4, 5)},
            },
            "errors": {
                "total": c("errors_total"),
                "byStatus": {s: c(f"errors_{s}") for s in ERROR_STATUSES},
            },
            "cache": {
                "hits": c("cache_hits"),
                "misses": c("cache_misses"),
                "hitRate": self.hit_rate(),
            },
            "performance": {
                "avgResponseTime": self.average_response_time(),
                "totalResponseTime": c("response_time_total"),
            },
            "users": {
                "created": c("users_created"),
                "updated": c("users_updated"),
                "deleted": c("users_deleted"),
            },
            "process": {
                "requests": self._requests,
                "errors": self._errors,
            },
        }

    def requests_per_second(self, total: int) -> float:
        uptime = self.uptime()
        return round(total / uptime, 2) if uptime > 0 else 0.0

    def pagination_stats(self) -> Dict[str, Any]:
        with self._lock:
            queries = self._pagination_queries
            hits = self._pagination_hits
            avg = round(self._pagination_time / queries, 2) if queries else 0.0
        return {
            "queries": queries,
            "cacheHits": hits,
            "cacheMisses": queries - hits,
            "avgQueryTime": avg,
            "hitRate": _rate(hits, queries),
        }

    def cleanup(self) -> Dict[str, int]:
        """Delete daily counters older than the retention window"""
        cutoff = (
            datetime.fromtimestamp(self._clock(), tz=timezone.utc) - timedelta(days=self.retention_days)
        ).strftime("%Y-%m-%d")
        removed = 0
        for key in self.backend.keys("metrics:*"):
            match = _COUNTER_DATE.match(key)
            if match and match.group(1) < cutoff and self.backend.delete(key):
                removed += 1
        logger.info("Metrics cleanup finished", retention_days=self.retention_days, removed=removed)
        return {"removed": removed}
