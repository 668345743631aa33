"""Redis implementation of the cache/metrics backend. Fails open on any Redis error."""

from __future__ import annotations

import functools
import json
import math
import secrets
import time
from typing import Any, Callable, List, Optional, TypeVar

import redis
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from ..utils.exceptions import UpstreamUnavailable
from ..utils.logger import get_logger
from .backend import (
    COUNTER_TTL_SECONDS,
    CacheBackend,
    RateLimitResult,
    allow_all,
    counter_key,
)

logger = get_logger(__name__)

T = TypeVar("T")


def fail_open(default: Any):
    """
    Run a backend operation; Redis failures become UpstreamUnavailable,
    which is logged and replaced by ``default`` (or default(*args) if callable).
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(self: "RedisBackend", *args, **kwargs):
            try:
                try:
                    return func(self, *args, **kwargs)
                except redis.RedisError as e:
                    raise UpstreamUnavailable(str(e)) from e
            except UpstreamUnavailable as e:
                logger.warning(
                    "Redis unavailable, failing open",
                    operation=func.__name__,
                    error=str(e),
                )
                return default(self, *args, **kwargs) if callable(default) else default
        return wrapper
    return decorator


def _rate_limit_fallback(self: "RedisBackend", key: str, limit: int, window_ms: int) -> RateLimitResult:
    return allow_all(limit, window_ms, int(time.time() * 1000))


def _empty_list(self: "RedisBackend", *args, **kwargs) -> List[str]:
    return []


class RedisBackend(CacheBackend):
    """Cache backend on Redis. Values are stored as JSON strings."""

    name = "redis"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        socket_timeout: float = 0.5,
        socket_connect_timeout: float = 0.5,
        client: Optional[redis.Redis] = None,
    ):
        self.client = client or redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            decode_responses=True,
        )
        logger.info("RedisBackend created", host=host, port=port, db=db)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.ConnectionError),
        reraise=True,
    )
    def connect(self) -> bool:
        """Ping Redis at startup, retrying transient connection errors."""
        return bool(self.client.ping())

    # -- key/value --

    @fail_open(None)
    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(key)
        return json.loads(raw) if raw is not None else None

    @fail_open(False)
    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        return bool(self.client.setex(key, ttl, json.dumps(value, default=str)))

    @fail_open(False)
    def delete(self, key: str) -> bool:
        return self.client.delete(key) > 0

    @fail_open(0)
    def delete_pattern(self, pattern: str) -> int:
        keys = list(self.client.scan_iter(match=pattern, count=500))
        if not keys:
            return 0
        return int(self.client.delete(*keys))

    @fail_open(_empty_list)
    def keys(self, pattern: str = "*") -> List[str]:
        return sorted(self.client.scan_iter(match=pattern, count=500))

    # -- counters --

    @fail_open(0)
    def increment_counter(self, name: str, amount: int = 1) -> int:
        key = counter_key(name)
        pipe = self.client.pipeline(transaction=True)
        pipe.incrby(key, amount)
        pipe.expire(key, COUNTER_TTL_SECONDS)
        new_value, _ = pipe.execute()
        return int(new_value)

    @fail_open(0)
    def get_counter(self, name: str, date: Optional[str] = None) -> int:
        value = self.client.get(counter_key(name, date=date))
        return int(value) if value is not None else 0

    # -- rate limiting --

    @fail_open(_rate_limit_fallback)
    def sliding_window_admit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        now_ms = int(time.time() * 1000)
        window_start = now_ms - window_ms

        # Prune, count, peek oldest, then record: one MULTI/EXEC unit
        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, window_start)
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.zadd(key, {f"{now_ms}-{secrets.token_hex(4)}": now_ms})
        pipe.expire(key, math.ceil(window_ms / 1000))
        _, count, oldest, _, _ = pipe.execute()

        count = int(count)
        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        return RateLimitResult(
            allowed=count < limit,
            remaining=max(0, limit - (count + 1)),
            reset_time=oldest_ms + window_ms,
            current_count=count,
            limit=limit,
        )

    # -- lists --

    @fail_open(False)
    def list_push(self, key: str, value: str, ttl: int) -> bool:
        pipe = self.client.pipeline(transaction=True)
        pipe.lpush(key, value)
        pipe.expire(key, ttl)
        pipe.execute()
        return True

    @fail_open(_empty_list)
    def list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        return list(self.client.lrange(key, start, end))

    @fail_open(0)
    def list_remove(self, key: str, value: str) -> int:
        return int(self.client.lrem(key, 0, value))

    # -- admin --

    @fail_open(False)
    def ping(self) -> bool:
        return bool(self.client.ping())

    @fail_open(False)
    def flush(self) -> bool:
        return bool(self.client.flushdb())
