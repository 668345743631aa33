"""Cache/metrics backends"""

from .backend import CacheBackend, MemoryBackend, RateLimitResult
from ..utils.config import RedisSettings
from ..utils.logger import get_logger

logger = get_logger(__name__)


def create_backend(redis_settings: RedisSettings) -> CacheBackend:
    """
    Build the configured backend. Redis is optional: when it is disabled or
    unreachable at startup, the in-process backend is used.
    """
    if not redis_settings.enabled:
        return MemoryBackend()

    import redis
    from .redis_backend import RedisBackend

    backend = RedisBackend(
        host=redis_settings.host,
        port=redis_settings.port,
        db=redis_settings.db,
        password=redis_settings.password,
        socket_timeout=redis_settings.socket_timeout,
        socket_connect_timeout=redis_settings.socket_connect_timeout,
    )
    try:
        backend.connect()
    except redis.RedisError as e:
        logger.warning("Redis not reachable, using in-memory backend", error=str(e))
        return MemoryBackend()
    return backend


__all__ = ["CacheBackend", "MemoryBackend", "RateLimitResult", "create_backend"]
