"""Short-lived read-mostly cache for per-tenant configuration.

Uses Redis when ``REDIS_URL`` is configured and reachable, otherwise an
in-process map. Entries expire after their TTL and are refreshed on the next
miss; nothing invalidates them early.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis

logger = logging.getLogger("copilot_gateway.cache")


def connect_redis(url: str) -> Optional["redis.Redis"]:
    """Return a connected client, or None when Redis is not configured or down."""
    if not url:
        return None
    try:
        client = redis.Redis.from_url(url, decode_responses=True)
        client.ping()
        return client
    except redis.RedisError as e:
        logger.warning("Redis unavailable, using in-memory cache", extra={"error": str(e)})
        return None


class TTLCache:
    """Key/value cache with a fixed TTL and JSON-serialisable values."""

    def __init__(
        self,
        ttl_seconds: int,
        prefix: str = "copilot:",
        redis_client: Optional["redis.Redis"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self.redis_client = redis_client
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        if self.redis_client is not None:
            try:
                raw = self.redis_client.get(self.prefix + key)
                return json.loads(raw) if raw is not None else None
            except redis.RedisError as e:
                logger.warning("Redis read failed, falling back to memory", extra={"error": str(e)})
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        if self.redis_client is not None:
            try:
                self.redis_client.setex(self.prefix + key, self.ttl_seconds, json.dumps(value))
                return
            except redis.RedisError as e:
                logger.warning("Redis write failed, falling back to memory", extra={"error": str(e)})
        with self._lock:
            self._store[key] = (self._clock() + self.ttl_seconds, value)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        """Return the cached value, calling ``loader`` on a miss."""
        value = self.get(key)
        if value is None:
            value = loader()
            if value is not None:
                self.set(key, value)
        return value

    def close(self) -> None:
        if self.redis_client is not None:
            self.redis_client.close()
