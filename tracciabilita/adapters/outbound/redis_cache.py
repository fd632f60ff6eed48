"""Cache adapters implementing CachePort.

Redis when reachable, a no-op otherwise; an in-memory dict for tests.
"""

from __future__ import annotations

import json
import logging
import os

import redis

from domain.ports import CachePort

logger = logging.getLogger(__name__)


class RedisCacheAdapter(CachePort):
    """CachePort implementation backed by Redis with JSON serialization.

    When *redis_client* is ``None`` every operation is a silent no-op.
    """

    PREFIX = "tracciabilita:"

    def __init__(self, redis_client=None):
        self._redis = redis_client

    def _key(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    # ── CachePort interface ──────────────────────────────────────────────

    def get(self, key: str) -> object | None:
        if not self._redis:
            return None
        raw = self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: object, ttl: int = 3600) -> None:
        if not self._redis:
            return
        self._redis.setex(self._key(key), ttl, json.dumps(value, default=str))

    def invalidate(self, prefix: str) -> None:
        if not self._redis:
            return
        for k in self._redis.scan_iter(f"{self._key(prefix)}*"):
            self._redis.delete(k)


class InMemoryCacheAdapter(CachePort):
    """CachePort backed by a dict. TTL is accepted but ignored."""

    def __init__(self):
        self._store: dict[str, object] = {}

    def get(self, key: str) -> object | None:
        return self._store.get(key)

    def set(self, key: str, value: object, ttl: int = 3600) -> None:
        self._store[key] = value

    def invalidate(self, prefix: str) -> None:
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]


def get_cache(config: dict | None = None) -> CachePort:
    """Build the cache adapter: Redis if configured and reachable, else no-op."""
    redis_url = (config or {}).get("cache", {}).get("redis_url") or os.environ.get("REDIS_URL")
    if not redis_url:
        return RedisCacheAdapter(redis_client=None)
    try:
        client = redis.from_url(redis_url)
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis non raggiungibile (%s): cache disattivata", exc)
        return RedisCacheAdapter(redis_client=None)
    return RedisCacheAdapter(redis_client=client)
