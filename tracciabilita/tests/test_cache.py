"""Tests for the cache adapters and the cached ingredient directory.

No Redis instance is needed: the client is a MagicMock or a dict-backed fake.
"""

import fnmatch
import json
from unittest.mock import MagicMock, patch

import redis

from domain.models import IngredientRef
from domain.ports import CachePort, IngredientDirectory
from tracciabilita.adapters.outbound.cached_directory import CachedIngredientDirectory
from tracciabilita.adapters.outbound.redis_cache import (
    InMemoryCacheAdapter,
    RedisCacheAdapter,
    get_cache,
)


class FakeRedis:
    def __init__(self):
        self._data = {}

    def get(self, key):
        return self._data.get(key)

    def setex(self, key, ttl, value):
        self._data[key] = value

    def scan_iter(self, pattern):
        return [k for k in list(self._data) if fnmatch.fnmatch(k, pattern)]

    def delete(self, key):
        self._data.pop(key, None)


class TestInMemoryCacheAdapter:
    def test_implements_cache_port(self):
        assert isinstance(InMemoryCacheAdapter(), CachePort)

    def test_set_and_get(self):
        cache = InMemoryCacheAdapter()
        cache.set("ingredients:active", [{"id": 1}])
        assert cache.get("ingredients:active") == [{"id": 1}]

    def test_invalidate_by_prefix(self):
        cache = InMemoryCacheAdapter()
        cache.set("ingredients:active", [])
        cache.set("ingredients:all", [])
        cache.set("suppliers:active", [])
        cache.invalidate("ingredients:")
        assert cache.get("ingredients:active") is None
        assert cache.get("ingredients:all") is None
        assert cache.get("suppliers:active") == []


class TestRedisCacheAdapter:
    def test_no_client_is_noop(self):
        cache = RedisCacheAdapter(redis_client=None)
        cache.set("key", "value")
        cache.invalidate("key")
        assert cache.get("key") is None

    def test_prefixed_json_roundtrip(self):
        client = FakeRedis()
        cache = RedisCacheAdapter(redis_client=client)
        cache.set("ingredients:active", [{"id": 1, "name": "Farina 00"}], ttl=60)
        assert json.loads(client.get("tracciabilita:ingredients:active")) == [{"id": 1, "name": "Farina 00"}]
        assert cache.get("ingredients:active") == [{"id": 1, "name": "Farina 00"}]

    def test_ttl_passed_to_setex(self):
        client = MagicMock()
        RedisCacheAdapter(redis_client=client).set("k", 1, ttl=42)
        client.setex.assert_called_once_with("tracciabilita:k", 42, "1")

    def test_invalidate_prefix(self):
        client = FakeRedis()
        cache = RedisCacheAdapter(redis_client=client)
        cache.set("ingredients:active", [])
        cache.set("other", 1)
        cache.invalidate("ingredients:")
        assert cache.get("ingredients:active") is None
        assert cache.get("other") == 1


class TestGetCache:
    def test_without_url_is_noop(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        cache = get_cache({"cache": {"redis_url": None}})
        assert isinstance(cache, RedisCacheAdapter)
        assert cache.get("anything") is None

    def test_unreachable_redis_falls_back(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        with patch("tracciabilita.adapters.outbound.redis_cache.redis.from_url", return_value=client):
            cache = get_cache({"cache": {"redis_url": "redis://localhost:6390/0"}})
        cache.set("k", 1)
        client.setex.assert_not_called()

    def test_reachable_redis(self):
        client = MagicMock()
        with patch("tracciabilita.adapters.outbound.redis_cache.redis.from_url", return_value=client):
            cache = get_cache({"cache": {"redis_url": "redis://localhost:6379/0"}})
        cache.set("k", 1)
        client.setex.assert_called_once()


# ------------------------------------------------------------------
# CachedIngredientDirectory
# ------------------------------------------------------------------


class CountingDirectory(IngredientDirectory):
    def __init__(self, ingredients):
        self.ingredients = ingredients
        self.calls = 0

    def list_active(self):
        self.calls += 1
        return [i for i in self.ingredients if i.active]

    def get(self, ingredient_id):
        return next((i for i in self.ingredients if i.id == ingredient_id), None)


class TestCachedIngredientDirectory:
    def test_second_listing_served_from_cache(self):
        inner = CountingDirectory([IngredientRef(1, "Farina 00", "Farine", "KG")])
        directory = CachedIngredientDirectory(inner, InMemoryCacheAdapter())
        first = directory.list_active()
        second = directory.list_active()
        assert first == second == [IngredientRef(1, "Farina 00", "Farine", "KG")]
        assert inner.calls == 1

    def test_get_bypasses_cache(self):
        inner = CountingDirectory([IngredientRef(1, "Farina 00")])
        directory = CachedIngredientDirectory(inner, InMemoryCacheAdapter())
        directory.list_active()
        inner.ingredients = [IngredientRef(1, "Farina 00", active=False)]
        assert directory.get(1).active is False

    def test_invalidate_forces_reload(self):
        inner = CountingDirectory([IngredientRef(1, "Farina 00")])
        directory = CachedIngredientDirectory(inner, InMemoryCacheAdapter())
        directory.list_active()
        directory.invalidate()
        directory.list_active()
        assert inner.calls == 2

    def test_works_over_redis_json(self):
        inner = CountingDirectory([IngredientRef(3, "Uova fresche", "Uova", "PZ")])
        directory = CachedIngredientDirectory(inner, RedisCacheAdapter(redis_client=FakeRedis()))
        directory.list_active()
        assert directory.list_active() == [IngredientRef(3, "Uova fresche", "Uova", "PZ")]
