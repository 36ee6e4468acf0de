from __future__ import annotations

import json
from unittest.mock import patch

import pytest
import redis

from adgenius.entitlements.cache import CACHE_SCHEMA_VERSION, EntitlementCache, _decode_entitlement, _encode_entitlement
from adgenius.entitlements.catalog import AGENCY_LICENSE, PRO_LICENSE
from adgenius.entitlements.resolver import EntitlementResolver, build_entitlement


class _FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)


class _BrokenRedis(_FakeRedis):
    def get(self, key):
        raise redis.ConnectionError("redis down")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("redis down")

    def delete(self, key):
        raise redis.ConnectionError("redis down")


def test_memory_backend_when_no_redis_url():
    cache = EntitlementCache()
    assert cache.backend == "memory"


def test_memory_round_trip_and_invalidate():
    cache = EntitlementCache(ttl_seconds=60)
    entitlement = build_entitlement("user-1", [PRO_LICENSE])

    cache.set(entitlement)
    assert cache.get("user-1") == entitlement

    cache.invalidate("user-1")
    assert cache.get("user-1") is None


def test_memory_entries_expire():
    cache = EntitlementCache(ttl_seconds=60)
    with patch("adgenius.entitlements.cache.time.monotonic", return_value=1000.0):
        cache.set(build_entitlement("user-1", [PRO_LICENSE]))
    with patch("adgenius.entitlements.cache.time.monotonic", return_value=1061.0):
        assert cache.get("user-1") is None


def test_redis_backend_stores_json_with_ttl():
    fake = _FakeRedis()
    cache = EntitlementCache(client=fake, ttl_seconds=45)
    entitlement = build_entitlement("user-1", [PRO_LICENSE, AGENCY_LICENSE])

    cache.set(entitlement)

    key = f"adgenius:entitlements:v{CACHE_SCHEMA_VERSION}:user-1"
    assert fake.ttls[key] == 45
    assert json.loads(fake.store[key])["owned_product_ids"] == [AGENCY_LICENSE, PRO_LICENSE]
    assert cache.get("user-1") == entitlement


def test_unreachable_redis_falls_back_to_memory():
    with patch("adgenius.entitlements.cache.redis.from_url") as from_url:
        from_url.return_value.ping.side_effect = redis.ConnectionError("refused")
        cache = EntitlementCache(redis_url="redis://localhost:6399/0")

    assert cache.backend == "memory"


def test_blank_user_id_rejected():
    with pytest.raises(ValueError):
        EntitlementCache().get(" ")


def test_schema_version_mismatch_rejected():
    payload = _encode_entitlement(build_entitlement("user-1", [PRO_LICENSE]))
    payload["schema_version"] = CACHE_SCHEMA_VERSION + 1

    with pytest.raises(ValueError):
        _decode_entitlement(payload)


def test_resolver_survives_cache_outage(db_session):
    resolver = EntitlementResolver(db_session, cache=EntitlementCache(client=_BrokenRedis()))

    entitlement = resolver.resolve("user-1")
    resolver.invalidate("user-1")

    assert entitlement.has_license is False
