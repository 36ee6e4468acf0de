from __future__ import annotations

import json
import logging
import time
from typing import Dict, Optional, Tuple

import redis

from adgenius.entitlements.models import Entitlement

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 2


class EntitlementCache:
    """Redis-backed entitlement cache with in-memory fallback."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl_seconds: int = 60,
        client: Optional["redis.Redis"] = None,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._redis = client
        self._mem: Dict[str, Tuple[float, dict]] = {}

        if self._redis is None and redis_url:
            try:
                self._redis = redis.from_url(redis_url, decode_responses=True)
                self._redis.ping()
            except redis.RedisError as exc:
                logger.warning(
                    "Redis unavailable, using in-memory entitlement cache",
                    extra={"error": str(exc)},
                )
                self._redis = None

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    @staticmethod
    def _require_user_id(user_id: str) -> str:
        normalized = str(user_id).strip()
        if not normalized:
            raise ValueError("user_id is required")
        return normalized

    @staticmethod
    def _key(user_id: str) -> str:
        return f"adgenius:entitlements:v{CACHE_SCHEMA_VERSION}:{user_id}"

    def get(self, user_id: str) -> Optional[Entitlement]:
        key = self._key(self._require_user_id(user_id))

        if self._redis is not None:
            raw = self._redis.get(key)
            if not raw:
                return None
            return _decode_entitlement(json.loads(raw))

        data = self._mem.get(key)
        if not data:
            return None

        cached_at, payload = data
        if time.monotonic() - cached_at > self._ttl_seconds:
            self._mem.pop(key, None)
            return None
        return _decode_entitlement(payload)

    def set(self, entitlement: Entitlement, *, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or self._ttl_seconds
        key = self._key(self._require_user_id(entitlement.user_id))
        payload = _encode_entitlement(entitlement)

        if self._redis is not None:
            self._redis.setex(key, ttl, json.dumps(payload))
            return

        self._mem[key] = (time.monotonic(), payload)

    def invalidate(self, user_id: str) -> None:
        key = self._key(self._require_user_id(user_id))
        if self._redis is not None:
            self._redis.delete(key)
        self._mem.pop(key, None)


def _encode_entitlement(entitlement: Entitlement) -> dict:
    payload = entitlement.to_dict()
    payload["schema_version"] = CACHE_SCHEMA_VERSION
    return payload


def _decode_entitlement(raw: dict) -> Entitlement:
    if int(raw.get("schema_version", CACHE_SCHEMA_VERSION)) != CACHE_SCHEMA_VERSION:
        raise ValueError("Unsupported entitlement cache schema version")
    return Entitlement.from_dict(raw)
