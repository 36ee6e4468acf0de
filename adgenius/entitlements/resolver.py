"""
Entitlement resolver.

Computes a user's effective feature set from their ACTIVE licenses:
the union of catalog features over owned products, completed for
all_features. Results are cached per user for a short TTL and
invalidated by the purchase processor.

Fail-closed: a storage error raises EntitlementLookupError. It is never
turned into an empty entitlement and never cached.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Iterable, List, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adgenius.config import get_config
from adgenius.entitlements.cache import EntitlementCache
from adgenius.entitlements.catalog import CATALOG, complete_features
from adgenius.entitlements.errors import EntitlementLookupError, FeatureDeniedError
from adgenius.entitlements.models import EMPTY_FEATURES, Entitlement, union_all
from adgenius.models.user_license import LicenseStatus, UserLicense

logger = logging.getLogger(__name__)

NO_LICENSE_TIER = "No License"


@lru_cache()
def get_entitlement_cache() -> EntitlementCache:
    """Process-wide cache built from configuration."""
    config = get_config()
    return EntitlementCache(
        redis_url=config.redis_url,
        ttl_seconds=config.entitlement_cache_ttl_seconds,
    )


def display_tier(owned_product_ids: Iterable[str]) -> str:
    """
    Human-readable tier label, display only.

    The highest-priced base product names the tier; addons the base does
    not already include are appended ("Pro + Agency").
    """
    wanted = set(owned_product_ids)
    owned = [product for pid, product in CATALOG.items() if pid in wanted]
    if not owned:
        return NO_LICENSE_TIER

    bases = [p for p in owned if not p.is_addon]
    top = max(bases, key=lambda p: p.price_cents) if bases else None

    parts: List[str] = [top.name] if top else []
    included = set(top.includes) if top else set()
    parts.extend(p.name for p in owned if p.is_addon and p.product_id not in included)
    return " + ".join(parts)


def build_entitlement(user_id: str, owned_product_ids: Iterable[str]) -> Entitlement:
    """Pure resolution step, shared by the resolver and tests."""
    owned = frozenset(pid for pid in owned_product_ids if pid in CATALOG)
    if owned:
        features = complete_features(union_all(CATALOG[pid].features for pid in owned))
    else:
        features = EMPTY_FEATURES
    return Entitlement(
        user_id=user_id,
        owned_product_ids=owned,
        features=features,
        tier=display_tier(owned),
    )


class EntitlementResolver:
    """Request-scoped resolution with cache-aside lookup."""

    def __init__(self, session: Session, cache: Optional[EntitlementCache] = None):
        self.session = session
        self.cache = cache if cache is not None else get_entitlement_cache()

    def resolve(self, user_id: str) -> Entitlement:
        if not str(user_id).strip():
            raise ValueError("user_id is required")

        cached = self._cache_get(user_id)
        if cached is not None:
            return cached

        entitlement = build_entitlement(user_id, self._active_product_ids(user_id))
        self._cache_set(entitlement)
        return entitlement

    def has_feature(self, user_id: str, feature: str) -> bool:
        return self.resolve(user_id).has_feature(feature)

    def require_feature(self, user_id: str, feature: str) -> Entitlement:
        entitlement = self.resolve(user_id)
        if not entitlement.has_feature(feature):
            raise FeatureDeniedError(user_id, feature)
        return entitlement

    def invalidate(self, user_id: str) -> None:
        try:
            self.cache.invalidate(user_id)
        except redis.RedisError as exc:
            logger.error(
                "Failed to invalidate cached entitlement",
                extra={"user_id": user_id, "error": str(exc)},
            )

    def active_licenses(self, user_id: str) -> List[UserLicense]:
        try:
            return (
                self.session.query(UserLicense)
                .filter(
                    UserLicense.user_id == user_id,
                    UserLicense.status == LicenseStatus.ACTIVE,
                )
                .order_by(UserLicense.purchase_date.asc(), UserLicense.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            logger.error(
                "Entitlement lookup failed",
                extra={"user_id": user_id, "error": str(exc)},
            )
            raise EntitlementLookupError(user_id, cause=exc) from exc

    def _active_product_ids(self, user_id: str) -> List[str]:
        product_ids = []
        for license_row in self.active_licenses(user_id):
            if license_row.product_id not in CATALOG:
                logger.warning(
                    "Ignoring license for unknown product",
                    extra={"user_id": user_id, "product_id": license_row.product_id},
                )
                continue
            product_ids.append(license_row.product_id)
        return product_ids

    def _cache_get(self, user_id: str) -> Optional[Entitlement]:
        try:
            return self.cache.get(user_id)
        except (redis.RedisError, ValueError, KeyError) as exc:
            logger.warning(
                "Entitlement cache read failed, resolving from database",
                extra={"user_id": user_id, "error": str(exc)},
            )
            return None

    def _cache_set(self, entitlement: Entitlement) -> None:
        try:
            self.cache.set(entitlement)
        except redis.RedisError as exc:
            logger.warning(
                "Entitlement cache write failed",
                extra={"user_id": entitlement.user_id, "error": str(exc)},
            )
