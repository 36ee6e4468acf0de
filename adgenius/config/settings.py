"""
Licensing configuration.

All values come from environment variables so the same image can run in
every environment. Secrets have no production defaults: the webhook refuses
to verify anything while JVZOO_SECRET_KEY is unset.
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field

# Credits reset on a rolling 30 day cycle
DEFAULT_CREDIT_PERIOD_DAYS = 30

# Entitlements are short-lived; purchase events invalidate them explicitly
DEFAULT_ENTITLEMENT_CACHE_TTL_SECONDS = 60


class LicensingConfig(BaseModel):
    """Runtime configuration for the licensing subsystem."""

    database_url: str = "sqlite:///./adgenius.db"
    jvzoo_secret_key: Optional[str] = None
    license_secret: str = Field(default_factory=lambda: os.urandom(32).hex())
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    redis_url: Optional[str] = None
    entitlement_cache_ttl_seconds: int = DEFAULT_ENTITLEMENT_CACHE_TTL_SECONDS
    default_credit_allowance: int = Field(default=0, ge=0)
    credit_period_days: int = Field(default=DEFAULT_CREDIT_PERIOD_DAYS, gt=0)

    @classmethod
    def from_env(cls) -> "LicensingConfig":
        values = {
            "database_url": os.getenv("DATABASE_URL", "sqlite:///./adgenius.db"),
            "jvzoo_secret_key": os.getenv("JVZOO_SECRET_KEY") or None,
            "jwt_secret": os.getenv("JWT_SECRET") or None,
            "jwt_algorithm": os.getenv("JWT_ALGORITHM", "HS256"),
            "redis_url": os.getenv("REDIS_URL") or None,
            "entitlement_cache_ttl_seconds": int(
                os.getenv(
                    "ENTITLEMENT_CACHE_TTL_SECONDS",
                    str(DEFAULT_ENTITLEMENT_CACHE_TTL_SECONDS),
                )
            ),
            "default_credit_allowance": int(os.getenv("DEFAULT_CREDIT_ALLOWANCE", "0")),
            "credit_period_days": int(
                os.getenv("CREDIT_PERIOD_DAYS", str(DEFAULT_CREDIT_PERIOD_DAYS))
            ),
        }
        license_secret = os.getenv("LICENSE_SECRET")
        if license_secret:
            values["license_secret"] = license_secret
        return cls(**values)


@lru_cache(maxsize=1)
def get_config() -> LicensingConfig:
    """Process-wide configuration, read once from the environment."""
    return LicensingConfig.from_env()
