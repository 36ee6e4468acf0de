"""Configuration module for the licensing backend."""

from adgenius.config.settings import (
    DEFAULT_CREDIT_PERIOD_DAYS,
    DEFAULT_ENTITLEMENT_CACHE_TTL_SECONDS,
    LicensingConfig,
    get_config,
)

__all__ = [
    "DEFAULT_CREDIT_PERIOD_DAYS",
    "DEFAULT_ENTITLEMENT_CACHE_TTL_SECONDS",
    "LicensingConfig",
    "get_config",
]
