"""
License entitlements: catalog, typed features and per-user resolution.
"""

from adgenius.entitlements.catalog import (
    CATALOG,
    CREDIT_COSTS,
    LicenseProduct,
    available_upgrades,
    features_of,
    get_credit_cost,
    get_product,
)
from adgenius.entitlements.errors import (
    EntitlementLookupError,
    FeatureDeniedError,
    InsufficientCreditsError,
    LicensingError,
    NoActiveLicenseError,
    StorageUnavailableError,
    UnknownProductError,
    VerificationFailedError,
)
from adgenius.entitlements.models import EMPTY_FEATURES, Entitlement, Features

__all__ = [
    "CATALOG",
    "CREDIT_COSTS",
    "LicenseProduct",
    "available_upgrades",
    "features_of",
    "get_credit_cost",
    "get_product",
    "EntitlementLookupError",
    "FeatureDeniedError",
    "InsufficientCreditsError",
    "LicensingError",
    "NoActiveLicenseError",
    "StorageUnavailableError",
    "UnknownProductError",
    "VerificationFailedError",
    "EMPTY_FEATURES",
    "Entitlement",
    "Features",
]
