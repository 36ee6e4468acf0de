"""
Licensing error hierarchy.

Provides:
- LicensingError: base for all license and credit failures
- UnknownProductError: product id outside the catalog (terminal)
- VerificationFailedError: forged or malformed purchase notification (terminal)
- InsufficientCreditsError: metered action without enough balance (user-facing)
- FeatureDeniedError: feature not entitled (user-facing)
- EntitlementLookupError: storage failure while resolving licenses (retryable)
- StorageUnavailableError: storage failure while writing credits or license keys (retryable)
- NoActiveLicenseError: stats requested for an account without licenses

Duplicate purchase notifications are an outcome, not an error.
"""

from typing import Optional

from fastapi import status

from adgenius.platform.errors import AppError


class LicensingError(AppError):
    """Base exception for licensing failures."""


class UnknownProductError(LicensingError):
    """Raised when a product id is not in the license catalog."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(
            code="UNKNOWN_PRODUCT",
            message=f"Unknown product: {product_id}",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"product_id": product_id},
        )


class VerificationFailedError(LicensingError):
    """Raised when a purchase notification fails its signature check."""

    def __init__(self, transaction_id: Optional[str], reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(
            code="VERIFICATION_FAILED",
            message=f"Purchase notification verification failed: {reason}",
            status_code=status.HTTP_401_UNAUTHORIZED,
            details={"transaction_id": transaction_id},
        )


class InsufficientCreditsError(LicensingError):
    """Raised when a user cannot cover the cost of a metered action."""

    def __init__(self, user_id: str, required: int, remaining: int):
        self.user_id = user_id
        self.required = required
        self.remaining = remaining
        super().__init__(
            code="INSUFFICIENT_CREDITS",
            message="Insufficient credits. Upgrade to Pro for unlimited credits.",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={
                "credits_required": required,
                "credits_remaining": remaining,
                "upgrade_required": True,
            },
        )


class FeatureDeniedError(LicensingError):
    """Raised when a feature is not part of the user's entitlement."""

    def __init__(self, user_id: str, feature: str):
        self.user_id = user_id
        self.feature = feature
        super().__init__(
            code="FEATURE_DENIED",
            message=f"Feature not available: {feature}. Please upgrade your license.",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"feature": feature, "upgrade_required": True},
        )


class EntitlementLookupError(LicensingError):
    """
    Raised when the user's licenses could not be read.

    Retryable. Never treated as "no entitlement" and never cached.
    """

    def __init__(self, user_id: str, cause: Optional[Exception] = None):
        self.user_id = user_id
        self.cause = cause
        super().__init__(
            code="ENTITLEMENT_LOOKUP_FAILED",
            message="Entitlements are temporarily unavailable. Please retry.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True},
        )


class StorageUnavailableError(LicensingError):
    """Raised when a credit or license write could not reach the database. Retryable."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(
            code="STORAGE_UNAVAILABLE",
            message="License storage is temporarily unavailable. Please retry.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True, "operation": operation},
        )


class NoActiveLicenseError(LicensingError):
    """Raised when license stats are requested for a user without an active license."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(
            code="NO_ACTIVE_LICENSE",
            message="No active license found for this account",
            status_code=status.HTTP_404_NOT_FOUND,
        )
