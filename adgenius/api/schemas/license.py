"""
Pydantic schemas for the license API.

Request bodies accept the camelCase names the web client sends
(actionType, licenseKey, deviceId) as well as snake_case.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CreditBalanceResponse(BaseModel):
    """Current credit balance."""

    unlimited: bool = Field(..., description="Any active license grants unlimited credits")
    total: int = Field(..., description="Allowance for the current period")
    used: int = Field(..., description="Credits used in the current period")
    remaining: int = Field(..., description="max(0, total - used)")
    percentage: float = Field(..., description="remaining / total * 100; 100 when total is 0")
    reset_date: Optional[datetime] = Field(None, description="Next period start")


class LicenseSummary(BaseModel):
    """One owned license."""

    id: str
    product_id: str
    product_name: str
    license_key: str
    status: str
    purchase_date: datetime
    credits_total: Optional[int] = None
    credits_used: int = 0
    credits_reset_date: Optional[datetime] = None
    activations: int = 0
    max_activations: int = 1


class LicenseResponse(BaseModel):
    """Resolved license state for the current user."""

    user_id: str
    has_license: bool
    tier: str = Field(..., description="Display label, e.g. 'Pro + Agency'")
    owned_products: List[str]
    features: Dict[str, Any]
    has_unlimited_credits: bool
    licenses: List[LicenseSummary]
    credits: CreditBalanceResponse


class ConsumeCreditsRequest(BaseModel):
    action_type: str = Field(..., alias="actionType", min_length=1, max_length=100)
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


class ConsumeCreditsResponse(BaseModel):
    success: bool
    usage_id: str
    credits_consumed: int
    credits_remaining: Optional[int] = Field(None, description="None for unlimited users")
    unlimited: bool


class CheckFeatureRequest(BaseModel):
    feature: str = Field(..., min_length=1, max_length=100, description="Flag name or dotted set lookup")


class CheckFeatureResponse(BaseModel):
    feature: str
    has_access: bool
    tier: str


class UpgradeOption(BaseModel):
    product_id: str
    name: str
    kind: str
    price_cents: int
    requires: Optional[str] = None
    unlimited_credits: bool


class UpgradesResponse(BaseModel):
    tier: str
    upgrades: List[UpgradeOption]


# =============================================================================
# License keys (public: clients hold only the key and the buyer's email)
# =============================================================================

class LicenseKeyRequest(BaseModel):
    license_key: str = Field(..., alias="licenseKey", min_length=1, max_length=64)

    class Config:
        populate_by_name = True


class ValidateLicenseRequest(LicenseKeyRequest):
    email: str = Field(..., min_length=3, max_length=255)


class ValidateLicenseResponse(BaseModel):
    valid: bool
    reason: Optional[str] = Field(None, description="Why the key is not valid")
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    status: Optional[str] = None


class CheckLicenseResponse(BaseModel):
    license_key: str
    status: str = Field(..., description="License status, or not_found")
    valid: bool
    product_id: Optional[str] = None
    product_name: Optional[str] = None


class ActivateLicenseRequest(ValidateLicenseRequest):
    device_id: Optional[str] = Field(None, alias="deviceId", max_length=255)


class ActivateLicenseResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    activations: int = 0
    max_activations: int = 0
    remaining_activations: int = 0


# =============================================================================
# Stats
# =============================================================================

class LicenseLimits(BaseModel):
    """Caps from the resolved entitlement; None means unlimited."""

    max_projects: Optional[int] = None
    max_brands: Optional[int] = None
    max_templates_per_generation: Optional[int] = None
    watermark: bool
    support_level: str


class ActionUsageResponse(BaseModel):
    action_type: str
    count: int
    credits: int


class LicenseStatsResponse(BaseModel):
    user_id: str
    tier: str
    owned_products: List[str]
    addons: List[str]
    purchase_date: Optional[datetime] = Field(None, description="Earliest active purchase")
    credits: CreditBalanceResponse
    enabled_features: List[str]
    limits: LicenseLimits
    support_level: str
    period_start: datetime
    usage: List[ActionUsageResponse]
    total_actions: int
