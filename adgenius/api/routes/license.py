"""
License API.

Endpoints for the signed-in user (bearer token) plus the public license
key endpoints used by clients that hold only a key: validate, check and
activate. Read endpoints are for UX only; route-level enforcement goes
through require_feature and the credit ledger.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from adgenius.api.schemas.license import (
    ActionUsageResponse,
    ActivateLicenseRequest,
    ActivateLicenseResponse,
    CheckFeatureRequest,
    CheckFeatureResponse,
    CheckLicenseResponse,
    ConsumeCreditsRequest,
    ConsumeCreditsResponse,
    CreditBalanceResponse,
    LicenseKeyRequest,
    LicenseLimits,
    LicenseResponse,
    LicenseStatsResponse,
    LicenseSummary,
    UpgradeOption,
    UpgradesResponse,
    ValidateLicenseRequest,
    ValidateLicenseResponse,
)
from adgenius.database.session import get_db_session
from adgenius.entitlements.catalog import CATALOG, available_upgrades
from adgenius.entitlements.resolver import EntitlementResolver
from adgenius.models.user_license import UserLicense
from adgenius.platform.auth import AuthenticatedUser, get_current_user
from adgenius.services.credit_ledger import CreditBalance, CreditLedger
from adgenius.services.license_service import LicenseKeyService
from adgenius.services.license_stats import LicenseStatsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/license", tags=["license"])


def _balance_response(balance: CreditBalance) -> CreditBalanceResponse:
    return CreditBalanceResponse(
        unlimited=balance.unlimited,
        total=balance.total,
        used=balance.used,
        remaining=balance.remaining,
        percentage=balance.percentage,
        reset_date=balance.reset_date,
    )


def _license_summary(row: UserLicense) -> LicenseSummary:
    product = CATALOG.get(row.product_id)
    return LicenseSummary(
        id=row.id,
        product_id=row.product_id,
        product_name=product.name if product else row.product_id,
        license_key=row.license_key,
        status=row.status.value,
        purchase_date=row.purchase_date,
        credits_total=row.credits_total,
        credits_used=row.credits_used or 0,
        credits_reset_date=row.credits_reset_date,
        activations=row.activations,
        max_activations=row.max_activations,
    )


@router.get("/me", response_model=LicenseResponse)
def get_my_license(
    user: AuthenticatedUser = Depends(get_current_user),
    db_session: Session = Depends(get_db_session),
) -> LicenseResponse:
    """Entitlement, owned licenses and credit balance in one call."""
    resolver = EntitlementResolver(db_session)
    entitlement = resolver.resolve(user.user_id)
    balance = CreditLedger(db_session, resolver=resolver).get_balance(user.user_id)
    licenses = resolver.active_licenses(user.user_id)

    return LicenseResponse(
        user_id=entitlement.user_id,
        has_license=entitlement.has_license,
        tier=entitlement.tier,
        owned_products=sorted(entitlement.owned_product_ids),
        features=entitlement.features.to_dict(),
        has_unlimited_credits=entitlement.has_unlimited_credits,
        licenses=[_license_summary(row) for row in licenses],
        credits=_balance_response(balance),
    )


@router.get("/credits", response_model=CreditBalanceResponse)
def get_credits(
    user: AuthenticatedUser = Depends(get_current_user),
    db_session: Session = Depends(get_db_session),
) -> CreditBalanceResponse:
    return _balance_response(CreditLedger(db_session).get_balance(user.user_id))


@router.post("/consume-credits", response_model=ConsumeCreditsResponse)
def consume_credits(
    body: ConsumeCreditsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db_session: Session = Depends(get_db_session),
) -> ConsumeCreditsResponse:
    """
    Charge a metered action.

    Returns 402 (INSUFFICIENT_CREDITS) when the balance cannot cover it.
    Returns 503 (STORAGE_UNAVAILABLE, retryable) when the database fails.
    """
    result = CreditLedger(db_session).consume(
        user.user_id,
        body.action_type,
        metadata=body.metadata,
    )
    return ConsumeCreditsResponse(
        success=True,
        usage_id=result.usage_id,
        credits_consumed=result.consumed,
        credits_remaining=result.remaining,
        unlimited=result.unlimited,
    )


@router.post("/check-feature", response_model=CheckFeatureResponse)
def check_feature(
    body: CheckFeatureRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db_session: Session = Depends(get_db_session),
) -> CheckFeatureResponse:
    entitlement = EntitlementResolver(db_session).resolve(user.user_id)
    return CheckFeatureResponse(
        feature=body.feature,
        has_access=entitlement.has_feature(body.feature),
        tier=entitlement.tier,
    )


@router.get("/upgrades", response_model=UpgradesResponse)
def list_upgrades(
    user: AuthenticatedUser = Depends(get_current_user),
    db_session: Session = Depends(get_db_session),
) -> UpgradesResponse:
    """Products worth offering: not owned, not covered, prerequisite met."""
    entitlement = EntitlementResolver(db_session).resolve(user.user_id)
    return UpgradesResponse(
        tier=entitlement.tier,
        upgrades=[
            UpgradeOption(
                product_id=product.product_id,
                name=product.name,
                kind=product.kind,
                price_cents=product.price_cents,
                requires=product.requires,
                unlimited_credits=product.unlimited_credits,
            )
            for product in available_upgrades(entitlement.owned_product_ids)
        ],
    )


@router.get("/stats", response_model=LicenseStatsResponse)
def get_license_stats(
    user: AuthenticatedUser = Depends(get_current_user),
    db_session: Session = Depends(get_db_session),
) -> LicenseStatsResponse:
    """Dashboard summary; 404 (NO_ACTIVE_LICENSE) without an active license."""
    stats = LicenseStatsService(db_session).get_stats(user.user_id)
    return LicenseStatsResponse(
        user_id=stats.user_id,
        tier=stats.tier,
        owned_products=stats.owned_products,
        addons=stats.addons,
        purchase_date=stats.purchase_date,
        credits=_balance_response(stats.credits),
        enabled_features=stats.enabled_features,
        limits=LicenseLimits(**stats.limits),
        support_level=stats.support_level,
        period_start=stats.period_start,
        usage=[
            ActionUsageResponse(action_type=item.action_type, count=item.count, credits=item.credits)
            for item in stats.usage
        ],
        total_actions=stats.total_actions,
    )


# =============================================================================
# License keys
# =============================================================================

@router.post("/validate", response_model=ValidateLicenseResponse)
def validate_license(
    body: ValidateLicenseRequest,
    db_session: Session = Depends(get_db_session),
) -> ValidateLicenseResponse:
    """Invalid keys are answered with valid=false and a reason, not an error status."""
    validation = LicenseKeyService(db_session).validate(body.license_key, email=body.email)
    if not validation.valid:
        return ValidateLicenseResponse(valid=False, reason=validation.reason)

    row = validation.license
    product = CATALOG.get(row.product_id)
    return ValidateLicenseResponse(
        valid=True,
        product_id=row.product_id,
        product_name=product.name if product else row.product_id,
        status=row.status.value,
    )


@router.post("/check", response_model=CheckLicenseResponse)
def check_license(
    body: LicenseKeyRequest,
    db_session: Session = Depends(get_db_session),
) -> CheckLicenseResponse:
    result = LicenseKeyService(db_session).check(body.license_key)
    return CheckLicenseResponse(
        license_key=result.license_key,
        status=result.status,
        valid=result.valid,
        product_id=result.product_id,
        product_name=result.product_name,
    )


@router.post("/activate", response_model=ActivateLicenseResponse)
def activate_license(
    body: ActivateLicenseRequest,
    db_session: Session = Depends(get_db_session),
) -> ActivateLicenseResponse:
    result = LicenseKeyService(db_session).activate(
        body.license_key,
        email=body.email,
        device_id=body.device_id,
    )
    return ActivateLicenseResponse(
        success=result.success,
        error=result.error,
        activations=result.activations,
        max_activations=result.max_activations,
        remaining_activations=result.remaining_activations,
    )
