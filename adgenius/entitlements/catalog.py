"""
License catalog: the static product table.

Maps every purchasable product id to its feature grant, price and credit
policy. Bundles are expanded here, once, at import time, so no caller has
to special-case "owns the bundle" anywhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, List, Literal, Mapping, Optional, Tuple

from adgenius.entitlements.errors import UnknownProductError
from adgenius.entitlements.models import EMPTY_FEATURES, Features, union_all

ProductKind = Literal["base", "addon"]

FRONTEND = "frontend"
PRO_LICENSE = "pro_license"
TEMPLATES_LICENSE = "templates_license"
AGENCY_LICENSE = "agency_license"
RESELLER_LICENSE = "reseller_license"
ELITE_BUNDLE = "elite_bundle"
FASTPASS_BUNDLE = "fastpass_bundle"

# Monthly allowance for limited products
FRONTEND_MONTHLY_CREDITS = 500

ALL_AI_MODELS = frozenset({"gemini-2.5", "gpt-4", "gpt-4o", "gpt-4o-mini", "dalle-3"})
ALL_EXPORT_FORMATS = frozenset({"jpg", "png", "svg", "pdf"})

CREDIT_COSTS: Mapping[str, int] = MappingProxyType({
    "generate_ad": 1,
    "generate_copy": 1,
    "generate_prompt": 1,
    "generate_angle": 1,
    "bulk_generate": 5,
    "export_ad": 0,  # already paid for at generation time
    "reference_image_upload": 2,
})
DEFAULT_CREDIT_COST = 1


@dataclass(frozen=True)
class LicenseProduct:
    """
    Catalog entry.

    credits_monthly: None means unlimited, 0 means the product grants no
    credits of its own (add-ons). max_activations caps the devices one
    license key can be activated on.
    """

    product_id: str
    name: str
    price_cents: int
    kind: ProductKind
    features: Features
    credits_monthly: Optional[int]
    is_bundle: bool = False
    includes: Tuple[str, ...] = ()
    requires: Optional[str] = None
    max_activations: int = 1

    @property
    def unlimited_credits(self) -> bool:
        return self.credits_monthly is None

    @property
    def is_addon(self) -> bool:
        return self.kind == "addon"


_TIERS: Tuple[LicenseProduct, ...] = (
    LicenseProduct(
        product_id=FRONTEND,
        name="Frontend",
        price_cents=4700,
        kind="base",
        credits_monthly=FRONTEND_MONTHLY_CREDITS,
        features=Features(
            basic_templates=True,
            ai_models=frozenset({"gemini-2.5"}),
            export_formats=frozenset({"jpg", "png"}),
            max_projects=5,
            max_brands=3,
            max_templates_per_generation=1,
            watermark=True,
            support_level="standard",
        ),
    ),
    LicenseProduct(
        product_id=PRO_LICENSE,
        name="Pro",
        price_cents=9700,
        kind="base",
        credits_monthly=None,
        max_activations=3,
        features=Features(
            unlimited_credits=True,
            basic_templates=True,
            pro_license=True,
            bulk_generation=True,
            custom_branding=True,
            ai_models=ALL_AI_MODELS,
            export_formats=ALL_EXPORT_FORMATS,
            max_projects=None,
            max_brands=None,
            max_templates_per_generation=5,
            watermark=False,
            support_level="priority",
        ),
    ),
    LicenseProduct(
        product_id=TEMPLATES_LICENSE,
        name="Templates",
        price_cents=12700,
        kind="addon",
        credits_monthly=0,
        features=Features(templates_library=True, premium_templates=True),
    ),
    LicenseProduct(
        product_id=AGENCY_LICENSE,
        name="Agency",
        price_cents=19700,
        kind="addon",
        credits_monthly=0,
        requires=PRO_LICENSE,
        features=Features(
            agency_features=True,
            client_accounts=True,
            commercial_use=True,
            white_label=True,
        ),
    ),
    LicenseProduct(
        product_id=RESELLER_LICENSE,
        name="Reseller",
        price_cents=29700,
        kind="addon",
        credits_monthly=0,
        requires=AGENCY_LICENSE,
        features=Features(
            reseller_license=True,
            reseller_dashboard=True,
            custom_pricing=True,
        ),
    ),
)

_BUNDLE_CONTENTS: Tuple[str, ...] = (
    PRO_LICENSE,
    TEMPLATES_LICENSE,
    AGENCY_LICENSE,
    RESELLER_LICENSE,
)

# Union of every individually sold product; a feature set covering this gets all_features
_REFERENCE_FEATURES: Features = union_all(p.features for p in _TIERS)

# What covering the whole line-up unlocks beyond the sum of its parts
_ALL_FEATURES_PERKS = Features(
    all_features=True,
    max_templates_per_generation=10,
    support_level="vip",
)



def complete_features(features: Features) -> Features:
    """
    Set all_features, and its perks, when the record covers everything sold individually.

    Idempotent, and applied both to bundles and to resolved entitlements,
    so owning every part equals owning the bundle.
    """
    covered = _REFERENCE_FEATURES.enabled_flags() <= features.enabled_flags() and all(
        features.members(name) >= _REFERENCE_FEATURES.members(name)
        for name in ("ai_models", "export_formats")
    )
    if covered:
        return features.union(_ALL_FEATURES_PERKS)
    return features.with_flags(all_features=False)


def _bundle(product_id: str, name: str, price_cents: int) -> LicenseProduct:
    by_id = {p.product_id: p for p in _TIERS}
    features = complete_features(union_all(by_id[pid].features for pid in _BUNDLE_CONTENTS))
    return LicenseProduct(
        product_id=product_id,
        name=name,
        price_cents=price_cents,
        kind="base",
        credits_monthly=None,
        is_bundle=True,
        includes=_BUNDLE_CONTENTS,
        max_activations=10,
        features=features,
    )


CATALOG: Mapping[str, LicenseProduct] = MappingProxyType({
    **{p.product_id: p for p in _TIERS},
    ELITE_BUNDLE: _bundle(ELITE_BUNDLE, "Elite Bundle", 39700),
    # Transitional alias sold during the launch window; same grant as the elite bundle
    FASTPASS_BUNDLE: _bundle(FASTPASS_BUNDLE, "FastPass Bundle", 39700),
})


def get_product(product_id: str) -> LicenseProduct:
    normalized = str(product_id).strip()
    product = CATALOG.get(normalized)
    if product is None:
        raise UnknownProductError(normalized)
    return product


def features_of(product_id: str) -> Features:
    return get_product(product_id).features


def get_credit_cost(action_type: str, metadata: Optional[Mapping[str, Any]] = None) -> int:
    """Credit cost of an action; unknown actions cost one credit."""
    cost = CREDIT_COSTS.get(str(action_type).strip(), DEFAULT_CREDIT_COST)
    if metadata and metadata.get("hasReferenceImage"):
        cost += CREDIT_COSTS["reference_image_upload"]
    return cost


def _covers(granted: Features, wanted: Features) -> bool:
    return wanted.enabled_flags() <= granted.enabled_flags() and all(
        granted.members(name) >= wanted.members(name)
        for name in ("ai_models", "export_formats")
    )


def available_upgrades(owned_product_ids: Iterable[str]) -> List[LicenseProduct]:
    """
    Products worth offering to a user who owns owned_product_ids.

    Skips products already owned, products whose grant is already covered
    and products whose prerequisite the user does not meet.
    """
    owned = {pid for pid in owned_product_ids if pid in CATALOG}
    granted = union_all(CATALOG[pid].features for pid in owned) if owned else EMPTY_FEATURES

    offers: List[LicenseProduct] = []
    for product in CATALOG.values():
        if product.product_id in owned:
            continue
        if _covers(granted, product.features.with_flags(all_features=False)):
            continue
        if product.requires and not _covers(granted, CATALOG[product.requires].features):
            continue
        offers.append(product)
    return offers
