from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Literal, Mapping, Optional

FeatureKind = Literal["flag", "set", "limit", "restriction", "level"]

# Ordered lowest to highest; a union keeps the higher level
SUPPORT_LEVELS = ("none", "standard", "priority", "vip")

_SET_FEATURES = ("ai_models", "export_formats")
_LIMIT_FEATURES = ("max_projects", "max_brands", "max_templates_per_generation")
_RESTRICTION_FEATURES = ("watermark",)
_LEVEL_FEATURES = ("support_level",)


@dataclass(frozen=True)
class Features:
    """
    Typed feature record.

    Fields come in five kinds:
    - flag: boolean grant, unioned with OR
    - set: allowed values, unioned by set union
    - limit: numeric cap, None for unlimited; a union keeps the larger cap
    - restriction: applies unless every license lifts it (watermark)
    - level: ranked value from SUPPORT_LEVELS; a union keeps the higher one

    Defaults are the union identity, so EMPTY_FEATURES is "owns nothing".
    The string query form used by clients ("white_label", "ai_models.gpt-4")
    is answered by has_feature() on top of the typed accessors.
    """

    unlimited_credits: bool = False
    basic_templates: bool = False
    pro_license: bool = False
    bulk_generation: bool = False
    custom_branding: bool = False
    templates_library: bool = False
    premium_templates: bool = False
    agency_features: bool = False
    client_accounts: bool = False
    commercial_use: bool = False
    white_label: bool = False
    reseller_license: bool = False
    reseller_dashboard: bool = False
    custom_pricing: bool = False
    all_features: bool = False
    ai_models: FrozenSet[str] = frozenset()
    export_formats: FrozenSet[str] = frozenset()
    max_projects: Optional[int] = 0
    max_brands: Optional[int] = 0
    max_templates_per_generation: Optional[int] = 0
    watermark: bool = True
    support_level: str = "none"

    def __post_init__(self) -> None:
        for name, kind in FEATURE_KINDS.items():
            value = getattr(self, name)
            if kind == "set":
                object.__setattr__(self, name, frozenset(str(v).strip() for v in value))
            elif kind == "limit":
                if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                    raise ValueError(f"limit '{name}' must be None or a non-negative int, got {value!r}")
            elif kind == "level":
                if value not in SUPPORT_LEVELS:
                    raise ValueError(f"'{name}' must be one of {SUPPORT_LEVELS}, got {value!r}")
            elif not isinstance(value, bool):
                raise TypeError(f"feature '{name}' must be a bool, got {type(value).__name__}")

    def flag(self, name: str) -> bool:
        """Boolean feature value; False for unknown or set-valued names."""
        if FEATURE_KINDS.get(name) != "flag":
            return False
        return getattr(self, name)

    def members(self, name: str) -> FrozenSet[str]:
        """Allowed values of a set-valued feature; empty for anything else."""
        if FEATURE_KINDS.get(name) != "set":
            return frozenset()
        return getattr(self, name)

    def limit(self, name: str) -> Optional[int]:
        """Numeric cap of a limit feature; None means unlimited. Unknown names allow nothing."""
        if FEATURE_KINDS.get(name) != "limit":
            return 0
        return getattr(self, name)

    def within_limit(self, name: str, requested: int) -> bool:
        cap = self.limit(name)
        return cap is None or requested <= cap

    def has_feature(self, query: str) -> bool:
        normalized = str(query).strip()
        if not normalized:
            return False

        if "." in normalized:
            key, value = normalized.split(".", 1)
            return value in self.members(key)

        kind = FEATURE_KINDS.get(normalized)
        if kind == "flag":
            return self.flag(normalized)
        if kind == "set":
            return bool(self.members(normalized))
        if kind == "limit":
            cap = self.limit(normalized)
            return cap is None or cap > 0
        if kind == "restriction":
            return getattr(self, normalized)
        if kind == "level":
            return getattr(self, normalized) != "none"
        return False

    def union(self, other: "Features") -> "Features":
        merged: Dict[str, Any] = {}
        for name, kind in FEATURE_KINDS.items():
            mine, theirs = getattr(self, name), getattr(other, name)
            if kind == "set":
                merged[name] = mine | theirs
            elif kind == "limit":
                merged[name] = None if mine is None or theirs is None else max(mine, theirs)
            elif kind == "restriction":
                merged[name] = mine and theirs
            elif kind == "level":
                merged[name] = max(mine, theirs, key=SUPPORT_LEVELS.index)
            else:
                merged[name] = mine or theirs
        return Features(**merged)

    def enabled_flags(self) -> FrozenSet[str]:
        return frozenset(
            name for name, kind in FEATURE_KINDS.items()
            if kind == "flag" and getattr(self, name)
        )

    def with_flags(self, **flags: Any) -> "Features":
        return replace(self, **flags)

    def limits(self) -> Dict[str, Any]:
        """Caps and restrictions in one view, for display."""
        return {
            name: getattr(self, name)
            for name, kind in FEATURE_KINDS.items()
            if kind in ("limit", "restriction", "level")
        }

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view: sets become sorted lists, everything else is already JSON."""
        out: Dict[str, Any] = {}
        for name, kind in FEATURE_KINDS.items():
            value = getattr(self, name)
            out[name] = sorted(value) if kind == "set" else value
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Features":
        values: Dict[str, Any] = {}
        for name, kind in FEATURE_KINDS.items():
            if name not in raw:
                continue
            value = raw[name]
            if kind == "set":
                values[name] = frozenset(value)
            elif kind == "limit":
                values[name] = None if value is None else int(value)
            elif kind == "level":
                values[name] = str(value)
            else:
                values[name] = bool(value)
        return cls(**values)


def _kind_of(name: str) -> FeatureKind:
    if name in _SET_FEATURES:
        return "set"
    if name in _LIMIT_FEATURES:
        return "limit"
    if name in _RESTRICTION_FEATURES:
        return "restriction"
    if name in _LEVEL_FEATURES:
        return "level"
    return "flag"


FEATURE_KINDS: Dict[str, FeatureKind] = {f.name: _kind_of(f.name) for f in fields(Features)}

EMPTY_FEATURES = Features()


def union_all(feature_sets: Iterable[Features]) -> Features:
    result = EMPTY_FEATURES
    for item in feature_sets:
        result = result.union(item)
    return result


@dataclass(frozen=True)
class Entitlement:
    """Resolved, request-scoped entitlement snapshot for one user."""

    user_id: str
    owned_product_ids: FrozenSet[str]
    features: Features
    tier: str
    resolved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        user_id = str(self.user_id).strip()
        if not user_id:
            raise ValueError("user_id is required")
        object.__setattr__(self, "user_id", user_id)
        object.__setattr__(self, "owned_product_ids", frozenset(self.owned_product_ids))

    @property
    def has_license(self) -> bool:
        return bool(self.owned_product_ids)

    @property
    def has_unlimited_credits(self) -> bool:
        return self.features.unlimited_credits

    def has_feature(self, query: str) -> bool:
        return self.features.has_feature(query)

    def has_addon(self, product_id: str) -> bool:
        return product_id in self.owned_product_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "owned_product_ids": sorted(self.owned_product_ids),
            "features": self.features.to_dict(),
            "has_unlimited_credits": self.has_unlimited_credits,
            "tier": self.tier,
            "resolved_at": self.resolved_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Entitlement":
        return cls(
            user_id=raw["user_id"],
            owned_product_ids=frozenset(raw.get("owned_product_ids") or []),
            features=Features.from_dict(raw.get("features") or {}),
            tier=raw["tier"],
            resolved_at=datetime.fromisoformat(raw["resolved_at"]),
        )
