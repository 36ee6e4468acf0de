"""
License stats for the account dashboard.

One read that combines the resolved entitlement, the credit balance and
a per-action usage summary over the current credit period. Refunded
consumptions are not counted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adgenius.config import LicensingConfig, get_config
from adgenius.entitlements.catalog import CATALOG
from adgenius.entitlements.errors import NoActiveLicenseError, StorageUnavailableError
from adgenius.entitlements.resolver import EntitlementResolver
from adgenius.models.usage_log import UsageLog
from adgenius.services.credit_ledger import CreditBalance, CreditLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionUsage:
    action_type: str
    count: int
    credits: int


@dataclass(frozen=True)
class LicenseStats:
    user_id: str
    tier: str
    owned_products: List[str]
    addons: List[str]
    purchase_date: Optional[datetime]
    credits: CreditBalance
    enabled_features: List[str]
    limits: Dict[str, Any]
    period_start: datetime
    usage: Tuple[ActionUsage, ...] = field(default_factory=tuple)

    @property
    def support_level(self) -> str:
        return self.limits["support_level"]

    @property
    def total_actions(self) -> int:
        return sum(item.count for item in self.usage)


class LicenseStatsService:
    def __init__(
        self,
        session: Session,
        resolver: Optional[EntitlementResolver] = None,
        config: Optional[LicensingConfig] = None,
    ):
        self.session = session
        self.resolver = resolver or EntitlementResolver(session)
        self.config = config or get_config()

    def get_stats(self, user_id: str, now: Optional[datetime] = None) -> LicenseStats:
        """
        Raises:
            NoActiveLicenseError: the user has no active license
            EntitlementLookupError: licenses could not be read
            StorageUnavailableError: usage could not be read
        """
        now = now or datetime.now(timezone.utc)
        entitlement = self.resolver.resolve(user_id)
        if not entitlement.has_license:
            raise NoActiveLicenseError(user_id)

        licenses = self.resolver.active_licenses(user_id)
        balance = CreditLedger(self.session, resolver=self.resolver, config=self.config).get_balance(
            user_id, now=now
        )
        period_start = now - timedelta(days=self.config.credit_period_days)

        owned = sorted(entitlement.owned_product_ids)
        return LicenseStats(
            user_id=user_id,
            tier=entitlement.tier,
            owned_products=owned,
            addons=[pid for pid in owned if CATALOG[pid].is_addon],
            purchase_date=licenses[0].purchase_date if licenses else None,
            credits=balance,
            enabled_features=sorted(entitlement.features.enabled_flags()),
            limits=entitlement.features.limits(),
            period_start=period_start,
            usage=self._usage_since(user_id, period_start),
        )

    def _usage_since(self, user_id: str, since: datetime) -> Tuple[ActionUsage, ...]:
        try:
            rows = (
                self.session.query(
                    UsageLog.action_type,
                    func.count(UsageLog.id),
                    func.coalesce(func.sum(UsageLog.credits_consumed), 0),
                )
                .filter(
                    UsageLog.user_id == user_id,
                    UsageLog.refunded_at.is_(None),
                    UsageLog.created_at >= since,
                )
                .group_by(UsageLog.action_type)
                .order_by(UsageLog.action_type.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                "Usage summary lookup failed",
                extra={"user_id": user_id, "error": str(exc)},
            )
            raise StorageUnavailableError("stats", cause=exc) from exc

        return tuple(
            ActionUsage(action_type=action_type, count=int(count), credits=int(credits))
            for action_type, count, credits in rows
        )
