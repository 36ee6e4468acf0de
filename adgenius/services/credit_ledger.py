"""
CreditLedger: per-user generation credits.

Handles:
- Balance reads (lazy period reset first)
- Atomic consumption across the user's limited licenses
- Refund of a consumption when the paid work fails (current period only)
- Usage logging for every metered action, unlimited users included

Unlimited users (any ACTIVE license with unlimited_credits) bypass the
numeric ledger entirely. Limited licenses are debited oldest purchase
first with conditional UPDATEs, so concurrent consumers can never push
credits_used past credits_total.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy import and_, case, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adgenius.config import LicensingConfig, get_config
from adgenius.entitlements.catalog import get_credit_cost
from adgenius.entitlements.errors import InsufficientCreditsError, StorageUnavailableError
from adgenius.entitlements.resolver import EntitlementResolver
from adgenius.models.usage_log import UsageLog
from adgenius.models.user_license import LicenseStatus, UserLicense
from adgenius.platform.errors import ValidationError

logger = logging.getLogger(__name__)

# Optimistic debit retries per license before moving on
MAX_DEBIT_ATTEMPTS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class CreditBalance:
    unlimited: bool
    total: int
    used: int
    remaining: int
    reset_date: Optional[datetime] = None

    @property
    def percentage(self) -> float:
        if self.unlimited or self.total == 0:
            return 100.0
        return round(self.remaining / self.total * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unlimited": self.unlimited,
            "total": self.total,
            "used": self.used,
            "remaining": self.remaining,
            "percentage": self.percentage,
            "reset_date": self.reset_date.isoformat() if self.reset_date else None,
        }


@dataclass(frozen=True)
class ConsumptionResult:
    """What one consume() call charged, and to which licenses."""

    user_id: str
    action_type: str
    consumed: int
    unlimited: bool
    usage_id: str
    remaining: Optional[int] = None  # None for unlimited users
    debits: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)


# =============================================================================
# Ledger
# =============================================================================

class CreditLedger:
    """Credit accounting for one database session."""

    def __init__(
        self,
        session: Session,
        resolver: Optional[EntitlementResolver] = None,
        config: Optional[LicensingConfig] = None,
    ):
        self.session = session
        self.resolver = resolver or EntitlementResolver(session)
        self.config = config or get_config()

    @property
    def period(self) -> timedelta:
        return timedelta(days=self.config.credit_period_days)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_balance(self, user_id: str, now: Optional[datetime] = None) -> CreditBalance:
        now = _aware(now) if now else _utcnow()
        entitlement = self.resolver.resolve(user_id)
        if entitlement.has_unlimited_credits:
            return CreditBalance(unlimited=True, total=0, used=0, remaining=0)

        try:
            if self.reset_if_due(user_id, now=now):
                self.session.commit()

            if not entitlement.has_license:
                return self._default_balance(user_id, now)

            licenses = self._limited_licenses(user_id)
        except SQLAlchemyError as exc:
            raise self._storage_failure("balance", user_id, exc) from exc

        total = sum(lic.credits_total for lic in licenses)
        used = sum(lic.credits_used or 0 for lic in licenses)
        reset_dates = [_aware(lic.credits_reset_date) for lic in licenses if lic.credits_reset_date]
        return CreditBalance(
            unlimited=False,
            total=total,
            used=used,
            remaining=max(0, total - used),
            reset_date=min(reset_dates) if reset_dates else None,
        )

    # =========================================================================
    # Consumption
    # =========================================================================

    def consume(
        self,
        user_id: str,
        action_type: str,
        cost: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> ConsumptionResult:
        """
        Charge a metered action.

        Args:
            user_id: Authenticated user
            action_type: Action key from CREDIT_COSTS (unknown keys cost 1)
            cost: Explicit cost; defaults to the catalog cost for the action
            metadata: Stored on the usage log; hasReferenceImage adds a surcharge

        Raises:
            InsufficientCreditsError: balance cannot cover the cost; nothing is charged
        """
        if cost is None:
            cost = get_credit_cost(action_type, metadata)
        if cost < 0:
            raise ValidationError("Credit cost cannot be negative", details={"cost": cost})

        now = _aware(now) if now else _utcnow()
        entitlement = self.resolver.resolve(user_id)

        if entitlement.has_unlimited_credits:
            try:
                usage = self._log_usage(user_id, action_type, 0, True, [], metadata, now)
                self.session.commit()
            except SQLAlchemyError as exc:
                raise self._storage_failure("consume", user_id, exc) from exc
            return ConsumptionResult(
                user_id=user_id,
                action_type=action_type,
                consumed=0,
                unlimited=True,
                usage_id=usage.id,
            )

        try:
            self.reset_if_due(user_id, now=now)
            if entitlement.has_license:
                debits = self._debit_licenses(user_id, cost)
            else:
                debits = self._debit_default_allowance(user_id, cost, now)
            usage = self._log_usage(user_id, action_type, cost, False, debits, metadata, now)
            self.session.commit()
        except InsufficientCreditsError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            raise self._storage_failure("consume", user_id, exc) from exc

        balance = self.get_balance(user_id, now=now)
        logger.info(
            "Credits consumed",
            extra={
                "user_id": user_id,
                "action_type": action_type,
                "cost": cost,
                "remaining": balance.remaining,
            },
        )
        return ConsumptionResult(
            user_id=user_id,
            action_type=action_type,
            consumed=cost,
            unlimited=False,
            usage_id=usage.id,
            remaining=balance.remaining,
            debits=tuple(debits),
        )

    def refund(self, consumption: ConsumptionResult) -> int:
        """
        Return the credits of a consumption whose paid work failed.

        Each debited license is decremented with a floor at zero. A debit
        made before the license's current credit period began is not
        returned: the reset already gave those credits back. A usage log
        row is refunded at most once.

        Returns:
            Credits returned (0 if already refunded or nothing was charged)

        Raises:
            StorageUnavailableError: the database failed; nothing is refunded
        """
        try:
            claimed = self.session.execute(
                update(UsageLog)
                .where(UsageLog.id == consumption.usage_id, UsageLog.refunded_at.is_(None))
                .values(refunded_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                self.session.rollback()
                logger.info(
                    "Consumption already refunded",
                    extra={"user_id": consumption.user_id, "usage_id": consumption.usage_id},
                )
                return 0

            charged_at = _aware(
                self.session.query(UsageLog.created_at)
                .filter(UsageLog.id == consumption.usage_id)
                .scalar()
            )
            returned = 0
            for license_id, amount in consumption.debits:
                returned += self._return_debit(consumption, license_id, amount, charged_at)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._storage_failure("refund", consumption.user_id, exc) from exc

        logger.info(
            "Credits refunded",
            extra={
                "user_id": consumption.user_id,
                "usage_id": consumption.usage_id,
                "credits": returned,
            },
        )
        return returned

    @contextmanager
    def metered(
        self,
        user_id: str,
        action_type: str,
        metadata: Optional[Mapping[str, Any]] = None,
        cost: Optional[int] = None,
    ) -> Iterator[ConsumptionResult]:
        """
        Charge before the paid work, refund if the block raises.

        Usage:
            with ledger.metered(user_id, "generate_ad") as charge:
                result = generate(...)
        """
        consumption = self.consume(user_id, action_type, cost=cost, metadata=metadata)
        try:
            yield consumption
        except Exception:
            if not self.session.is_active:
                self.session.rollback()
            self.refund(consumption)
            raise

    # =========================================================================
    # Periods
    # =========================================================================

    def reset_if_due(self, user_id: str, now: Optional[datetime] = None) -> int:
        """
        Start a new credit period for every due limited license.

        The reset date moves forward by whole periods until it is past now.
        The update is conditional on the reset date read, so two callers
        racing on the same license reset it once. Does not commit.

        Returns:
            Number of licenses reset
        """
        now = _aware(now) if now else _utcnow()
        due = (
            self.session.query(UserLicense.id, UserLicense.credits_reset_date)
            .filter(
                UserLicense.user_id == user_id,
                UserLicense.status == LicenseStatus.ACTIVE,
                UserLicense.credits_total.isnot(None),
                UserLicense.credits_reset_date.isnot(None),
            )
            .all()
        )

        reset_count = 0
        for license_id, stored_reset_date in due:
            reset_date = _aware(stored_reset_date)
            if reset_date > now:
                continue

            periods = (now - reset_date) // self.period + 1
            next_reset = reset_date + self.period * periods
            result = self.session.execute(
                update(UserLicense)
                .where(
                    UserLicense.id == license_id,
                    UserLicense.credits_reset_date == stored_reset_date,
                )
                .values(credits_used=0, credits_reset_date=next_reset)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                reset_count += 1
                logger.info(
                    "Credit period reset",
                    extra={
                        "user_id": user_id,
                        "license_id": license_id,
                        "next_reset": next_reset.isoformat(),
                    },
                )
        if reset_count:
            self.session.expire_all()
        return reset_count

    # =========================================================================
    # Internals
    # =========================================================================

    def _limited_licenses(self, user_id: str) -> List[UserLicense]:
        return (
            self.session.query(UserLicense)
            .filter(
                UserLicense.user_id == user_id,
                UserLicense.status == LicenseStatus.ACTIVE,
                UserLicense.credits_total.isnot(None),
            )
            .order_by(UserLicense.purchase_date.asc(), UserLicense.id.asc())
            .populate_existing()
            .all()
        )

    def _debit_licenses(self, user_id: str, cost: int) -> List[Tuple[str, int]]:
        debits: List[Tuple[str, int]] = []
        outstanding = cost
        license_ids = [
            lic.id for lic in self._limited_licenses(user_id) if lic.credits_total > 0
        ]
        for license_id in license_ids:
            if outstanding == 0:
                break
            taken = self._debit_one(license_id, outstanding)
            if taken:
                debits.append((license_id, taken))
                outstanding -= taken

        if outstanding > 0:
            remaining = self._remaining_on(license_ids) + (cost - outstanding)
            logger.info(
                "Insufficient credits",
                extra={"user_id": user_id, "required": cost, "remaining": remaining},
            )
            raise InsufficientCreditsError(user_id, required=cost, remaining=remaining)
        return debits

    def _debit_one(self, license_id: str, wanted: int) -> int:
        """Take up to `wanted` credits from one license; returns what was taken."""
        for _ in range(MAX_DEBIT_ATTEMPTS):
            total, used = (
                self.session.query(UserLicense.credits_total, UserLicense.credits_used)
                .filter(UserLicense.id == license_id)
                .one()
            )
            take = min(wanted, max(0, total - (used or 0)))
            if take == 0:
                return 0
            result = self.session.execute(
                update(UserLicense)
                .where(
                    and_(
                        UserLicense.id == license_id,
                        UserLicense.status == LicenseStatus.ACTIVE,
                        UserLicense.credits_used + take <= UserLicense.credits_total,
                    )
                )
                .values(credits_used=UserLicense.credits_used + take)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return take
        return 0

    def _remaining_on(self, license_ids: List[str]) -> int:
        if not license_ids:
            return 0
        rows = (
            self.session.query(UserLicense.credits_total, UserLicense.credits_used)
            .filter(UserLicense.id.in_(license_ids))
            .all()
        )
        return sum(max(0, total - (used or 0)) for total, used in rows)

    def _return_debit(
        self,
        consumption: ConsumptionResult,
        license_id: str,
        amount: int,
        charged_at: Optional[datetime],
    ) -> int:
        stored_reset_date = (
            self.session.query(UserLicense.credits_reset_date)
            .filter(UserLicense.id == license_id)
            .scalar()
        )
        reset_date = _aware(stored_reset_date)
        if reset_date is not None and charged_at is not None and charged_at < reset_date - self.period:
            logger.info(
                "Debit predates the current credit period; not refunded",
                extra={
                    "user_id": consumption.user_id,
                    "usage_id": consumption.usage_id,
                    "license_id": license_id,
                    "credits": amount,
                },
            )
            return 0

        # Conditional on the reset date read, so a reset racing this refund wins
        if stored_reset_date is None:
            same_period = UserLicense.credits_reset_date.is_(None)
        else:
            same_period = UserLicense.credits_reset_date == stored_reset_date
        result = self.session.execute(
            update(UserLicense)
            .where(UserLicense.id == license_id, same_period)
            .values(
                credits_used=case(
                    (UserLicense.credits_used >= amount, UserLicense.credits_used - amount),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        return amount if result.rowcount == 1 else 0

    def _storage_failure(self, operation: str, user_id: str, exc: SQLAlchemyError) -> StorageUnavailableError:
        self.session.rollback()
        logger.exception(
            "Credit ledger storage failure",
            extra={"user_id": user_id, "operation": operation},
        )
        return StorageUnavailableError(operation, cause=exc)

    def _default_used(self, user_id: str, now: datetime) -> int:
        window_start = now - self.period
        used = (
            self.session.query(func.coalesce(func.sum(UsageLog.credits_consumed), 0))
            .filter(
                UsageLog.user_id == user_id,
                UsageLog.unlimited.is_(False),
                UsageLog.refunded_at.is_(None),
                UsageLog.created_at >= window_start,
            )
            .scalar()
        )
        return int(used or 0)

    def _default_balance(self, user_id: str, now: datetime) -> CreditBalance:
        total = self.config.default_credit_allowance
        used = self._default_used(user_id, now) if total else 0
        return CreditBalance(
            unlimited=False,
            total=total,
            used=used,
            remaining=max(0, total - used),
        )

    def _debit_default_allowance(self, user_id: str, cost: int, now: datetime) -> List[Tuple[str, int]]:
        # Users without a license draw on a rolling allowance counted from usage logs
        balance = self._default_balance(user_id, now)
        if cost > balance.remaining:
            raise InsufficientCreditsError(user_id, required=cost, remaining=balance.remaining)
        return []

    def _log_usage(
        self,
        user_id: str,
        action_type: str,
        credits: int,
        unlimited: bool,
        debits: List[Tuple[str, int]],
        metadata: Optional[Mapping[str, Any]],
        now: datetime,
    ) -> UsageLog:
        usage = UsageLog(
            created_at=now,
            user_id=user_id,
            action_type=action_type,
            credits_consumed=credits,
            unlimited=unlimited,
            debits=[{"license_id": lid, "amount": amount} for lid, amount in debits],
            action_metadata=dict(metadata) if metadata else None,
        )
        self.session.add(usage)
        self.session.flush()
        return usage
