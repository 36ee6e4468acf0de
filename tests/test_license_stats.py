"""
Tests for the license stats summary.

Tests cover:
- Tier, add-ons, limits and credits in one read
- Usage grouped by action over the current credit period
- Refunded and older consumptions are not counted
- No active license is a 404
"""

from datetime import datetime, timedelta, timezone

import pytest

from adgenius.entitlements.catalog import AGENCY_LICENSE, FRONTEND, PRO_LICENSE
from adgenius.entitlements.errors import NoActiveLicenseError
from adgenius.entitlements.resolver import EntitlementResolver
from adgenius.models import LicenseStatus, UsageLog, User, UserLicense
from adgenius.services.license_stats import ActionUsage, LicenseStatsService

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def user(db_session):
    user = User(email="stats@example.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def add_license(db_session, user):
    counter = {"n": 0}

    def _add(product_id, total=None, used=0, status=LicenseStatus.ACTIVE):
        counter["n"] += 1
        row = UserLicense(
            user_id=user.id,
            product_id=product_id,
            license_key=f"AG-STATS{counter['n']:014d}",
            status=status,
            credits_total=total,
            credits_used=used,
            credits_reset_date=NOW + timedelta(days=20) if total else None,
            purchase_date=datetime(2026, 1, counter["n"], tzinfo=timezone.utc),
        )
        db_session.add(row)
        db_session.commit()
        return row

    return _add


@pytest.fixture
def log_usage(db_session, user):
    def _log(action_type, credits, created_at=NOW, refunded=False):
        db_session.add(UsageLog(
            user_id=user.id,
            action_type=action_type,
            credits_consumed=credits,
            unlimited=False,
            debits=[],
            created_at=created_at,
            refunded_at=created_at if refunded else None,
        ))
        db_session.commit()

    return _log


@pytest.fixture
def stats_service(db_session, cache):
    return LicenseStatsService(db_session, resolver=EntitlementResolver(db_session, cache=cache))


class TestLicenseStats:
    """Dashboard summary."""

    def test_frontend_stats(self, stats_service, user, add_license, log_usage):
        add_license(FRONTEND, total=500, used=7)
        log_usage("generate_ad", 1)
        log_usage("generate_ad", 1)
        log_usage("bulk_generate", 5)

        stats = stats_service.get_stats(user.id, now=NOW)

        assert stats.tier == "Frontend"
        assert stats.owned_products == [FRONTEND]
        assert stats.addons == []
        assert stats.credits.remaining == 493
        assert stats.support_level == "standard"
        assert stats.limits["max_projects"] == 5
        assert stats.limits["watermark"] is True
        assert "basic_templates" in stats.enabled_features
        assert stats.usage == (
            ActionUsage(action_type="bulk_generate", count=1, credits=5),
            ActionUsage(action_type="generate_ad", count=2, credits=2),
        )
        assert stats.total_actions == 3

    def test_refunded_and_old_usage_is_excluded(self, stats_service, user, add_license, log_usage):
        add_license(FRONTEND, total=500)
        log_usage("generate_ad", 1)
        log_usage("generate_ad", 1, refunded=True)
        log_usage("generate_ad", 1, created_at=NOW - timedelta(days=45))

        stats = stats_service.get_stats(user.id, now=NOW)

        assert stats.usage == (ActionUsage(action_type="generate_ad", count=1, credits=1),)

    def test_pro_with_addon(self, stats_service, user, add_license):
        add_license(PRO_LICENSE)
        add_license(AGENCY_LICENSE)

        stats = stats_service.get_stats(user.id, now=NOW)

        assert stats.tier == "Pro + Agency"
        assert stats.addons == [AGENCY_LICENSE]
        assert stats.credits.unlimited is True
        assert stats.limits["max_projects"] is None
        assert stats.limits["watermark"] is False
        assert stats.purchase_date.replace(tzinfo=timezone.utc) == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_no_active_license_raises(self, stats_service, user, add_license):
        add_license(PRO_LICENSE, status=LicenseStatus.REFUNDED)

        with pytest.raises(NoActiveLicenseError) as exc_info:
            stats_service.get_stats(user.id, now=NOW)

        assert exc_info.value.status_code == 404
