"""Tests for the credit period reset job."""

from datetime import datetime, timedelta, timezone

from adgenius.entitlements.catalog import FRONTEND, PRO_LICENSE
from adgenius.jobs.reset_credits import CreditResetJob
from adgenius.models import LicenseStatus, User, UserLicense


NOW = datetime(2026, 5, 1, tzinfo=timezone.utc)


def _license(db_session, user, key, **kwargs):
    row = UserLicense(
        user_id=user.id,
        product_id=kwargs.pop("product_id", FRONTEND),
        license_key=key,
        status=kwargs.pop("status", LicenseStatus.ACTIVE),
        **kwargs,
    )
    db_session.add(row)
    db_session.commit()
    return row


class TestCreditResetJob:
    """Bulk reset of due credit periods."""

    def test_resets_only_due_active_limited_licenses(self, db_session):
        alice = User(email="alice@example.com")
        bob = User(email="bob@example.com")
        db_session.add_all([alice, bob])
        db_session.commit()

        due = _license(db_session, alice, "AG-JOB00000000000000001",
                       credits_total=500, credits_used=300, credits_reset_date=NOW - timedelta(days=2))
        not_due = _license(db_session, bob, "AG-JOB00000000000000002",
                           credits_total=500, credits_used=50, credits_reset_date=NOW + timedelta(days=2))
        refunded = _license(db_session, bob, "AG-JOB00000000000000003",
                            status=LicenseStatus.REFUNDED,
                            credits_total=500, credits_used=500, credits_reset_date=NOW - timedelta(days=2))
        _license(db_session, bob, "AG-JOB00000000000000004", product_id=PRO_LICENSE)

        results = CreditResetJob(db_session).run(now=NOW)

        assert results["users_checked"] == 1
        assert results["licenses_reset"] == 1
        assert results["errors"] == []
        for row in (due, not_due, refunded):
            db_session.refresh(row)
        assert due.credits_used == 0
        assert not_due.credits_used == 50
        assert refunded.credits_used == 500

    def test_second_run_is_a_noop(self, db_session):
        user = User(email="carol@example.com")
        db_session.add(user)
        db_session.commit()
        _license(db_session, user, "AG-JOB00000000000000005",
                 credits_total=500, credits_used=10, credits_reset_date=NOW - timedelta(hours=1))

        job = CreditResetJob(db_session)
        job.run(now=NOW)

        assert job.run(now=NOW)["licenses_reset"] == 0
