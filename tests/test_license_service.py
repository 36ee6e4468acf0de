"""
Tests for license key validation, status checks and activation.

Tests cover:
- Unknown, malformed and mismatched keys
- Inactive licenses report their status
- Validation stamps last_validated_at
- Activation counts against the cap and stops at it
- Storage failures are retryable
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from adgenius.entitlements.catalog import PRO_LICENSE
from adgenius.entitlements.errors import StorageUnavailableError
from adgenius.models import LicenseStatus, User, UserLicense
from adgenius.services.license_service import NOT_FOUND, LicenseKeyService

KEY = "AG-0123456789ABCDEF0123"


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def user(db_session):
    user = User(email="keys@example.com", name="Key Holder")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def license_row(db_session, user):
    row = UserLicense(
        user_id=user.id,
        product_id=PRO_LICENSE,
        license_key=KEY,
        status=LicenseStatus.ACTIVE,
        max_activations=2,
    )
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def service(db_session):
    return LicenseKeyService(db_session)


# =============================================================================
# Test Suite: Validation
# =============================================================================

class TestValidate:
    """Key, email and status checks."""

    def test_valid_key_stamps_last_validated(self, service, db_session, license_row):
        now = datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc)

        result = service.validate(KEY, email="keys@example.com", now=now)

        assert result.valid is True
        assert result.reason is None
        assert result.license.id == license_row.id
        db_session.refresh(license_row)
        assert license_row.last_validated_at.replace(tzinfo=timezone.utc) == now

    def test_key_and_email_are_normalized(self, service, license_row):
        result = service.validate(f"  {KEY.lower()} ", email=" Keys@Example.COM ")
        assert result.valid is True

    def test_unknown_key(self, service, license_row):
        result = service.validate("AG-FFFFFFFFFFFFFFFFFFFF", email="keys@example.com")

        assert result.valid is False
        assert result.reason == "License key not found"

    def test_malformed_key_is_not_found(self, service, license_row):
        assert service.validate("not-a-key", email="keys@example.com").reason == "License key not found"

    def test_email_mismatch(self, service, license_row):
        result = service.validate(KEY, email="someone-else@example.com")

        assert result.valid is False
        assert result.reason == "License key does not match email"

    def test_refunded_license_reports_status(self, service, db_session, license_row):
        license_row.status = LicenseStatus.REFUNDED
        db_session.commit()

        result = service.validate(KEY, email="keys@example.com")

        assert result.valid is False
        assert result.reason == "License is refunded"


# =============================================================================
# Test Suite: Check
# =============================================================================

class TestCheck:
    """Public key status."""

    def test_active_key(self, service, license_row):
        result = service.check(KEY)

        assert result.status == "active"
        assert result.valid is True
        assert result.product_id == PRO_LICENSE
        assert result.product_name == "Pro"

    def test_unknown_key(self, service):
        result = service.check("AG-FFFFFFFFFFFFFFFFFFFF")

        assert result.status == NOT_FOUND
        assert result.valid is False
        assert result.product_id is None

    def test_chargeback_key(self, service, db_session, license_row):
        license_row.status = LicenseStatus.CHARGEBACK
        db_session.commit()

        assert service.check(KEY).status == "chargeback"


# =============================================================================
# Test Suite: Activation
# =============================================================================

class TestActivate:
    """Device activations against the cap."""

    def test_activation_counts_up_to_cap(self, service, db_session, license_row):
        first = service.activate(KEY, email="keys@example.com", device_id="laptop")
        second = service.activate(KEY, email="keys@example.com", device_id="desktop")
        third = service.activate(KEY, email="keys@example.com", device_id="tablet")

        assert (first.success, first.activations, first.remaining_activations) == (True, 1, 1)
        assert (second.success, second.activations, second.remaining_activations) == (True, 2, 0)
        assert third.success is False
        assert third.error == "Maximum activations (2) reached"
        db_session.refresh(license_row)
        assert license_row.activations == 2

    def test_invalid_key_is_not_activated(self, service, db_session, license_row):
        result = service.activate(KEY, email="intruder@example.com")

        assert result.success is False
        assert result.error == "License key does not match email"
        db_session.refresh(license_row)
        assert license_row.activations == 0

    def test_inactive_license_is_not_activated(self, service, db_session, license_row):
        license_row.status = LicenseStatus.CANCELLED
        db_session.commit()

        result = service.activate(KEY, email="keys@example.com")

        assert result.success is False
        assert result.error == "License is cancelled"


# =============================================================================
# Test Suite: Storage Failures
# =============================================================================

class TestStorageFailures:
    """Database errors surface as retryable 503s."""

    def test_check_storage_error(self, service):
        failure = OperationalError("SELECT user_licenses", {}, Exception("connection reset"))

        with patch.object(Session, "query", side_effect=failure):
            with pytest.raises(StorageUnavailableError) as exc_info:
                service.check(KEY)

        assert exc_info.value.status_code == 503
        assert exc_info.value.details["operation"] == "check"
