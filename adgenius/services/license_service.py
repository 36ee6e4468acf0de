"""
LicenseKeyService: license key validation and device activation.

Desktop and extension clients hold only a license key (and the buyer's
email). They validate it, check its status, and activate it on a device.
Activations are counted against the cap copied from the catalog at sale
time; the increment is a conditional UPDATE, so concurrent activations
can never exceed the cap.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adgenius.entitlements.catalog import CATALOG
from adgenius.entitlements.errors import StorageUnavailableError
from adgenius.models.user_license import LicenseStatus, UserLicense
from adgenius.services.license_keys import is_valid_license_key

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"


def _normalize_key(license_key: str) -> str:
    return str(license_key or "").strip().upper()


@dataclass(frozen=True)
class LicenseValidation:
    valid: bool
    reason: Optional[str] = None
    license: Optional[UserLicense] = None


@dataclass(frozen=True)
class LicenseCheck:
    """Public status of a key; never reveals the owner."""

    license_key: str
    status: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.status == LicenseStatus.ACTIVE.value


@dataclass(frozen=True)
class ActivationResult:
    success: bool
    error: Optional[str] = None
    activations: int = 0
    max_activations: int = 0

    @property
    def remaining_activations(self) -> int:
        return max(0, self.max_activations - self.activations)


class LicenseKeyService:
    """License key operations for one database session."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_key(self, license_key: str) -> Optional[UserLicense]:
        key = _normalize_key(license_key)
        if not is_valid_license_key(key):
            return None
        return (
            self.session.query(UserLicense)
            .filter(UserLicense.license_key == key)
            .populate_existing()
            .one_or_none()
        )

    def validate(
        self,
        license_key: str,
        email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LicenseValidation:
        """
        Check that a key exists, belongs to email (when given) and is active.

        A successful validation stamps last_validated_at.

        Raises:
            StorageUnavailableError: the database failed
        """
        try:
            license_row = self.find_by_key(license_key)
            if license_row is None:
                return LicenseValidation(valid=False, reason="License key not found")

            if email is not None and license_row.user.email != str(email).strip().lower():
                logger.info(
                    "License key presented with a different email",
                    extra={"license_id": license_row.id},
                )
                return LicenseValidation(valid=False, reason="License key does not match email")

            if license_row.status != LicenseStatus.ACTIVE:
                return LicenseValidation(
                    valid=False,
                    reason=f"License is {license_row.status.value}",
                    license=license_row,
                )

            license_row.last_validated_at = now or datetime.now(timezone.utc)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._storage_failure("validate", exc) from exc

        return LicenseValidation(valid=True, license=license_row)

    def check(self, license_key: str) -> LicenseCheck:
        key = _normalize_key(license_key)
        try:
            license_row = self.find_by_key(key)
        except SQLAlchemyError as exc:
            raise self._storage_failure("check", exc) from exc

        if license_row is None:
            return LicenseCheck(license_key=key, status=NOT_FOUND)
        product = CATALOG.get(license_row.product_id)
        return LicenseCheck(
            license_key=key,
            status=license_row.status.value,
            product_id=license_row.product_id,
            product_name=product.name if product else license_row.product_id,
        )

    def activate(
        self,
        license_key: str,
        email: Optional[str] = None,
        device_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActivationResult:
        """
        Count one more device against the key's activation cap.

        Returns a failed result, not an exception, for keys that do not
        validate and for keys at their cap.
        """
        validation = self.validate(license_key, email=email, now=now)
        if not validation.valid:
            return ActivationResult(success=False, error=validation.reason)

        license_row = validation.license
        try:
            result = self.session.execute(
                update(UserLicense)
                .where(
                    UserLicense.id == license_row.id,
                    UserLicense.status == LicenseStatus.ACTIVE,
                    UserLicense.activations < UserLicense.max_activations,
                )
                .values(activations=UserLicense.activations + 1)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
            activations, max_activations = (
                self.session.query(UserLicense.activations, UserLicense.max_activations)
                .filter(UserLicense.id == license_row.id)
                .one()
            )
        except SQLAlchemyError as exc:
            raise self._storage_failure("activate", exc) from exc

        if result.rowcount != 1:
            logger.info(
                "License activation limit reached",
                extra={"license_id": license_row.id, "max_activations": max_activations},
            )
            return ActivationResult(
                success=False,
                error=f"Maximum activations ({max_activations}) reached",
                activations=activations,
                max_activations=max_activations,
            )

        logger.info(
            "License activated",
            extra={
                "license_id": license_row.id,
                "device_id": device_id,
                "activations": activations,
            },
        )
        return ActivationResult(
            success=True,
            activations=activations,
            max_activations=max_activations,
        )

    def _storage_failure(self, operation: str, exc: SQLAlchemyError) -> StorageUnavailableError:
        self.session.rollback()
        logger.exception("License key storage failure", extra={"operation": operation})
        return StorageUnavailableError(operation, cause=exc)
