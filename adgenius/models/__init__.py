"""
Database models for users, licenses, purchase notifications and usage.

Importing this package registers every table on the shared Base.
"""

from adgenius.models.base import TimestampMixin, generate_uuid
from adgenius.models.user import User, normalize_email
from adgenius.models.user_license import UserLicense, LicenseStatus
from adgenius.models.jvzoo_transaction import (
    JVZooTransaction,
    TransactionState,
    TransactionType,
)
from adgenius.models.usage_log import UsageLog

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "User",
    "normalize_email",
    "UserLicense",
    "LicenseStatus",
    "JVZooTransaction",
    "TransactionState",
    "TransactionType",
    "UsageLog",
]
