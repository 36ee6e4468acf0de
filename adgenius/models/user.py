"""
User model.

Users are created either by signup or implicitly by the first JVZoo sale
for an email address. Emails are stored lower-cased; lookups must
normalise the same way.
"""

from typing import TYPE_CHECKING

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from adgenius.db_base import Base
from adgenius.models.base import TimestampMixin, generate_uuid

if TYPE_CHECKING:
    from adgenius.models.user_license import UserLicense


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    email = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Lower-cased email address"
    )

    name = Column(
        String(255),
        nullable=True,
        comment="Display name"
    )

    created_via = Column(
        String(50),
        nullable=False,
        default="signup",
        comment="How the account was created: signup or jvzoo"
    )

    licenses = relationship(
        "UserLicense",
        back_populates="user",
        order_by="UserLicense.purchase_date",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"
