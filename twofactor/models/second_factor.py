"""
Second-Factor Profile Model

One row per user describing whether 2FA is on and which method it uses.
"""

import enum
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from twofactor.database import Base


class TwoFactorMethod(str, enum.Enum):
    authenticator = "authenticator"
    email = "email"


@dataclass(frozen=True)
class AuthenticatorFactor:
    secret: str

    method = TwoFactorMethod.authenticator


@dataclass(frozen=True)
class EmailFactor:
    address: str

    method = TwoFactorMethod.email


Factor = AuthenticatorFactor | EmailFactor


class SecondFactorProfile(Base):
    """
    Two-factor settings for a user.

    The secret and the email address are mutually exclusive and both absent
    while 2FA is disabled. The CHECK constraint enforces this at the
    database level; callers go through enable()/disable() and read the
    method-specific payload from `factor`.
    """

    __tablename__ = "two_factor_profiles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)

    enabled = Column(Boolean, default=False, nullable=False)
    method = Column(Enum(TwoFactorMethod, name="twofactormethod"), nullable=True)
    shared_secret = Column(String(64), nullable=True)
    email_address = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    enabled_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="second_factor")

    __table_args__ = (
        CheckConstraint(
            "(enabled AND method = 'authenticator' AND shared_secret IS NOT NULL AND email_address IS NULL)"
            " OR (enabled AND method = 'email' AND email_address IS NOT NULL AND shared_secret IS NULL)"
            " OR (NOT enabled AND method IS NULL AND shared_secret IS NULL AND email_address IS NULL)",
            name="ck_two_factor_profiles_factor_payload",
        ),
    )

    @property
    def factor(self) -> Factor | None:
        if not self.enabled:
            return None
        if self.method == TwoFactorMethod.authenticator:
            return AuthenticatorFactor(secret=self.shared_secret)
        return EmailFactor(address=self.email_address)

    def enable(self, factor: Factor, at: datetime) -> None:
        self.enabled = True
        self.method = factor.method
        self.shared_secret = factor.secret if isinstance(factor, AuthenticatorFactor) else None
        self.email_address = factor.address if isinstance(factor, EmailFactor) else None
        self.enabled_at = at

    def disable(self) -> None:
        self.enabled = False
        self.method = None
        self.shared_secret = None
        self.email_address = None
        self.enabled_at = None

    def __repr__(self) -> str:
        return f"<SecondFactorProfile(user_id={self.user_id}, enabled={self.enabled}, method={self.method})>"
