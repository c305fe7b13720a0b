"""Short-lived codes delivered by email during enrollment, login or disable."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String

from twofactor.database import Base


class EmailCodePurpose(str, enum.Enum):
    enrollment = "enrollment"
    login = "login"
    management = "management"


class EmailChallengeCode(Base):
    __tablename__ = "two_factor_email_codes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    code_hash = Column(String(64), nullable=False)
    email = Column(String(255), nullable=False)
    purpose = Column(Enum(EmailCodePurpose, name="emailcodepurpose"), nullable=False)

    used = Column(Boolean, default=False, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (Index("idx_email_code_user_created", "user_id", "created_at"),)
