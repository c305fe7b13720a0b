import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from twofactor.database import Base


class ActivityEvent(str, enum.Enum):
    enrollment_started = "enrollment_started"
    enrollment_completed = "enrollment_completed"
    verification_success = "verification_success"
    verification_failed = "verification_failed"
    backup_code_used = "backup_code_used"
    backup_codes_regenerated = "backup_codes_regenerated"
    trusted_device_bypass = "trusted_device_bypass"
    device_trust_granted = "device_trust_granted"
    device_trust_revoked = "device_trust_revoked"
    account_locked = "account_locked"
    code_sent = "code_sent"
    code_delivery_failed = "code_delivery_failed"
    two_factor_disabled = "two_factor_disabled"
    persistence_error = "persistence_error"


class ActivityRecord(Base):
    __tablename__ = "two_factor_activity"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(String(64), nullable=False)
    success = Column(Boolean, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    details = Column(Text, nullable=True)

    __table_args__ = (Index("idx_two_factor_activity_user_created", "user_id", "created_at"),)
