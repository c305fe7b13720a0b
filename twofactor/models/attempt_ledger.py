from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer

from twofactor.database import Base


class AttemptLedger(Base):
    """Consecutive second-factor failures for one user, shared by every verification path."""

    __tablename__ = "two_factor_attempt_ledgers"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    failure_count = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
