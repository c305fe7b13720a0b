"""Single-use recovery codes. Only a hash of each code is stored."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from twofactor.database import Base


class BackupCode(Base):
    __tablename__ = "two_factor_backup_codes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # sha256 of the normalized code
    code_hash = Column(String(64), nullable=False)
    # Last characters of the code so a user can tell codes apart in listings
    hint = Column(String(8), nullable=False)

    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "code_hash", name="uq_backup_code_user_hash"),)

    def __repr__(self) -> str:
        return f"<BackupCode(user_id={self.user_id}, hint={self.hint}, used={self.used})>"
