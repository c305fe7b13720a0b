"""Devices exempted from the second-factor challenge until expires_at."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from twofactor.database import Base


class TrustedDevice(Base):
    """
    A time-bounded trust grant for a client fingerprint.

    Fingerprints are derived from client-reported signals and can be
    spoofed; a trusted device is a recognized device, not an authenticated
    one.
    """

    __tablename__ = "two_factor_trusted_devices"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    fingerprint = Column(String(128), nullable=False)

    # Device and location info
    device_name = Column(String(255), nullable=True)
    browser = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    location = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_used_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint", name="uq_trusted_device_user_fingerprint"),
        Index("idx_trusted_device_user_expires", "user_id", "expires_at"),
    )
