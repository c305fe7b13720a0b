"""
Device Trust Registry

Recognizes returning clients by a fingerprint derived from client-reported
signals and keeps time-bounded trust grants that skip the second-factor
challenge.

The fingerprint is a heuristic built from values the client controls. It
reduces friction for returning devices; it does not authenticate them.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.config import settings
from twofactor.database import persistence_guard
from twofactor.models.trusted_device import TrustedDevice
from twofactor.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientSignals:
    """Low-entropy values reported by the browser."""

    user_agent: str
    language: str = ""
    screen: str = ""  # e.g. "1920x1080"
    timezone_offset: int = 0  # minutes, as reported by the client
    canvas_hash: str = ""


@dataclass(frozen=True)
class DeviceMetadata:
    device_name: str = "Unknown Device"
    browser: str | None = None
    ip_address: str = "Unknown"
    location: str = "Unknown"


def fingerprint(signals: ClientSignals) -> str:
    """Fixed-size digest of the client signals."""
    parts = [
        signals.user_agent.strip(),
        signals.language.strip().lower(),
        signals.screen.strip().lower(),
        str(int(signals.timezone_offset)),
        signals.canvas_hash.strip(),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class DeviceTrustRegistry:
    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    fingerprint = staticmethod(fingerprint)

    async def _get(self, user_id: int, device_fingerprint: str) -> TrustedDevice | None:
        result = await self.db.execute(
            select(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.fingerprint == device_fingerprint,
            )
        )
        return result.scalar_one_or_none()

    async def grant_trust(
        self,
        user_id: int,
        device_fingerprint: str,
        metadata: DeviceMetadata | None = None,
        ttl: timedelta | None = None,
    ) -> TrustedDevice:
        """
        Trust a device until now + ttl.

        Repeat grants for the same (user, fingerprint) refresh the existing
        row instead of adding another.
        """
        metadata = metadata or DeviceMetadata()
        if ttl is None:
            ttl = timedelta(days=settings.trusted_device_ttl_days)
        now = self.clock.now()

        async with persistence_guard(self.db, "grant device trust"):
            await self.purge_expired(user_id, commit=False)
            device = await self._get(user_id, device_fingerprint)
            if device is None:
                device = TrustedDevice(user_id=user_id, fingerprint=device_fingerprint, created_at=now)
                self.db.add(device)
            self._apply(device, metadata, now, now + ttl)
            try:
                await self.db.commit()
            except IntegrityError:
                # A concurrent grant inserted the row first; refresh that one
                await self.db.rollback()
                device = await self._get(user_id, device_fingerprint)
                self._apply(device, metadata, now, now + ttl)
                await self.db.commit()

        logger.info(f"Device trust granted for user {user_id} until {device.expires_at.isoformat()}")
        return device

    @staticmethod
    def _apply(device: TrustedDevice, metadata: DeviceMetadata, now: datetime, expires_at: datetime) -> None:
        device.device_name = metadata.device_name
        device.browser = metadata.browser
        device.ip_address = metadata.ip_address
        device.location = metadata.location
        device.last_used_at = now
        device.expires_at = expires_at

    async def is_trusted(self, user_id: int, device_fingerprint: str) -> bool:
        """True iff an unexpired grant exists for this device."""
        if not device_fingerprint:
            return False
        now = self.clock.now()
        async with persistence_guard(self.db, "check device trust"):
            device = await self._get(user_id, device_fingerprint)
            if device is None or device.expires_at <= now:
                return False
            device.last_used_at = now
            await self.db.commit()
        return True

    async def list_devices(self, user_id: int) -> list[TrustedDevice]:
        async with persistence_guard(self.db, "list trusted devices"):
            await self.purge_expired(user_id)
            result = await self.db.execute(
                select(TrustedDevice)
                .where(TrustedDevice.user_id == user_id, TrustedDevice.expires_at > self.clock.now())
                .order_by(TrustedDevice.last_used_at.desc())
            )
            return list(result.scalars().all())

    async def revoke(self, user_id: int, device_fingerprint: str) -> int:
        async with persistence_guard(self.db, "revoke device"):
            result = await self.db.execute(
                delete(TrustedDevice).where(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.fingerprint == device_fingerprint,
                )
            )
            await self.db.commit()
        logger.info(f"Revoked {result.rowcount} trusted device(s) for user {user_id}")
        return result.rowcount

    async def revoke_all(self, user_id: int, commit: bool = True) -> int:
        async with persistence_guard(self.db, "revoke all devices"):
            result = await self.db.execute(delete(TrustedDevice).where(TrustedDevice.user_id == user_id))
            if commit:
                await self.db.commit()
        logger.info(f"Revoked all {result.rowcount} trusted device(s) for user {user_id}")
        return result.rowcount

    async def purge_expired(self, user_id: int, commit: bool = True) -> int:
        result = await self.db.execute(
            delete(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.expires_at <= self.clock.now(),
            )
        )
        if commit:
            await self.db.commit()
        return result.rowcount
