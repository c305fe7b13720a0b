"""
Tests for device fingerprints and trust grants
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.models.trusted_device import TrustedDevice
from twofactor.models.user import User
from twofactor.services.device_trust import ClientSignals, DeviceMetadata, DeviceTrustRegistry, fingerprint

SIGNALS = ClientSignals(
    user_agent="Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0",
    language="en-US",
    screen="1920x1080",
    timezone_offset=-60,
    canvas_hash="c4a1f0",
)


class TestFingerprint:
    def test_stable(self):
        assert fingerprint(SIGNALS) == fingerprint(SIGNALS)
        assert len(fingerprint(SIGNALS)) == 64

    def test_case_and_padding_of_soft_signals_ignored(self):
        variant = ClientSignals(
            user_agent=SIGNALS.user_agent,
            language=" EN-us ",
            screen="1920X1080",
            timezone_offset=-60,
            canvas_hash="c4a1f0",
        )
        assert fingerprint(variant) == fingerprint(SIGNALS)

    def test_different_device(self):
        other = ClientSignals(user_agent=SIGNALS.user_agent, screen="390x844", timezone_offset=-60)
        assert fingerprint(other) != fingerprint(SIGNALS)


class TestDeviceTrustRegistry:
    @pytest.mark.asyncio
    async def test_grant_and_check(self, test_db: AsyncSession, test_user: User, clock):
        registry = DeviceTrustRegistry(test_db, clock=clock)
        fp = fingerprint(SIGNALS)

        assert await registry.is_trusted(test_user.id, fp) is False

        device = await registry.grant_trust(test_user.id, fp, DeviceMetadata(device_name="Laptop", ip_address="10.0.0.1"))

        assert device.expires_at == clock.now() + timedelta(days=30)
        assert device.device_name == "Laptop"
        assert await registry.is_trusted(test_user.id, fp) is True

    @pytest.mark.asyncio
    async def test_trust_expires(self, test_db: AsyncSession, test_user: User, clock):
        registry = DeviceTrustRegistry(test_db, clock=clock)
        fp = fingerprint(SIGNALS)
        await registry.grant_trust(test_user.id, fp)

        clock.advance(days=29, hours=23)
        assert await registry.is_trusted(test_user.id, fp) is True

        clock.advance(hours=1)
        assert await registry.is_trusted(test_user.id, fp) is False
        assert await registry.list_devices(test_user.id) == []

    @pytest.mark.asyncio
    async def test_trust_is_per_user(self, test_db: AsyncSession, test_user: User, other_user: User, clock):
        registry = DeviceTrustRegistry(test_db, clock=clock)
        fp = fingerprint(SIGNALS)
        await registry.grant_trust(test_user.id, fp)

        assert await registry.is_trusted(other_user.id, fp) is False

    @pytest.mark.asyncio
    async def test_regrant_refreshes_single_row(self, test_db: AsyncSession, test_user: User, clock):
        registry = DeviceTrustRegistry(test_db, clock=clock)
        fp = fingerprint(SIGNALS)
        await registry.grant_trust(test_user.id, fp)
        clock.advance(days=10)
        device = await registry.grant_trust(test_user.id, fp)

        count = await test_db.scalar(select(func.count()).select_from(TrustedDevice))
        assert count == 1
        assert device.expires_at == clock.now() + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_revoke(self, test_db: AsyncSession, test_user: User, clock):
        registry = DeviceTrustRegistry(test_db, clock=clock)
        laptop = fingerprint(SIGNALS)
        phone = fingerprint(ClientSignals(user_agent="Mobile Safari", screen="390x844"))
        await registry.grant_trust(test_user.id, laptop)
        await registry.grant_trust(test_user.id, phone)

        assert await registry.revoke(test_user.id, laptop) == 1
        assert await registry.is_trusted(test_user.id, laptop) is False
        assert await registry.is_trusted(test_user.id, phone) is True

        assert await registry.revoke_all(test_user.id) == 1
        assert await registry.list_devices(test_user.id) == []

    @pytest.mark.asyncio
    async def test_empty_fingerprint_never_trusted(self, test_db: AsyncSession, test_user: User, clock):
        assert await DeviceTrustRegistry(test_db, clock=clock).is_trusted(test_user.id, "") is False
