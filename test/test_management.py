"""
Tests for 2FA status, disable and account-settings operations
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.exceptions import (
    AccountLockedError,
    ExpiredCodeError,
    InvalidCodeError,
    InvalidCredentialError,
    InvalidStateError,
    NotEnabledError,
)
from twofactor.models.second_factor import TwoFactorMethod
from twofactor.models.user import User
from twofactor.services.backup_code_vault import BackupCodeVault
from twofactor.services.device_trust import DeviceTrustRegistry
from twofactor.services.lockout_policy import LockoutPolicy
from twofactor.services.management import TwoFactorManagementService
from twofactor.services.profiles import get_profile

from conftest import TEST_PASSWORD
from utils.factories import current_code, enable_authenticator, enable_email, wrong_code


@pytest.fixture
def service(test_db: AsyncSession, identity, notifier, auditor, clock) -> TwoFactorManagementService:
    return TwoFactorManagementService(test_db, identity, notifier, auditor=auditor, clock=clock)


class TestStatus:
    @pytest.mark.asyncio
    async def test_disabled(self, service: TwoFactorManagementService, test_user: User):
        status = await service.status(test_user)
        assert status.enabled is False
        assert status.method is None
        assert status.backup_codes_remaining == 0

    @pytest.mark.asyncio
    async def test_enabled(self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock):
        await enable_email(test_db, test_user, clock)
        await DeviceTrustRegistry(test_db, clock=clock).grant_trust(test_user.id, "fp-1")

        status = await service.status(test_user)

        assert status.enabled is True
        assert status.method == TwoFactorMethod.email
        assert status.email == "te******@example.com"
        assert status.enabled_at == clock.now()
        assert status.backup_codes_remaining == 8
        assert status.trusted_devices == 1


class TestDisable:
    @pytest.mark.asyncio
    async def test_disable_wipes_everything(
        self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock, auditor
    ):
        secret, _ = await enable_authenticator(test_db, test_user, clock)
        await DeviceTrustRegistry(test_db, clock=clock).grant_trust(test_user.id, "fp-1")

        await service.disable(test_user, TEST_PASSWORD, current_code(secret, clock))

        profile = await get_profile(test_db, test_user.id)
        assert profile.enabled is False
        assert profile.method is None
        assert profile.shared_secret is None
        assert profile.email_address is None
        assert await BackupCodeVault(test_db, clock=clock).list_codes(test_user.id) == []
        assert await DeviceTrustRegistry(test_db, clock=clock).list_devices(test_user.id) == []
        assert (await service.status(test_user)).enabled is False

        entries = await auditor.list_recent(test_user.id)
        assert entries[0].event_type == "two_factor_disabled"

    @pytest.mark.asyncio
    async def test_wrong_password(self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock):
        secret, _ = await enable_authenticator(test_db, test_user, clock)

        with pytest.raises(InvalidCredentialError):
            await service.disable(test_user, "wrong-password", current_code(secret, clock))

        assert (await service.status(test_user)).enabled is True

    @pytest.mark.asyncio
    async def test_wrong_code_counts_toward_lockout(
        self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock
    ):
        secret, _ = await enable_authenticator(test_db, test_user, clock)

        for attempt in range(1, 5):
            with pytest.raises(InvalidCodeError) as exc_info:
                await service.disable(test_user, TEST_PASSWORD, wrong_code(secret, clock))
            assert exc_info.value.details["attempts_remaining"] == 5 - attempt

        with pytest.raises(AccountLockedError):
            await service.disable(test_user, TEST_PASSWORD, wrong_code(secret, clock))
        with pytest.raises(AccountLockedError):
            await service.disable(test_user, TEST_PASSWORD, current_code(secret, clock))

        assert (await service.status(test_user)).enabled is True

    @pytest.mark.asyncio
    async def test_not_enabled(self, service: TwoFactorManagementService, test_user: User):
        with pytest.raises(NotEnabledError):
            await service.disable(test_user, TEST_PASSWORD, "123456")

    @pytest.mark.asyncio
    async def test_email_method_uses_management_code(
        self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock, notifier
    ):
        await enable_email(test_db, test_user, clock)

        delivery = await service.send_management_code(test_user)
        assert delivery.masked_email == "te******@example.com"

        await service.disable(test_user, TEST_PASSWORD, notifier.last_code)
        assert (await service.status(test_user)).enabled is False

    @pytest.mark.asyncio
    async def test_expired_code_counts_toward_lockout(
        self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock, notifier, auditor
    ):
        await enable_email(test_db, test_user, clock)
        await service.send_management_code(test_user)
        clock.advance(minutes=11)

        with pytest.raises(ExpiredCodeError):
            await service.disable(test_user, TEST_PASSWORD, notifier.last_code)

        ledger = await LockoutPolicy(test_db, clock=clock).check_locked(test_user.id)
        assert ledger.locked is False
        events = [entry.event_type for entry in await auditor.list_recent(test_user.id)]
        assert "verification_failed" in events

    @pytest.mark.asyncio
    async def test_expired_code_reaching_threshold_reports_lock(
        self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock, notifier, auditor
    ):
        await enable_email(test_db, test_user, clock)
        lockout = LockoutPolicy(test_db, clock=clock)
        for _ in range(4):
            await lockout.record_failure(test_user.id)

        await service.send_management_code(test_user)
        clock.advance(minutes=11)

        with pytest.raises(AccountLockedError) as exc_info:
            await service.disable(test_user, TEST_PASSWORD, notifier.last_code)
        assert exc_info.value.remaining_seconds == 15 * 60

        assert (await lockout.check_locked(test_user.id)).locked is True
        events = [entry.event_type for entry in await auditor.list_recent(test_user.id)]
        assert "account_locked" in events
        assert (await service.status(test_user)).enabled is True

    @pytest.mark.asyncio
    async def test_management_code_requires_email_method(
        self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock
    ):
        await enable_authenticator(test_db, test_user, clock)

        with pytest.raises(InvalidStateError):
            await service.send_management_code(test_user)


class TestBackupCodesAndDevices:
    @pytest.mark.asyncio
    async def test_regenerate(self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock, auditor):
        _, old_codes = await enable_authenticator(test_db, test_user, clock)

        new_codes = await service.regenerate_backup_codes(test_user)

        assert len(new_codes) == 8
        assert set(new_codes).isdisjoint(old_codes)
        listed = await service.list_backup_codes(test_user)
        assert len(listed) == 8
        assert not any(status.used for status in listed)
        assert (await auditor.list_recent(test_user.id))[0].event_type == "backup_codes_regenerated"

    @pytest.mark.asyncio
    async def test_backup_codes_require_enabled(self, service: TwoFactorManagementService, test_user: User):
        with pytest.raises(NotEnabledError):
            await service.list_backup_codes(test_user)
        with pytest.raises(NotEnabledError):
            await service.regenerate_backup_codes(test_user)

    @pytest.mark.asyncio
    async def test_revoke_devices(self, service: TwoFactorManagementService, test_db: AsyncSession, test_user: User, clock):
        registry = DeviceTrustRegistry(test_db, clock=clock)
        for fp in ("fp-1", "fp-2", "fp-3"):
            await registry.grant_trust(test_user.id, fp)

        assert await service.revoke_device(test_user, "fp-1") == 1
        assert await service.revoke_device(test_user, "fp-unknown") == 0
        assert {device.fingerprint for device in await service.list_trusted_devices(test_user)} == {"fp-2", "fp-3"}

        assert await service.revoke_all_devices(test_user) == 2
        assert await service.list_trusted_devices(test_user) == []

    @pytest.mark.asyncio
    async def test_recent_activity(self, service: TwoFactorManagementService, test_user: User, auditor, clock):
        for fp in ("fp-1", "fp-2"):
            await service.revoke_device(test_user, fp)
        await service.revoke_all_devices(test_user)
        clock.advance(seconds=1)
        await service.revoke_all_devices(test_user)

        entries = await service.list_recent_activity(test_user, limit=1)
        assert len(entries) == 1
        assert entries[0].event_type == "device_trust_revoked"
        assert entries[0].details == {"count": 0}
