"""
Tests for the login-time second-factor challenge
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.exceptions import (
    AccountLockedError,
    ChallengeNotFoundError,
    DeliveryFailedError,
    InvalidCodeError,
    InvalidStateError,
    NotEnabledError,
)
from twofactor.models.second_factor import TwoFactorMethod
from twofactor.models.user import User
from twofactor.services.backup_code_vault import BackupCodeVault
from twofactor.services.device_trust import ClientSignals, DeviceMetadata, DeviceTrustRegistry, fingerprint
from twofactor.services.lockout_policy import LockoutPolicy
from twofactor.services.login_challenge import ChallengeState, LoginChallengeOrchestrator
from twofactor.services.profiles import get_profile

from utils.factories import current_code, enable_authenticator, enable_email, wrong_code

DEVICE = fingerprint(ClientSignals(user_agent="Mozilla/5.0 Firefox/128.0", screen="1920x1080"))
OTHER_DEVICE = fingerprint(ClientSignals(user_agent="Mobile Safari", screen="390x844"))


@pytest.fixture
def orchestrator(test_db: AsyncSession, notifier, auditor, clock, challenge_store) -> LoginChallengeOrchestrator:
    return LoginChallengeOrchestrator(test_db, notifier, auditor=auditor, clock=clock, challenges=challenge_store)


async def _event_types(auditor, user: User) -> list[str]:
    return [entry.event_type for entry in await auditor.list_recent(user.id, limit=100)]


class TestBeginChallenge:
    @pytest.mark.asyncio
    async def test_requires_enabled_factor(self, orchestrator: LoginChallengeOrchestrator, test_user: User):
        with pytest.raises(NotEnabledError):
            await orchestrator.begin_challenge(test_user, DEVICE)

    @pytest.mark.asyncio
    async def test_issues_challenge_for_unknown_device(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock
    ):
        await enable_authenticator(test_db, test_user, clock)

        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        assert challenge.state == ChallengeState.challenge_issued
        assert challenge.method == TwoFactorMethod.authenticator
        assert challenge.passed is False
        assert orchestrator.get_challenge(test_user, challenge.id) is challenge

    @pytest.mark.asyncio
    async def test_abandoned_challenges_are_evicted(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock, challenge_store
    ):
        await enable_authenticator(test_db, test_user, clock)

        for _ in range(10):
            await orchestrator.begin_challenge(test_user, DEVICE)
        assert len(challenge_store) == 10

        clock.advance(days=1)
        fresh = await orchestrator.begin_challenge(test_user, DEVICE)

        assert len(challenge_store) == 1
        assert orchestrator.get_challenge(test_user, fresh.id) is fresh

    @pytest.mark.asyncio
    async def test_trusted_device_bypasses(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock, auditor
    ):
        await enable_authenticator(test_db, test_user, clock)
        await DeviceTrustRegistry(test_db, clock=clock).grant_trust(test_user.id, DEVICE)

        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        assert challenge.state == ChallengeState.bypassed
        assert challenge.passed is True
        assert challenge.device_trusted is True
        assert "trusted_device_bypass" in await _event_types(auditor, test_user)

    @pytest.mark.asyncio
    async def test_expired_trust_is_challenged(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock
    ):
        await enable_authenticator(test_db, test_user, clock)
        await DeviceTrustRegistry(test_db, clock=clock).grant_trust(test_user.id, DEVICE)
        clock.advance(days=31)

        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        assert challenge.state == ChallengeState.challenge_issued

    @pytest.mark.asyncio
    async def test_email_method_sends_code(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock, notifier
    ):
        await enable_email(test_db, test_user, clock)

        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        assert challenge.method == TwoFactorMethod.email
        assert challenge.masked_destination == "te******@example.com"
        assert notifier.sent[-1][0] == test_user.email

    @pytest.mark.asyncio
    async def test_email_delivery_failure_keeps_challenge(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock, notifier
    ):
        await enable_email(test_db, test_user, clock)
        notifier.fail = True

        with pytest.raises(DeliveryFailedError) as exc_info:
            await orchestrator.begin_challenge(test_user, DEVICE)

        challenge_id = exc_info.value.details["challenge_id"]
        challenge = orchestrator.get_challenge(test_user, challenge_id)
        assert challenge.state == ChallengeState.challenge_issued

        notifier.fail = False
        clock.advance(seconds=31)
        await orchestrator.resend_code(test_user, challenge_id)
        result = await orchestrator.submit_code(test_user, challenge_id, notifier.last_code)
        assert result.state == ChallengeState.succeeded


class TestSubmitCode:
    @pytest.mark.asyncio
    async def test_authenticator_success(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock, auditor
    ):
        secret, _ = await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        result = await orchestrator.submit_code(test_user, challenge.id, current_code(secret, clock))

        assert result.state == ChallengeState.succeeded
        assert result.passed is True
        assert result.device_trusted is False
        assert (await get_profile(test_db, test_user.id)).last_used_at == clock.now()
        assert "verification_success" in await _event_types(auditor, test_user)

        with pytest.raises(ChallengeNotFoundError):
            orchestrator.get_challenge(test_user, challenge.id)

    @pytest.mark.asyncio
    async def test_email_success(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock, notifier
    ):
        await enable_email(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        result = await orchestrator.submit_code(test_user, challenge.id, notifier.last_code)

        assert result.state == ChallengeState.succeeded

    @pytest.mark.asyncio
    async def test_wrong_code_reports_attempts(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock
    ):
        secret, _ = await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        with pytest.raises(InvalidCodeError) as exc_info:
            await orchestrator.submit_code(test_user, challenge.id, wrong_code(secret, clock))

        assert exc_info.value.message == "Invalid code. Attempt 1 of 5."
        assert exc_info.value.details == {"attempts": 1, "attempts_remaining": 4}
        assert challenge.state == ChallengeState.verifying

    @pytest.mark.asyncio
    async def test_challenge_belongs_to_its_user(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, other_user: User, clock
    ):
        secret, _ = await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        with pytest.raises(ChallengeNotFoundError):
            await orchestrator.submit_code(other_user, challenge.id, current_code(secret, clock))

    @pytest.mark.asyncio
    async def test_resend_not_allowed_for_authenticator(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock
    ):
        await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        with pytest.raises(InvalidStateError):
            await orchestrator.resend_code(test_user, challenge.id)


class TestBackupCodeAndTrust:
    @pytest.mark.asyncio
    async def test_backup_code_with_remember_device_then_bypass(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock, auditor
    ):
        _, backup_codes = await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        result = await orchestrator.submit_backup_code(
            test_user,
            challenge.id,
            backup_codes[0],
            remember_device=True,
            device=DeviceMetadata(device_name="Work laptop"),
        )

        assert result.state == ChallengeState.succeeded
        assert result.used_backup_code is True
        assert result.device_trusted is True
        assert await BackupCodeVault(test_db, clock=clock).remaining(test_user.id) == 7

        devices = await DeviceTrustRegistry(test_db, clock=clock).list_devices(test_user.id)
        assert [device.device_name for device in devices] == ["Work laptop"]

        # Next login from the same device skips the code
        clock.advance(days=1)
        next_login = await orchestrator.begin_challenge(test_user, DEVICE)
        assert next_login.state == ChallengeState.bypassed

        # A different device is still challenged
        assert (await orchestrator.begin_challenge(test_user, OTHER_DEVICE)).state == ChallengeState.challenge_issued

        events = await _event_types(auditor, test_user)
        for expected in ("backup_code_used", "device_trust_granted", "trusted_device_bypass"):
            assert expected in events

    @pytest.mark.asyncio
    async def test_backup_code_single_use(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock
    ):
        _, backup_codes = await enable_authenticator(test_db, test_user, clock)
        first = await orchestrator.begin_challenge(test_user, DEVICE)
        await orchestrator.submit_backup_code(test_user, first.id, backup_codes[0])

        second = await orchestrator.begin_challenge(test_user, DEVICE)
        with pytest.raises(InvalidCodeError) as exc_info:
            await orchestrator.submit_backup_code(test_user, second.id, backup_codes[0])
        assert exc_info.value.message == "Invalid backup code. Attempt 1 of 5."


class TestLockout:
    @pytest.mark.asyncio
    async def test_lockout_scenario(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock, auditor
    ):
        secret, _ = await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)
        bad = wrong_code(secret, clock)

        for attempt in range(1, 5):
            with pytest.raises(InvalidCodeError) as exc_info:
                await orchestrator.submit_code(test_user, challenge.id, bad)
            assert exc_info.value.details["attempts_remaining"] == 5 - attempt

        with pytest.raises(AccountLockedError) as exc_info:
            await orchestrator.submit_code(test_user, challenge.id, bad)
        assert exc_info.value.remaining_seconds == 15 * 60
        assert challenge.state == ChallengeState.locked

        # Even the right code is refused while locked, and does not count
        with pytest.raises(AccountLockedError):
            await orchestrator.submit_code(test_user, challenge.id, current_code(secret, clock))
        ledger_status = await LockoutPolicy(test_db, clock=clock).check_locked(test_user.id)
        assert ledger_status.remaining_seconds == 15 * 60

        clock.advance(minutes=15)
        result = await orchestrator.submit_code(test_user, challenge.id, current_code(secret, clock))
        assert result.state == ChallengeState.succeeded

        assert "account_locked" in await _event_types(auditor, test_user)

    @pytest.mark.asyncio
    async def test_all_paths_share_the_counter(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock
    ):
        secret, _ = await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)

        for _ in range(4):
            with pytest.raises(InvalidCodeError):
                await orchestrator.submit_code(test_user, challenge.id, wrong_code(secret, clock))

        with pytest.raises(AccountLockedError):
            await orchestrator.submit_backup_code(test_user, challenge.id, "AAAA-BBBB-CCCC-DDDD")

    @pytest.mark.asyncio
    async def test_locked_user_keeps_backup_code(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock
    ):
        secret, backup_codes = await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)
        for _ in range(5):
            with pytest.raises((InvalidCodeError, AccountLockedError)):
                await orchestrator.submit_code(test_user, challenge.id, wrong_code(secret, clock))

        with pytest.raises(AccountLockedError):
            await orchestrator.submit_backup_code(test_user, challenge.id, backup_codes[0])
        assert await BackupCodeVault(test_db, clock=clock).remaining(test_user.id) == 8

        clock.advance(minutes=15)
        result = await orchestrator.submit_backup_code(test_user, challenge.id, backup_codes[0])
        assert result.used_backup_code is True

    @pytest.mark.asyncio
    async def test_success_resets_counter(
        self, orchestrator: LoginChallengeOrchestrator, test_db: AsyncSession, test_user: User, clock
    ):
        secret, _ = await enable_authenticator(test_db, test_user, clock)
        challenge = await orchestrator.begin_challenge(test_user, DEVICE)
        for _ in range(3):
            with pytest.raises(InvalidCodeError):
                await orchestrator.submit_code(test_user, challenge.id, wrong_code(secret, clock))
        await orchestrator.submit_code(test_user, challenge.id, current_code(secret, clock))

        next_challenge = await orchestrator.begin_challenge(test_user, DEVICE)
        with pytest.raises(InvalidCodeError) as exc_info:
            await orchestrator.submit_code(test_user, next_challenge.id, wrong_code(secret, clock))
        assert exc_info.value.details["attempts_remaining"] == 4
