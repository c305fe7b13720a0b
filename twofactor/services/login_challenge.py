"""
Login Challenge Orchestrator

Runs the second-factor step after the password has been accepted:

    checking_trust -> bypassed
                   -> challenge_issued -> verifying -> succeeded | locked

Every submitted code, whichever path it takes (authenticator, email or
backup code), is gated by the shared lockout ledger: the lock is checked
before anything is verified and exactly one success or failure is recorded
per attempt.
"""

import enum
import logging
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, NoReturn

from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.config import settings
from twofactor.database import persistence_guard
from twofactor.exceptions import (
    AccountLockedError,
    ChallengeNotFoundError,
    DeliveryFailedError,
    ExpiredCodeError,
    InvalidCodeError,
    InvalidStateError,
    NotEnabledError,
    ResendCooldownError,
)
from twofactor.models.activity import ActivityEvent
from twofactor.models.email_code import EmailCodePurpose
from twofactor.models.second_factor import AuthenticatorFactor, EmailFactor, TwoFactorMethod
from twofactor.models.user import User
from twofactor.services.activity_auditor import ActivityAuditor, reports_persistence_errors
from twofactor.services.backup_code_vault import BackupCodeVault
from twofactor.services.code_verifier import CodeVerifier
from twofactor.services.device_trust import DeviceMetadata, DeviceTrustRegistry
from twofactor.services.email_codes import EmailCodeDelivery, EmailCodeIssuer
from twofactor.services.flow_store import FlowStore
from twofactor.services.lockout_policy import LockoutPolicy
from twofactor.services.notifier import Notifier
from twofactor.services.profiles import get_enabled_profile
from twofactor.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class ChallengeState(str, enum.Enum):
    checking_trust = "checking_trust"
    bypassed = "bypassed"
    challenge_issued = "challenge_issued"
    verifying = "verifying"
    succeeded = "succeeded"
    locked = "locked"


@dataclass
class LoginChallenge:
    id: str
    user_id: int
    fingerprint: str
    method: TwoFactorMethod
    state: ChallengeState = ChallengeState.checking_trust
    attempts: int = 0
    masked_destination: str | None = None
    used_backup_code: bool = False
    device_trusted: bool = False

    @property
    def passed(self) -> bool:
        return self.state in (ChallengeState.bypassed, ChallengeState.succeeded)


# Open challenges keyed by challenge id (production would use Redis)
login_challenges: FlowStore[LoginChallenge] = FlowStore(ttl=timedelta(minutes=settings.challenge_ttl_minutes))

_OPEN_STATES = (ChallengeState.challenge_issued, ChallengeState.verifying, ChallengeState.locked)


class LoginChallengeOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        notifier: Notifier,
        auditor: ActivityAuditor | None = None,
        clock: Clock = system_clock,
        challenges: FlowStore[LoginChallenge] | None = None,
    ):
        self.db = db
        self.auditor = auditor or ActivityAuditor(clock=clock)
        self.clock = clock
        self.challenges = challenges if challenges is not None else login_challenges
        self.verifier = CodeVerifier()
        self.vault = BackupCodeVault(db, clock=clock)
        self.devices = DeviceTrustRegistry(db, clock=clock)
        self.lockout = LockoutPolicy(db, clock=clock)
        self.email_codes = EmailCodeIssuer(db, notifier, clock=clock)

    def get_challenge(self, user: User, challenge_id: str) -> LoginChallenge:
        challenge = self.challenges.get(challenge_id)
        if challenge is None or challenge.user_id != user.id:
            raise ChallengeNotFoundError()
        return challenge

    @reports_persistence_errors("begin login challenge")
    async def begin_challenge(
        self, user: User, device_fingerprint: str, context: dict[str, Any] | None = None
    ) -> LoginChallenge:
        """
        Decide whether this login needs a second factor.

        A trusted device is let through without a code. Otherwise a challenge
        is opened, and for the email method a fresh code is sent.

        Raises:
            NotEnabledError: the user has no second factor
            DeliveryFailedError: the email code could not be sent; the
                challenge stays open and its id is in the error details
        """
        profile = await get_enabled_profile(self.db, user.id)
        if profile is None:
            raise NotEnabledError()

        challenge = LoginChallenge(
            id=secrets.token_urlsafe(24),
            user_id=user.id,
            fingerprint=device_fingerprint,
            method=profile.method,
        )

        if await self.devices.is_trusted(user.id, device_fingerprint):
            challenge.state = ChallengeState.bypassed
            challenge.device_trusted = True
            await self.auditor.record(user.id, ActivityEvent.trusted_device_bypass, True, context)
            logger.info(f"2FA challenge bypassed for user {user.id} on a trusted device")
            return challenge

        challenge.state = ChallengeState.challenge_issued
        self.challenges.put(challenge.id, challenge)
        logger.info(f"2FA challenge issued for user {user.id} ({challenge.method.value})")

        factor = profile.factor
        if isinstance(factor, EmailFactor):
            try:
                delivery = await self._send_email_code(user, factor.address, context)
            except ResendCooldownError:
                # A code from a moment ago is still the newest one and still valid
                logger.info(f"Reusing recently sent login code for user {user.id}")
            except DeliveryFailedError as e:
                e.details["challenge_id"] = challenge.id
                raise
            else:
                challenge.masked_destination = delivery.masked_email

        return challenge

    @reports_persistence_errors("resend login code")
    async def resend_code(self, user: User, challenge_id: str, context: dict[str, Any] | None = None) -> EmailCodeDelivery:
        challenge = self.get_challenge(user, challenge_id)
        if challenge.state not in _OPEN_STATES:
            raise InvalidStateError(challenge.state.value, "resend a code")
        if challenge.method != TwoFactorMethod.email:
            raise InvalidStateError(challenge.state.value, "resend a code for the authenticator method")

        profile = await get_enabled_profile(self.db, user.id)
        if profile is None:
            raise NotEnabledError()

        delivery = await self._send_email_code(user, profile.email_address, context)
        challenge.masked_destination = delivery.masked_email
        return delivery

    async def _send_email_code(self, user: User, address: str, context: dict[str, Any] | None) -> EmailCodeDelivery:
        try:
            delivery = await self.email_codes.send(user.id, address, EmailCodePurpose.login)
        except DeliveryFailedError:
            await self.auditor.record(user.id, ActivityEvent.code_delivery_failed, False, context)
            raise
        await self.auditor.record(user.id, ActivityEvent.code_sent, True, context)
        return delivery

    @reports_persistence_errors("submit login code")
    async def submit_code(
        self,
        user: User,
        challenge_id: str,
        code: str,
        remember_device: bool = False,
        device: DeviceMetadata | None = None,
        context: dict[str, Any] | None = None,
    ) -> LoginChallenge:
        """Verify an authenticator or email code for an open challenge."""
        challenge = self.get_challenge(user, challenge_id)

        async def check() -> bool:
            profile = await get_enabled_profile(self.db, user.id)
            if profile is None:
                raise NotEnabledError()
            factor = profile.factor
            if isinstance(factor, AuthenticatorFactor):
                return self.verifier.verify(factor.secret, code, self.clock.now())
            return await self.email_codes.verify(user.id, code, EmailCodePurpose.login, factor.address)

        return await self._attempt(user, challenge, check, remember_device, device, context, backup=False)

    @reports_persistence_errors("submit backup code")
    async def submit_backup_code(
        self,
        user: User,
        challenge_id: str,
        code: str,
        remember_device: bool = False,
        device: DeviceMetadata | None = None,
        context: dict[str, Any] | None = None,
    ) -> LoginChallenge:
        """Verify and consume a backup code for an open challenge."""
        challenge = self.get_challenge(user, challenge_id)

        async def check() -> bool:
            return await self.vault.consume(user.id, code)

        return await self._attempt(user, challenge, check, remember_device, device, context, backup=True)

    async def _attempt(
        self,
        user: User,
        challenge: LoginChallenge,
        check: Callable[[], Awaitable[bool]],
        remember_device: bool,
        device: DeviceMetadata | None,
        context: dict[str, Any] | None,
        backup: bool,
    ) -> LoginChallenge:
        if challenge.state not in _OPEN_STATES:
            raise InvalidStateError(challenge.state.value, "submit a code")

        lock = await self.lockout.check_locked(user.id)
        if lock.locked:
            challenge.state = ChallengeState.locked
            logger.warning(f"Rejected 2FA attempt for locked user {user.id}")
            raise AccountLockedError(lock.remaining_seconds)

        challenge.state = ChallengeState.verifying
        error: InvalidCodeError | ExpiredCodeError | None = None
        try:
            verified = await check()
        except (InvalidCodeError, ExpiredCodeError) as e:
            verified = False
            error = e

        if not verified:
            await self._fail(user, challenge, context, backup, error)

        await self.lockout.record_success(user.id)
        challenge.state = ChallengeState.succeeded
        challenge.used_backup_code = backup
        self.challenges.pop(challenge.id)

        await self._touch_profile(user.id)
        if backup:
            remaining = await self.vault.remaining(user.id)
            await self.auditor.record(
                user.id, ActivityEvent.backup_code_used, True, {**(context or {}), "remaining": remaining}
            )
        await self.auditor.record(user.id, ActivityEvent.verification_success, True, context)

        if remember_device:
            await self.devices.grant_trust(user.id, challenge.fingerprint, device)
            challenge.device_trusted = True
            await self.auditor.record(user.id, ActivityEvent.device_trust_granted, True, context)

        logger.info(f"2FA verification succeeded for user {user.id}")
        return challenge

    async def _fail(
        self,
        user: User,
        challenge: LoginChallenge,
        context: dict[str, Any] | None,
        backup: bool,
        error: InvalidCodeError | ExpiredCodeError | None,
    ) -> NoReturn:
        decision = await self.lockout.record_failure(user.id)
        challenge.attempts += 1
        await self.auditor.record(
            user.id,
            ActivityEvent.verification_failed,
            False,
            {**(context or {}), "path": "backup_code" if backup else challenge.method.value},
        )

        if decision.locked:
            challenge.state = ChallengeState.locked
            await self.auditor.record(user.id, ActivityEvent.account_locked, False, context)
            raise AccountLockedError(decision.remaining_seconds)

        challenge.state = ChallengeState.verifying
        if isinstance(error, ExpiredCodeError):
            raise error
        label = "backup code" if backup else "code"
        raise InvalidCodeError(
            f"Invalid {label}. Attempt {decision.failure_count} of {self.lockout.threshold}.",
            attempts=challenge.attempts,
            attempts_remaining=decision.attempts_remaining,
        )

    async def _touch_profile(self, user_id: int) -> None:
        profile = await get_enabled_profile(self.db, user_id)
        if profile is None:
            return
        async with persistence_guard(self.db, "update last used"):
            profile.last_used_at = self.clock.now()
            await self.db.commit()
