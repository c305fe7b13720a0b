"""
Two-Factor Management Service

Account-settings operations once 2FA is on: status, disable, backup code
listing and regeneration, trusted device control and recent activity.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.database import persistence_guard
from twofactor.exceptions import (
    AccountLockedError,
    ExpiredCodeError,
    InvalidCodeError,
    InvalidCredentialError,
    InvalidStateError,
    NotEnabledError,
)
from twofactor.models.activity import ActivityEvent
from twofactor.models.email_code import EmailCodePurpose
from twofactor.models.second_factor import AuthenticatorFactor, EmailFactor, SecondFactorProfile, TwoFactorMethod
from twofactor.models.trusted_device import TrustedDevice
from twofactor.models.user import User
from twofactor.services.activity_auditor import (
    DEFAULT_ACTIVITY_LIMIT,
    ActivityAuditor,
    ActivityEntry,
    reports_persistence_errors,
)
from twofactor.services.backup_code_vault import BackupCodeStatus, BackupCodeVault
from twofactor.services.code_verifier import CodeVerifier
from twofactor.services.device_trust import DeviceTrustRegistry
from twofactor.services.email_codes import EmailCodeDelivery, EmailCodeIssuer
from twofactor.services.identity import IdentityProvider
from twofactor.services.lockout_policy import LockoutPolicy
from twofactor.services.notifier import Notifier
from twofactor.services.profiles import get_enabled_profile, get_profile
from twofactor.utils.clock import Clock, system_clock
from twofactor.utils.masking import mask_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwoFactorStatus:
    enabled: bool
    method: TwoFactorMethod | None = None
    email: str | None = None
    enabled_at: datetime | None = None
    last_used_at: datetime | None = None
    backup_codes_remaining: int = 0
    trusted_devices: int = 0


class TwoFactorManagementService:
    def __init__(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        notifier: Notifier,
        auditor: ActivityAuditor | None = None,
        clock: Clock = system_clock,
    ):
        self.db = db
        self.identity = identity
        self.auditor = auditor or ActivityAuditor(clock=clock)
        self.clock = clock
        self.verifier = CodeVerifier()
        self.vault = BackupCodeVault(db, clock=clock)
        self.devices = DeviceTrustRegistry(db, clock=clock)
        self.lockout = LockoutPolicy(db, clock=clock)
        self.email_codes = EmailCodeIssuer(db, notifier, clock=clock)

    async def _require_enabled(self, user: User) -> SecondFactorProfile:
        profile = await get_enabled_profile(self.db, user.id)
        if profile is None:
            raise NotEnabledError()
        return profile

    @reports_persistence_errors("load 2FA status")
    async def status(self, user: User) -> TwoFactorStatus:
        profile = await get_profile(self.db, user.id)
        if profile is None or not profile.enabled:
            return TwoFactorStatus(enabled=False)

        return TwoFactorStatus(
            enabled=True,
            method=profile.method,
            email=mask_email(profile.email_address) if profile.email_address else None,
            enabled_at=profile.enabled_at,
            last_used_at=profile.last_used_at,
            backup_codes_remaining=await self.vault.remaining(user.id),
            trusted_devices=len(await self.devices.list_devices(user.id)),
        )

    @reports_persistence_errors("send management code")
    async def send_management_code(self, user: User) -> EmailCodeDelivery:
        """Email a code that confirms a sensitive change such as disabling 2FA."""
        profile = await self._require_enabled(user)
        factor = profile.factor
        if not isinstance(factor, EmailFactor):
            raise InvalidStateError(profile.method.value, "send an email code")
        return await self.email_codes.send(user.id, factor.address, EmailCodePurpose.management)

    async def _verify_with_factor(self, user: User, profile: SecondFactorProfile, code: str) -> bool:
        factor = profile.factor
        if isinstance(factor, AuthenticatorFactor):
            return self.verifier.verify(factor.secret, code, self.clock.now())
        try:
            return await self.email_codes.verify(user.id, code, EmailCodePurpose.management, factor.address)
        except InvalidCodeError:
            return False

    @reports_persistence_errors("disable 2FA")
    async def disable(
        self,
        user: User,
        password: str,
        verification_code: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Turn 2FA off after confirming both the password and a current code.

        Backup codes and trusted devices are removed with the profile. The
        code check counts against the same lockout ledger as login.
        """
        profile = await self._require_enabled(user)

        if not await self.identity.reauthenticate(user, password):
            await self.auditor.record(
                user.id, ActivityEvent.verification_failed, False, {**(context or {}), "stage": "disable"}
            )
            raise InvalidCredentialError()

        lock = await self.lockout.check_locked(user.id)
        if lock.locked:
            raise AccountLockedError(lock.remaining_seconds)

        expired: ExpiredCodeError | None = None
        try:
            verified = await self._verify_with_factor(user, profile, verification_code)
        except ExpiredCodeError as e:
            verified, expired = False, e

        if not verified:
            decision = await self.lockout.record_failure(user.id)
            await self.auditor.record(
                user.id, ActivityEvent.verification_failed, False, {**(context or {}), "stage": "disable"}
            )
            if decision.locked:
                await self.auditor.record(user.id, ActivityEvent.account_locked, False, context)
                raise AccountLockedError(decision.remaining_seconds)
            if expired is not None:
                raise expired
            raise InvalidCodeError(attempts_remaining=decision.attempts_remaining)

        await self.lockout.record_success(user.id)

        async with persistence_guard(self.db, "disable second factor"):
            profile.disable()
            await self.vault.delete_all(user.id, commit=False)
            await self.devices.revoke_all(user.id, commit=False)
            await self.db.commit()

        await self.auditor.record(user.id, ActivityEvent.two_factor_disabled, True, context)
        logger.info(f"2FA disabled for user {user.id}")

    @reports_persistence_errors("list backup codes")
    async def list_backup_codes(self, user: User) -> list[BackupCodeStatus]:
        await self._require_enabled(user)
        return await self.vault.list_codes(user.id)

    @reports_persistence_errors("regenerate backup codes")
    async def regenerate_backup_codes(self, user: User, context: dict[str, Any] | None = None) -> list[str]:
        """Invalidate every existing backup code and issue a new batch."""
        await self._require_enabled(user)
        codes = await self.vault.regenerate(user.id)
        await self.auditor.record(user.id, ActivityEvent.backup_codes_regenerated, True, context)
        return codes

    @reports_persistence_errors("list trusted devices")
    async def list_trusted_devices(self, user: User) -> list[TrustedDevice]:
        return await self.devices.list_devices(user.id)

    @reports_persistence_errors("revoke device")
    async def revoke_device(self, user: User, device_fingerprint: str, context: dict[str, Any] | None = None) -> int:
        removed = await self.devices.revoke(user.id, device_fingerprint)
        if removed:
            await self.auditor.record(user.id, ActivityEvent.device_trust_revoked, True, context)
        return removed

    @reports_persistence_errors("revoke all devices")
    async def revoke_all_devices(self, user: User, context: dict[str, Any] | None = None) -> int:
        removed = await self.devices.revoke_all(user.id)
        await self.auditor.record(
            user.id, ActivityEvent.device_trust_revoked, True, {**(context or {}), "count": removed}
        )
        return removed

    @reports_persistence_errors("list activity")
    async def list_recent_activity(self, user: User, limit: int = DEFAULT_ACTIVITY_LIMIT) -> list[ActivityEntry]:
        return await self.auditor.list_recent(user.id, limit)
