"""
Enrollment Orchestrator

Turns 2FA on for a user in steps:

    awaiting_password_confirm -> choosing_method -> [email_pending]
        -> awaiting_first_code -> backup_codes_issued

Nothing is written to the user's SecondFactorProfile until a first code has
been verified against the pending secret or email address, so an abandoned
flow leaves 2FA disabled. A failed step keeps the flow at that step. The
flow itself is only stored once the password has been confirmed.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.config import settings
from twofactor.database import persistence_guard
from twofactor.exceptions import (
    AlreadyEnabledError,
    ChallengeNotFoundError,
    DeliveryFailedError,
    ExpiredCodeError,
    InvalidCodeError,
    InvalidCredentialError,
    InvalidInputError,
    InvalidStateError,
)
from twofactor.models.activity import ActivityEvent
from twofactor.models.email_code import EmailCodePurpose
from twofactor.models.second_factor import AuthenticatorFactor, EmailFactor, SecondFactorProfile, TwoFactorMethod
from twofactor.models.user import User
from twofactor.services.activity_auditor import ActivityAuditor, reports_persistence_errors
from twofactor.services.backup_code_vault import BackupCodeVault
from twofactor.services.code_verifier import CodeVerifier
from twofactor.services.email_codes import EmailCodeDelivery, EmailCodeIssuer
from twofactor.services.flow_store import FlowStore
from twofactor.services.identity import IdentityProvider
from twofactor.services.notifier import Notifier
from twofactor.services.profiles import get_profile
from twofactor.services.secret_provisioner import ProvisionedSecret, SecretProvisioner
from twofactor.utils.clock import Clock, system_clock
from twofactor.utils.masking import mask_email

logger = logging.getLogger(__name__)


class EnrollmentState(str, enum.Enum):
    awaiting_password_confirm = "awaiting_password_confirm"
    choosing_method = "choosing_method"
    email_pending = "email_pending"
    awaiting_first_code = "awaiting_first_code"
    backup_codes_issued = "backup_codes_issued"


@dataclass
class EnrollmentFlow:
    user_id: int
    state: EnrollmentState = EnrollmentState.awaiting_password_confirm
    method: TwoFactorMethod | None = None
    pending_secret: ProvisionedSecret | None = None
    pending_email: str | None = None
    backup_codes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class MethodSelection:
    method: TwoFactorMethod
    secret: str | None = None
    manual_key: str | None = None
    provisioning_uri: str | None = None
    qr_code: str | None = None
    suggested_email: str | None = None


@dataclass(frozen=True)
class EnrollmentResult:
    enabled: bool
    method: TwoFactorMethod
    enabled_at: datetime
    backup_codes_remaining: int


# Enrollment flows keyed by user id (production would use Redis)
enrollment_flows: FlowStore[EnrollmentFlow] = FlowStore(ttl=timedelta(minutes=settings.enrollment_flow_ttl_minutes))


class EnrollmentOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        notifier: Notifier,
        auditor: ActivityAuditor | None = None,
        clock: Clock = system_clock,
        flows: FlowStore[EnrollmentFlow] | None = None,
        provisioner: SecretProvisioner | None = None,
    ):
        self.db = db
        self.identity = identity
        self.auditor = auditor or ActivityAuditor(clock=clock)
        self.clock = clock
        self.flows = flows if flows is not None else enrollment_flows
        self.provisioner = provisioner or SecretProvisioner()
        self.verifier = CodeVerifier()
        self.vault = BackupCodeVault(db, clock=clock)
        self.email_codes = EmailCodeIssuer(db, notifier, clock=clock)

    def current_flow(self, user: User) -> EnrollmentFlow:
        flow = self.flows.get(user.id)
        if flow is None:
            raise ChallengeNotFoundError("No enrollment in progress. Start again.")
        return flow

    @staticmethod
    def _require(flow: EnrollmentFlow, operation: str, *states: EnrollmentState) -> None:
        if flow.state not in states:
            raise InvalidStateError(flow.state.value, operation)

    async def _ensure_not_enabled(self, user_id: int) -> None:
        profile = await get_profile(self.db, user_id)
        if profile is not None and profile.enabled:
            raise AlreadyEnabledError()

    @reports_persistence_errors("start enrollment")
    async def start_enrollment(self, user: User, password: str, context: dict[str, Any] | None = None) -> EnrollmentFlow:
        """
        Confirm the current password and open a new enrollment flow.

        Any earlier unfinished flow for the user is replaced once the password
        checks out; a wrong password leaves it as it was.
        """
        await self._ensure_not_enabled(user.id)

        if not await self.identity.reauthenticate(user, password):
            raise InvalidCredentialError()

        flow = self.flows.put(user.id, EnrollmentFlow(user_id=user.id, state=EnrollmentState.choosing_method))
        await self.auditor.record(user.id, ActivityEvent.enrollment_started, True, context)
        logger.info(f"2FA enrollment started for user {user.id}")
        return flow

    async def choose_method(self, user: User, method: TwoFactorMethod) -> MethodSelection:
        """
        Pick authenticator or email.

        The authenticator path provisions a secret right away and waits for the
        first code; the email path waits for the destination address. Choosing
        again discards whatever the previous choice had pending.
        """
        flow = self.current_flow(user)
        self._require(
            flow,
            "choose a method",
            EnrollmentState.choosing_method,
            EnrollmentState.email_pending,
            EnrollmentState.awaiting_first_code,
        )

        flow.method = TwoFactorMethod(method)
        flow.pending_secret = None
        flow.pending_email = None

        if flow.method == TwoFactorMethod.authenticator:
            provisioned = self.provisioner.generate_secret(user.id, user.email)
            flow.pending_secret = provisioned
            flow.state = EnrollmentState.awaiting_first_code
            logger.info(f"Authenticator secret provisioned for user {user.id}")
            return MethodSelection(
                method=flow.method,
                secret=provisioned.secret,
                manual_key=provisioned.manual_key,
                provisioning_uri=provisioned.provisioning_uri,
                qr_code=self.provisioner.render_provisioning_data_url(provisioned.provisioning_uri),
            )

        flow.state = EnrollmentState.email_pending
        return MethodSelection(method=flow.method, suggested_email=user.email)

    @reports_persistence_errors("submit enrollment email")
    async def submit_email_address(self, user: User, email: str) -> EmailCodeDelivery:
        """Record the address for the email method and send it a code."""
        flow = self.current_flow(user)
        self._require(
            flow, "submit an email address", EnrollmentState.email_pending, EnrollmentState.awaiting_first_code
        )
        if flow.method != TwoFactorMethod.email:
            raise InvalidStateError(flow.state.value, "submit an email address for the authenticator method")

        email = (email or "").strip()
        if "@" not in email:
            raise InvalidInputError("Please enter a valid email address", field="email")

        # The address only changes once a code for it exists
        try:
            delivery = await self._send_email_code(user, email)
        except DeliveryFailedError:
            # The code record exists and may still arrive; let the user enter it or resend
            flow.pending_email = email
            flow.state = EnrollmentState.awaiting_first_code
            raise
        flow.pending_email = email
        flow.state = EnrollmentState.awaiting_first_code
        return delivery

    @reports_persistence_errors("resend enrollment code")
    async def resend_email_code(self, user: User) -> EmailCodeDelivery:
        flow = self.current_flow(user)
        self._require(flow, "resend a code", EnrollmentState.awaiting_first_code)
        if flow.method != TwoFactorMethod.email:
            raise InvalidStateError(flow.state.value, "resend a code for the authenticator method")
        return await self._send_email_code(user, flow.pending_email)

    async def _send_email_code(self, user: User, email: str) -> EmailCodeDelivery:
        try:
            delivery = await self.email_codes.send(user.id, email, EmailCodePurpose.enrollment)
        except DeliveryFailedError:
            await self.auditor.record(user.id, ActivityEvent.code_delivery_failed, False, {"stage": "enrollment"})
            raise
        await self.auditor.record(user.id, ActivityEvent.code_sent, True, {"stage": "enrollment"})
        return delivery

    async def _verify_first_code(self, user: User, flow: EnrollmentFlow, code: str) -> bool:
        if flow.method == TwoFactorMethod.authenticator:
            return self.verifier.verify(flow.pending_secret.secret, code, self.clock.now())
        try:
            return await self.email_codes.verify(user.id, code, EmailCodePurpose.enrollment, flow.pending_email)
        except ExpiredCodeError:
            raise
        except InvalidCodeError:
            return False

    @reports_persistence_errors("confirm first code")
    async def confirm_first_code(self, user: User, code: str, context: dict[str, Any] | None = None) -> list[str]:
        """
        Prove possession of the new factor and commit it.

        On success the profile is enabled and a fresh batch of backup codes is
        issued in the same transaction. Returns the plaintext backup codes.
        """
        flow = self.current_flow(user)
        self._require(flow, "confirm a code", EnrollmentState.awaiting_first_code)

        if not await self._verify_first_code(user, flow, code):
            await self.auditor.record(
                user.id, ActivityEvent.verification_failed, False, {**(context or {}), "stage": "enrollment"}
            )
            raise InvalidCodeError("Invalid code. Please try again.")

        if flow.method == TwoFactorMethod.authenticator:
            factor = AuthenticatorFactor(secret=flow.pending_secret.secret)
        else:
            factor = EmailFactor(address=flow.pending_email)

        now = self.clock.now()
        profile = await get_profile(self.db, user.id)
        if profile is not None and profile.enabled:
            self.flows.pop(user.id)
            raise AlreadyEnabledError()

        async with persistence_guard(self.db, "enable second factor"):
            if profile is None:
                profile = SecondFactorProfile(user_id=user.id, created_at=now)
                self.db.add(profile)
            profile.enable(factor, now)
            await self.vault.delete_all(user.id, commit=False)
            codes = await self.vault.issue(user.id, commit=False)
            await self.db.commit()

        flow.backup_codes = codes
        flow.pending_secret = None
        flow.state = EnrollmentState.backup_codes_issued

        await self.auditor.record(
            user.id, ActivityEvent.enrollment_completed, True, {**(context or {}), "method": factor.method.value}
        )
        logger.info(f"2FA enabled for user {user.id} with {factor.method.value}")
        return codes

    @reports_persistence_errors("complete enrollment")
    async def complete_enrollment(self, user: User) -> EnrollmentResult:
        """Acknowledge that the backup codes were saved and close the flow."""
        flow = self.current_flow(user)
        self._require(flow, "complete enrollment", EnrollmentState.backup_codes_issued)

        profile = await get_profile(self.db, user.id)
        remaining = await self.vault.remaining(user.id)
        self.flows.pop(user.id)

        return EnrollmentResult(
            enabled=profile.enabled,
            method=profile.method,
            enabled_at=profile.enabled_at,
            backup_codes_remaining=remaining,
        )

    def describe(self, flow: EnrollmentFlow) -> dict[str, Any]:
        return {
            "state": flow.state.value,
            "method": flow.method.value if flow.method else None,
            "email": mask_email(flow.pending_email) if flow.pending_email else None,
        }
