"""
Login Challenge Routes

Called by the login flow after the password step. A challenge that comes
back with `required: false` means the device is trusted and no code is
needed.
"""

from fastapi import APIRouter, Depends, Request

from twofactor.auth import get_current_user
from twofactor.models.user import User
from twofactor.routes.deps import get_challenge_orchestrator
from twofactor.schemas.two_factor import (
    BackupCodeRequest,
    ChallengeCodeRequest,
    ChallengeRequest,
    ChallengeResponse,
    ChallengeResultResponse,
    CodeDeliveryResponse,
)
from twofactor.services.device_trust import ClientSignals, DeviceMetadata, fingerprint
from twofactor.services.login_challenge import LoginChallenge, LoginChallengeOrchestrator
from twofactor.utils.request_context import request_context

router = APIRouter(prefix="/challenge", tags=["Two-Factor Login"])


def _device_metadata(request: Request, device_name: str | None) -> DeviceMetadata:
    context = request_context(request)
    return DeviceMetadata(
        device_name=device_name or "Unknown Device",
        browser=context["user_agent"],
        ip_address=context["ip_address"] or "Unknown",
    )


def _result(challenge: LoginChallenge) -> ChallengeResultResponse:
    return ChallengeResultResponse(
        verified=challenge.passed,
        state=challenge.state.value,
        used_backup_code=challenge.used_backup_code,
        device_trusted=challenge.device_trusted,
    )


@router.post("", response_model=ChallengeResponse)
async def begin_challenge(
    data: ChallengeRequest,
    request: Request,
    orchestrator: LoginChallengeOrchestrator = Depends(get_challenge_orchestrator),
    current_user: User = Depends(get_current_user),
) -> ChallengeResponse:
    """
    Open a second-factor challenge for this login.

    For the email method a code is sent right away.
    """
    device_fingerprint = fingerprint(ClientSignals(**data.client.model_dump()))
    challenge = await orchestrator.begin_challenge(current_user, device_fingerprint, request_context(request))
    return ChallengeResponse(
        challenge_id=None if challenge.passed else challenge.id,
        state=challenge.state.value,
        method=challenge.method,
        required=not challenge.passed,
        device_trusted=challenge.device_trusted,
        destination=challenge.masked_destination,
    )


@router.post("/{challenge_id}/resend", response_model=CodeDeliveryResponse)
async def resend_code(
    challenge_id: str,
    request: Request,
    orchestrator: LoginChallengeOrchestrator = Depends(get_challenge_orchestrator),
    current_user: User = Depends(get_current_user),
) -> CodeDeliveryResponse:
    delivery = await orchestrator.resend_code(current_user, challenge_id, request_context(request))
    return CodeDeliveryResponse(
        email=delivery.masked_email,
        expires_in=delivery.expires_in,
        resend_after=delivery.resend_after,
        message=f"Verification code sent to {delivery.masked_email}",
    )


@router.post("/{challenge_id}/code", response_model=ChallengeResultResponse)
async def submit_code(
    challenge_id: str,
    data: ChallengeCodeRequest,
    request: Request,
    orchestrator: LoginChallengeOrchestrator = Depends(get_challenge_orchestrator),
    current_user: User = Depends(get_current_user),
) -> ChallengeResultResponse:
    challenge = await orchestrator.submit_code(
        current_user,
        challenge_id,
        data.code,
        remember_device=data.remember_device,
        device=_device_metadata(request, data.device_name),
        context=request_context(request),
    )
    return _result(challenge)


@router.post("/{challenge_id}/backup-code", response_model=ChallengeResultResponse)
async def submit_backup_code(
    challenge_id: str,
    data: BackupCodeRequest,
    request: Request,
    orchestrator: LoginChallengeOrchestrator = Depends(get_challenge_orchestrator),
    current_user: User = Depends(get_current_user),
) -> ChallengeResultResponse:
    """Use a one-time backup code when the authenticator or inbox is unavailable."""
    challenge = await orchestrator.submit_backup_code(
        current_user,
        challenge_id,
        data.code,
        remember_device=data.remember_device,
        device=_device_metadata(request, data.device_name),
        context=request_context(request),
    )
    return _result(challenge)
