"""
Enrollment Routes

Step-by-step wizard that turns 2FA on. The flow lives server-side and is
keyed by the authenticated user, so each step only sends its own input.
"""

from fastapi import APIRouter, Depends, Request

from twofactor.auth import get_current_user
from twofactor.models.user import User
from twofactor.routes.deps import get_enrollment_orchestrator
from twofactor.schemas.two_factor import (
    BackupCodesIssuedResponse,
    CodeDeliveryResponse,
    CodeRequest,
    EmailAddressRequest,
    EnrollmentCompleteResponse,
    EnrollmentStateResponse,
    MethodChoiceRequest,
    MethodSelectionResponse,
    PasswordConfirmRequest,
)
from twofactor.services.email_codes import EmailCodeDelivery
from twofactor.services.enrollment import EnrollmentOrchestrator
from twofactor.utils.request_context import request_context

router = APIRouter(prefix="/enrollment", tags=["Two-Factor Enrollment"])


def _delivery_response(delivery: EmailCodeDelivery) -> CodeDeliveryResponse:
    return CodeDeliveryResponse(
        email=delivery.masked_email,
        expires_in=delivery.expires_in,
        resend_after=delivery.resend_after,
        message=f"Verification code sent to {delivery.masked_email}",
    )


@router.post("/start", response_model=EnrollmentStateResponse)
async def start_enrollment(
    data: PasswordConfirmRequest,
    request: Request,
    orchestrator: EnrollmentOrchestrator = Depends(get_enrollment_orchestrator),
    current_user: User = Depends(get_current_user),
) -> EnrollmentStateResponse:
    """Confirm the current password and begin 2FA setup."""
    flow = await orchestrator.start_enrollment(current_user, data.password, request_context(request))
    return EnrollmentStateResponse(**orchestrator.describe(flow), message="Choose a verification method")


@router.post("/method", response_model=MethodSelectionResponse)
async def choose_method(
    data: MethodChoiceRequest,
    orchestrator: EnrollmentOrchestrator = Depends(get_enrollment_orchestrator),
    current_user: User = Depends(get_current_user),
) -> MethodSelectionResponse:
    """
    Pick the second factor.

    For the authenticator method the response carries the secret, the
    otpauth:// URI and a QR code image to scan.
    """
    selection = await orchestrator.choose_method(current_user, data.method)
    flow = orchestrator.current_flow(current_user)
    return MethodSelectionResponse(
        state=flow.state.value,
        method=selection.method,
        secret=selection.secret,
        manual_key=selection.manual_key,
        provisioning_uri=selection.provisioning_uri,
        qr_code=selection.qr_code,
        suggested_email=selection.suggested_email,
    )


@router.post("/email", response_model=CodeDeliveryResponse)
async def submit_email(
    data: EmailAddressRequest,
    orchestrator: EnrollmentOrchestrator = Depends(get_enrollment_orchestrator),
    current_user: User = Depends(get_current_user),
) -> CodeDeliveryResponse:
    delivery = await orchestrator.submit_email_address(current_user, str(data.email))
    return _delivery_response(delivery)


@router.post("/email/resend", response_model=CodeDeliveryResponse)
async def resend_email_code(
    orchestrator: EnrollmentOrchestrator = Depends(get_enrollment_orchestrator),
    current_user: User = Depends(get_current_user),
) -> CodeDeliveryResponse:
    delivery = await orchestrator.resend_email_code(current_user)
    return _delivery_response(delivery)


@router.post("/confirm", response_model=BackupCodesIssuedResponse)
async def confirm_first_code(
    data: CodeRequest,
    request: Request,
    orchestrator: EnrollmentOrchestrator = Depends(get_enrollment_orchestrator),
    current_user: User = Depends(get_current_user),
) -> BackupCodesIssuedResponse:
    """
    Verify the first code and enable 2FA.

    IMPORTANT: Backup codes are only shown once - save them securely!
    """
    codes = await orchestrator.confirm_first_code(current_user, data.code, request_context(request))
    return BackupCodesIssuedResponse(
        backup_codes=codes,
        message="2FA enabled. Save these backup codes - they won't be shown again!",
    )


@router.post("/complete", response_model=EnrollmentCompleteResponse)
async def complete_enrollment(
    orchestrator: EnrollmentOrchestrator = Depends(get_enrollment_orchestrator),
    current_user: User = Depends(get_current_user),
) -> EnrollmentCompleteResponse:
    result = await orchestrator.complete_enrollment(current_user)
    return EnrollmentCompleteResponse(
        enabled=result.enabled,
        method=result.method,
        enabled_at=result.enabled_at,
        backup_codes_remaining=result.backup_codes_remaining,
    )
