"""
Two-Factor Management Routes

Status, disable, backup codes, trusted devices and recent activity for the
authenticated user.
"""

from fastapi import APIRouter, Depends, Query, Request

from twofactor.auth import get_current_user
from twofactor.models.user import User
from twofactor.routes.deps import get_management_service
from twofactor.schemas.two_factor import (
    ActivityEntryResponse,
    BackupCodesIssuedResponse,
    BackupCodeStatusResponse,
    CodeDeliveryResponse,
    DisableRequest,
    MessageResponse,
    TrustedDeviceResponse,
    TwoFactorStatusResponse,
)
from twofactor.services.activity_auditor import DEFAULT_ACTIVITY_LIMIT, MAX_ACTIVITY_LIMIT
from twofactor.services.management import TwoFactorManagementService
from twofactor.utils.request_context import request_context

router = APIRouter(tags=["Two-Factor Management"])


# ============== Status & Disable ==============


@router.get("/status", response_model=TwoFactorStatusResponse)
async def get_status(
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> TwoFactorStatusResponse:
    status_data = await service.status(current_user)
    return TwoFactorStatusResponse(
        enabled=status_data.enabled,
        method=status_data.method,
        email=status_data.email,
        enabled_at=status_data.enabled_at,
        last_used_at=status_data.last_used_at,
        backup_codes_remaining=status_data.backup_codes_remaining,
        trusted_devices=status_data.trusted_devices,
    )


@router.post("/disable/send-code", response_model=CodeDeliveryResponse)
async def send_disable_code(
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> CodeDeliveryResponse:
    """Email a confirmation code (email method only) before disabling."""
    delivery = await service.send_management_code(current_user)
    return CodeDeliveryResponse(
        email=delivery.masked_email,
        expires_in=delivery.expires_in,
        resend_after=delivery.resend_after,
        message=f"Verification code sent to {delivery.masked_email}",
    )


@router.post("/disable", response_model=MessageResponse)
async def disable_2fa(
    data: DisableRequest,
    request: Request,
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """
    Disable 2FA for the current user.

    Requires the account password and a current code. Backup codes and
    trusted devices are removed as well.
    """
    await service.disable(current_user, data.password, data.code, request_context(request))
    return MessageResponse(message="2FA has been disabled")


# ============== Backup Codes ==============


@router.get("/backup-codes", response_model=list[BackupCodeStatusResponse])
async def list_backup_codes(
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> list[BackupCodeStatusResponse]:
    """List backup codes by hint and usage. Plaintext codes are never returned here."""
    codes = await service.list_backup_codes(current_user)
    return [BackupCodeStatusResponse.model_validate(code) for code in codes]


@router.post("/backup-codes/regenerate", response_model=BackupCodesIssuedResponse)
async def regenerate_backup_codes(
    request: Request,
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> BackupCodesIssuedResponse:
    """Invalidate all existing backup codes and issue a new set."""
    codes = await service.regenerate_backup_codes(current_user, request_context(request))
    return BackupCodesIssuedResponse(
        backup_codes=codes,
        message="New backup codes generated. Save them securely - they won't be shown again!",
    )


# ============== Trusted Devices ==============


@router.get("/devices", response_model=list[TrustedDeviceResponse])
async def list_trusted_devices(
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> list[TrustedDeviceResponse]:
    devices = await service.list_trusted_devices(current_user)
    return [TrustedDeviceResponse.model_validate(device) for device in devices]


@router.delete("/devices/{device_fingerprint}", response_model=MessageResponse)
async def revoke_device(
    device_fingerprint: str,
    request: Request,
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    removed = await service.revoke_device(current_user, device_fingerprint, request_context(request))
    if not removed:
        return MessageResponse(success=False, message="Device was not trusted")
    return MessageResponse(message="Device trust revoked")


@router.delete("/devices", response_model=MessageResponse)
async def revoke_all_devices(
    request: Request,
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    removed = await service.revoke_all_devices(current_user, request_context(request))
    return MessageResponse(message=f"Revoked trust for {removed} device(s)")


# ============== Activity ==============


@router.get("/activity", response_model=list[ActivityEntryResponse])
async def list_activity(
    limit: int = Query(DEFAULT_ACTIVITY_LIMIT, ge=1, le=MAX_ACTIVITY_LIMIT),
    service: TwoFactorManagementService = Depends(get_management_service),
    current_user: User = Depends(get_current_user),
) -> list[ActivityEntryResponse]:
    entries = await service.list_recent_activity(current_user, limit)
    return [ActivityEntryResponse.model_validate(entry) for entry in entries]
