from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from twofactor.models.second_factor import TwoFactorMethod


# ============== Requests ==============


class PasswordConfirmRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)


class MethodChoiceRequest(BaseModel):
    method: TwoFactorMethod


class EmailAddressRequest(BaseModel):
    email: EmailStr


class CodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=10, pattern=r"^[0-9 ]+$")


class ClientSignalsRequest(BaseModel):
    """Browser-reported values the device fingerprint is derived from."""

    user_agent: str = Field(..., max_length=512)
    language: str = Field("", max_length=64)
    screen: str = Field("", max_length=32)
    timezone_offset: int = 0
    canvas_hash: str = Field("", max_length=128)


class ChallengeRequest(BaseModel):
    client: ClientSignalsRequest


class ChallengeCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=10)
    remember_device: bool = False
    device_name: Optional[str] = Field(None, max_length=255)


class BackupCodeRequest(BaseModel):
    code: str = Field(..., min_length=16, max_length=24, pattern=r"^[0-9A-Za-z\- ]+$")
    remember_device: bool = False
    device_name: Optional[str] = Field(None, max_length=255)


class DisableRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)
    code: str = Field(..., min_length=6, max_length=10)


# ============== Responses ==============


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    method: Optional[TwoFactorMethod] = None
    email: Optional[str] = None
    enabled_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    backup_codes_remaining: int = 0
    trusted_devices: int = 0


class EnrollmentStateResponse(BaseModel):
    state: str
    method: Optional[TwoFactorMethod] = None
    email: Optional[str] = None
    message: str


class MethodSelectionResponse(BaseModel):
    state: str
    method: TwoFactorMethod
    secret: Optional[str] = None
    manual_key: Optional[str] = None
    provisioning_uri: Optional[str] = None
    qr_code: Optional[str] = None  # data:image/png;base64,...
    suggested_email: Optional[str] = None


class CodeDeliveryResponse(BaseModel):
    email: str
    expires_in: int
    resend_after: int
    message: str


class BackupCodesIssuedResponse(BaseModel):
    backup_codes: list[str]
    message: str


class EnrollmentCompleteResponse(BaseModel):
    enabled: bool
    method: TwoFactorMethod
    enabled_at: datetime
    backup_codes_remaining: int


class ChallengeResponse(BaseModel):
    challenge_id: Optional[str] = None
    state: str
    method: TwoFactorMethod
    required: bool
    device_trusted: bool = False
    destination: Optional[str] = None


class ChallengeResultResponse(BaseModel):
    verified: bool
    state: str
    used_backup_code: bool = False
    device_trusted: bool = False


class BackupCodeStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    hint: str
    used: bool
    used_at: Optional[datetime] = None
    created_at: datetime


class TrustedDeviceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    fingerprint: str
    device_name: Optional[str] = None
    browser: Optional[str] = None
    ip_address: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime


class ActivityEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    success: bool
    created_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    location: Optional[str] = None
    details: dict[str, Any] = {}


class MessageResponse(BaseModel):
    success: bool = True
    message: str
