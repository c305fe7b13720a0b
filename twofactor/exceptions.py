"""
Exception classes for the second-factor subsystem

Every public service operation either returns its result or raises one of
these. The HTTP layer converts them into the standard error envelope in
twofactor.exception_handlers.
"""

from typing import Any

from fastapi import status


class TwoFactorError(Exception):
    """Base exception class for all second-factor errors"""

    error_code = "TWO_FACTOR_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Credential & Code Exceptions
# ============================================================================


class InvalidCredentialError(TwoFactorError):
    """Raised when the account password is wrong during re-authentication or disable"""

    error_code = "INVALID_CREDENTIAL"

    def __init__(self, message: str = "Incorrect password"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED)


class InvalidCodeError(TwoFactorError):
    """Raised when a TOTP, email or backup code does not match"""

    error_code = "INVALID_CODE"

    def __init__(
        self,
        message: str = "Invalid verification code",
        attempts: int | None = None,
        attempts_remaining: int | None = None,
    ):
        details = {}
        if attempts is not None:
            details["attempts"] = attempts
        if attempts_remaining is not None:
            details["attempts_remaining"] = attempts_remaining
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class ExpiredCodeError(TwoFactorError):
    """Raised when an email code is past its lifetime"""

    error_code = "EXPIRED_CODE"

    def __init__(self, message: str = "Verification code has expired. Request a new one."):
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST)


class AccountLockedError(TwoFactorError):
    """Raised when verification is refused because of repeated failures"""

    error_code = "ACCOUNT_LOCKED"

    def __init__(self, remaining_seconds: int):
        minutes = max(1, -(-remaining_seconds // 60))
        super().__init__(
            message=f"Too many failed attempts. Please try again in {minutes} minute(s).",
            status_code=status.HTTP_423_LOCKED,
            details={"remaining_seconds": remaining_seconds},
        )
        self.remaining_seconds = remaining_seconds


# ============================================================================
# Delivery Exceptions
# ============================================================================


class DeliveryFailedError(TwoFactorError):
    """Raised when the notifier could not deliver a code"""

    error_code = "DELIVERY_FAILED"

    def __init__(self, message: str = "Could not deliver the verification code"):
        super().__init__(message=message, status_code=status.HTTP_502_BAD_GATEWAY)


class ResendCooldownError(TwoFactorError):
    """Raised when a new email code is requested too soon after the previous one"""

    error_code = "RESEND_COOLDOWN"

    def __init__(self, retry_after: int):
        super().__init__(
            message=f"Please wait {retry_after} second(s) before requesting another code",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


# ============================================================================
# State Exceptions
# ============================================================================


class AlreadyEnabledError(TwoFactorError):
    """Raised when enrolling a user who already has 2FA enabled"""

    error_code = "ALREADY_ENABLED"

    def __init__(self, message: str = "2FA is already enabled. Disable it first to reconfigure."):
        super().__init__(message=message, status_code=status.HTTP_409_CONFLICT)


class NotEnabledError(TwoFactorError):
    """Raised when an operation requires 2FA to be enabled"""

    error_code = "NOT_ENABLED"

    def __init__(self, message: str = "2FA is not enabled."):
        super().__init__(message=message, status_code=status.HTTP_409_CONFLICT)


class InvalidStateError(TwoFactorError):
    """Raised when a flow operation is called out of order"""

    error_code = "INVALID_STATE"

    def __init__(self, current_state: str, operation: str):
        super().__init__(
            message=f"Cannot {operation} while in state '{current_state}'",
            status_code=status.HTTP_409_CONFLICT,
            details={"current_state": current_state, "operation": operation},
        )


class ChallengeNotFoundError(TwoFactorError):
    """Raised when a flow id is unknown or has expired"""

    error_code = "FLOW_NOT_FOUND"

    def __init__(self, message: str = "Verification session not found or expired. Start again."):
        super().__init__(message=message, status_code=status.HTTP_404_NOT_FOUND)


# ============================================================================
# Storage Exceptions
# ============================================================================


class PersistenceUnavailableError(TwoFactorError):
    """Raised when the storage layer fails; never retried by this subsystem"""

    error_code = "PERSISTENCE_UNAVAILABLE"

    def __init__(self, message: str = "Storage is temporarily unavailable", operation: str | None = None):
        details = {"operation": operation} if operation else {}
        super().__init__(message=message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class InvalidInputError(TwoFactorError):
    """Raised when a request value is malformed"""

    error_code = "INVALID_INPUT"

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=details)
