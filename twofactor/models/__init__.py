from .activity import ActivityEvent, ActivityRecord
from .attempt_ledger import AttemptLedger
from .backup_code import BackupCode
from .email_code import EmailChallengeCode, EmailCodePurpose
from .second_factor import AuthenticatorFactor, EmailFactor, SecondFactorProfile, TwoFactorMethod
from .trusted_device import TrustedDevice
from .user import User

__all__ = [
    "ActivityEvent",
    "ActivityRecord",
    "AttemptLedger",
    "AuthenticatorFactor",
    "BackupCode",
    "EmailChallengeCode",
    "EmailCodePurpose",
    "EmailFactor",
    "SecondFactorProfile",
    "TrustedDevice",
    "TwoFactorMethod",
    "User",
]
