"""TOTP code checks with a one-step drift window on each side."""

from datetime import datetime, timezone

import pyotp

from twofactor.services.secret_provisioner import TOTP_DIGITS, TOTP_PERIOD

# Accept the previous, current and next 30 second step
DRIFT_WINDOW = 1


def normalize_totp_code(submitted_code: str) -> str | None:
    """Strip whitespace and left-pad to six digits; None if it cannot be a code."""
    code = "".join(str(submitted_code).split())
    if not code.isdigit() or len(code) > TOTP_DIGITS:
        return None
    return code.zfill(TOTP_DIGITS)


class CodeVerifier:
    """
    Stateless TOTP verifier.

    Never touches the attempt ledger; callers record the outcome.
    """

    def __init__(self, window: int = DRIFT_WINDOW):
        self.window = window

    @staticmethod
    def _totp(secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD)

    @staticmethod
    def _aware(at_time: datetime) -> datetime:
        # pyotp treats naive datetimes as local time
        if at_time.tzinfo is None:
            return at_time.replace(tzinfo=timezone.utc)
        return at_time

    def expected_code(self, secret: str, at_time: datetime) -> str:
        return self._totp(secret).at(self._aware(at_time))

    def verify(self, secret: str, submitted_code: str, at_time: datetime) -> bool:
        code = normalize_totp_code(submitted_code)
        if code is None or not secret:
            return False
        # pyotp compares each candidate in constant time
        return self._totp(secret).verify(code, for_time=self._aware(at_time), valid_window=self.window)
