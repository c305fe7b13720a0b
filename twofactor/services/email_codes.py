"""
Email Code Issuer

Creates six-digit codes for the email method and hands them to the
notifier. The code record is committed before delivery is attempted, so a
timed-out or failed send still leaves a record behind and the client can
resend after the cooldown. Only the newest unused code for a purpose is
ever accepted.
"""

import asyncio
import hashlib
import hmac
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.config import settings
from twofactor.database import persistence_guard
from twofactor.exceptions import DeliveryFailedError, ExpiredCodeError, InvalidCodeError, ResendCooldownError
from twofactor.models.email_code import EmailChallengeCode, EmailCodePurpose
from twofactor.services.notifier import Notifier
from twofactor.utils.clock import Clock, system_clock
from twofactor.utils.masking import mask_email

logger = logging.getLogger(__name__)

EMAIL_CODE_LENGTH = 6


@dataclass(frozen=True)
class EmailCodeDelivery:
    masked_email: str
    expires_in: int
    resend_after: int


def _hash_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


class EmailCodeIssuer:
    def __init__(
        self,
        db: AsyncSession,
        notifier: Notifier,
        clock: Clock = system_clock,
        timeout: float | None = None,
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.timeout = settings.notifier_timeout_seconds if timeout is None else timeout
        self.ttl = timedelta(minutes=settings.email_code_ttl_minutes)
        self.resend_interval = timedelta(seconds=settings.email_code_resend_seconds)
        self.max_attempts = settings.email_code_max_attempts

    async def _latest(
        self,
        user_id: int,
        purpose: EmailCodePurpose | None = None,
        email: str | None = None,
        unused_only: bool = False,
    ):
        query = select(EmailChallengeCode).where(EmailChallengeCode.user_id == user_id)
        if purpose is not None:
            query = query.where(EmailChallengeCode.purpose == purpose)
        if email is not None:
            query = query.where(EmailChallengeCode.email == email)
        if unused_only:
            query = query.where(EmailChallengeCode.used.is_(False))
        result = await self.db.execute(
            query.order_by(EmailChallengeCode.created_at.desc(), EmailChallengeCode.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def send(self, user_id: int, email: str, purpose: EmailCodePurpose) -> EmailCodeDelivery:
        """
        Create a new code and deliver it.

        Raises:
            ResendCooldownError: the previous code was sent too recently
            DeliveryFailedError: the notifier failed or timed out; the code record is kept
        """
        now = self.clock.now()
        code = f"{secrets.randbelow(10 ** EMAIL_CODE_LENGTH):0{EMAIL_CODE_LENGTH}d}"

        async with persistence_guard(self.db, "create email code"):
            previous = await self._latest(user_id, purpose=purpose)
            if previous is not None and now - previous.created_at < self.resend_interval:
                wait = self.resend_interval - (now - previous.created_at)
                raise ResendCooldownError(retry_after=max(1, math.ceil(wait.total_seconds())))

            self.db.add(
                EmailChallengeCode(
                    user_id=user_id,
                    code_hash=_hash_code(code),
                    email=email,
                    purpose=purpose,
                    used=False,
                    attempts=0,
                    created_at=now,
                    expires_at=now + self.ttl,
                )
            )
            await self.db.commit()

        masked = mask_email(email)
        try:
            delivered = await asyncio.wait_for(self.notifier.send_code(email, code), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Timed out delivering {purpose.value} code to {masked} for user {user_id}")
            raise DeliveryFailedError("Timed out sending the verification code. You can request a new one.") from e
        except Exception as e:
            logger.error(f"Notifier error delivering code to {masked} for user {user_id}: {e}")
            raise DeliveryFailedError() from e

        if not delivered:
            logger.warning(f"Notifier could not deliver {purpose.value} code to {masked} for user {user_id}")
            raise DeliveryFailedError()

        logger.info(f"Email {purpose.value} code sent for user {user_id}")
        return EmailCodeDelivery(
            masked_email=masked,
            expires_in=int(self.ttl.total_seconds()),
            resend_after=int(self.resend_interval.total_seconds()),
        )

    async def verify(self, user_id: int, submitted_code: str, purpose: EmailCodePurpose, email: str) -> bool:
        """
        Check a submitted code against the newest unused code for the purpose
        that was sent to `email`. Codes sent to any other address never match.

        Returns True on success; raises InvalidCodeError or ExpiredCodeError otherwise.
        """
        code = "".join(str(submitted_code).split())
        now = self.clock.now()

        async with persistence_guard(self.db, "verify email code"):
            record = await self._latest(user_id, purpose=purpose, email=email, unused_only=True)
            if record is None:
                raise InvalidCodeError("No active verification code. Request a new one.")
            if record.expires_at <= now:
                raise ExpiredCodeError()
            if record.attempts >= self.max_attempts:
                raise InvalidCodeError("Too many attempts for this code. Request a new one.")

            if not hmac.compare_digest(_hash_code(code), record.code_hash):
                await self.db.execute(
                    update(EmailChallengeCode)
                    .where(EmailChallengeCode.id == record.id)
                    .values(attempts=EmailChallengeCode.attempts + 1)
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
                raise InvalidCodeError()

            result = await self.db.execute(
                update(EmailChallengeCode)
                .where(EmailChallengeCode.id == record.id, EmailChallengeCode.used.is_(False))
                .values(used=True)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

        if result.rowcount != 1:
            # A concurrent request used it first
            raise InvalidCodeError()

        logger.info(f"Email {purpose.value} code verified for user {user_id}")
        return True
