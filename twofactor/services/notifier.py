"""Code delivery collaborators."""

import asyncio
import logging
from typing import Protocol

from twofactor.config import settings
from twofactor.services.email_service import EmailService
from twofactor.utils.masking import mask_email

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_code(self, destination: str, code: str) -> bool:
        """Deliver a one-time code. Returns False when delivery failed."""
        ...


class EmailNotifier:
    """Sends codes over SMTP without blocking the event loop."""

    def __init__(self, email_service: EmailService | None = None):
        self.email_service = email_service or EmailService()

    async def send_code(self, destination: str, code: str) -> bool:
        delivered = await asyncio.to_thread(self.email_service.send_verification_code, destination, code)
        if delivered:
            logger.info(f"Verification code emailed to {mask_email(destination)}")
        return delivered


class LoggingNotifier:
    """Development notifier: writes the code to the log instead of sending it."""

    async def send_code(self, destination: str, code: str) -> bool:
        logger.warning(f"[dev notifier] code for {mask_email(destination)}: {code}")
        return True


def get_notifier() -> Notifier:
    """FastAPI dependency for the code notifier."""
    if settings.notifier_backend == "log":
        return LoggingNotifier()
    return EmailNotifier()
