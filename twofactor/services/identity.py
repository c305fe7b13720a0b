"""Identity re-authentication collaborator."""

import logging
from typing import Protocol

from twofactor.auth import verify_password
from twofactor.models.user import User

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    async def reauthenticate(self, user: User, password: str) -> bool: ...


class PasswordIdentityProvider:
    """Checks the current password against the stored bcrypt hash."""

    async def reauthenticate(self, user: User, password: str) -> bool:
        if not password:
            return False
        try:
            valid = verify_password(password, user.hashed_password)
        except ValueError as e:
            logger.warning(f"Password hash for user {user.id} could not be checked: {e}")
            return False
        if not valid:
            logger.warning(f"Re-authentication failed for user {user.id}")
        return valid


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency for the identity collaborator."""
    return PasswordIdentityProvider()
