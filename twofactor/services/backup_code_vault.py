"""
Backup Code Vault

Issues single-use recovery codes, stores only their hashes, and consumes
them with a conditional update so a code can succeed at most once even when
the same code is submitted concurrently.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.config import settings
from twofactor.database import persistence_guard
from twofactor.models.backup_code import BackupCode
from twofactor.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

# Excludes 0/O and 1/I
BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
BACKUP_CODE_GROUPS = 4
BACKUP_CODE_GROUP_SIZE = 4
HINT_LENGTH = 4


@dataclass(frozen=True)
class BackupCodeStatus:
    id: int
    hint: str
    used: bool
    used_at: datetime | None
    created_at: datetime


def normalize_backup_code(code: str) -> str:
    """Case-fold and strip separators so display and lookup agree."""
    return "".join(ch for ch in str(code).upper() if ch not in "- \t")


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(normalize_backup_code(code).encode()).hexdigest()


def generate_backup_code() -> str:
    """One code in XXXX-XXXX-XXXX-XXXX form."""
    groups = [
        "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_GROUP_SIZE))
        for _ in range(BACKUP_CODE_GROUPS)
    ]
    return "-".join(groups)


class BackupCodeVault:
    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    async def issue(self, user_id: int, count: int | None = None, commit: bool = True) -> list[str]:
        """
        Generate and store a batch of unused codes.

        The plaintext codes are returned once and cannot be recovered later.
        """
        if count is None:
            count = settings.backup_code_count
        codes: list[str] = []
        seen: set[str] = set()
        while len(codes) < count:
            code = generate_backup_code()
            hashed = hash_backup_code(code)
            if hashed in seen:
                continue
            seen.add(hashed)
            codes.append(code)

        now = self.clock.now()
        async with persistence_guard(self.db, "issue backup codes"):
            for code in codes:
                self.db.add(
                    BackupCode(
                        user_id=user_id,
                        code_hash=hash_backup_code(code),
                        hint=normalize_backup_code(code)[-HINT_LENGTH:],
                        used=False,
                        created_at=now,
                    )
                )
            if commit:
                await self.db.commit()
            else:
                await self.db.flush()

        logger.info(f"Issued {count} backup codes for user {user_id}")
        return codes

    async def consume(self, user_id: int, submitted_code: str) -> bool:
        """
        Atomically mark a matching unused code as used.

        Returns True only for the single request whose update changed the row.
        """
        normalized = normalize_backup_code(submitted_code)
        if not normalized:
            return False

        async with persistence_guard(self.db, "consume backup code"):
            result = await self.db.execute(
                update(BackupCode)
                .where(
                    BackupCode.user_id == user_id,
                    BackupCode.code_hash == hash_backup_code(normalized),
                    BackupCode.used.is_(False),
                )
                .values(used=True, used_at=self.clock.now())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

        consumed = result.rowcount == 1
        if consumed:
            logger.info(f"Backup code used for user {user_id}")
        return consumed

    async def regenerate(self, user_id: int, count: int | None = None) -> list[str]:
        """Delete every existing code for the user, then issue a fresh batch in the same transaction."""
        async with persistence_guard(self.db, "regenerate backup codes"):
            await self.db.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
            codes = await self.issue(user_id, count=count, commit=False)
            await self.db.commit()

        logger.info(f"Backup codes regenerated for user {user_id}")
        return codes

    async def list_codes(self, user_id: int) -> list[BackupCodeStatus]:
        async with persistence_guard(self.db, "list backup codes"):
            result = await self.db.execute(
                select(BackupCode)
                .where(BackupCode.user_id == user_id)
                .order_by(BackupCode.created_at.desc(), BackupCode.id.desc())
            )
            rows = result.scalars().all()

        return [
            BackupCodeStatus(id=row.id, hint=row.hint, used=row.used, used_at=row.used_at, created_at=row.created_at)
            for row in rows
        ]

    async def remaining(self, user_id: int) -> int:
        return sum(1 for status in await self.list_codes(user_id) if not status.used)

    async def delete_all(self, user_id: int, commit: bool = True) -> None:
        async with persistence_guard(self.db, "delete backup codes"):
            await self.db.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
            if commit:
                await self.db.commit()
