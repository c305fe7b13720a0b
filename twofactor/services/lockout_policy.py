"""
Lockout Policy

Counts consecutive second-factor failures per user and refuses further
attempts for a cooldown once the threshold is reached. The authenticator,
email and backup-code paths all share one ledger.

Failures are recorded with a single UPDATE so concurrent attempts cannot
lose increments, and the stored count never exceeds the threshold.
"""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import DateTime, and_, case, literal, null, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.config import settings
from twofactor.database import persistence_guard
from twofactor.models.attempt_ledger import AttemptLedger
from twofactor.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    remaining_seconds: int = 0


@dataclass(frozen=True)
class LockoutDecision:
    locked: bool
    remaining_seconds: int
    failure_count: int
    attempts_remaining: int


class LockoutPolicy:
    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = system_clock,
        threshold: int | None = None,
        cooldown: timedelta | None = None,
    ):
        self.db = db
        self.clock = clock
        self.threshold = settings.lockout_threshold if threshold is None else threshold
        self.cooldown = timedelta(minutes=settings.lockout_cooldown_minutes) if cooldown is None else cooldown

    async def _ensure_ledger(self, user_id: int) -> None:
        if await self.db.get(AttemptLedger, user_id) is not None:
            return
        self.db.add(AttemptLedger(user_id=user_id, failure_count=0, updated_at=self.clock.now()))
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created it
            await self.db.rollback()

    async def _load(self, user_id: int) -> AttemptLedger | None:
        result = await self.db.execute(
            select(AttemptLedger)
            .where(AttemptLedger.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _remaining(self, ledger: AttemptLedger | None) -> int:
        if ledger is None or ledger.locked_until is None:
            return 0
        seconds = (ledger.locked_until - self.clock.now()).total_seconds()
        return max(0, math.ceil(seconds))

    async def check_locked(self, user_id: int) -> LockStatus:
        """Read-only lock check; never changes the ledger."""
        async with persistence_guard(self.db, "check lockout"):
            ledger = await self._load(user_id)
        remaining = self._remaining(ledger)
        return LockStatus(locked=remaining > 0, remaining_seconds=remaining)

    async def record_failure(self, user_id: int) -> LockoutDecision:
        now = self.clock.now()
        threshold = self.threshold

        lock_expired = and_(AttemptLedger.locked_until.is_not(None), AttemptLedger.locked_until <= now)
        # A lock that has run out starts a fresh count
        current = case((lock_expired, 0), else_=AttemptLedger.failure_count)
        reaches_threshold = current + 1 >= threshold

        async with persistence_guard(self.db, "record verification failure"):
            await self._ensure_ledger(user_id)
            await self.db.execute(
                update(AttemptLedger)
                .where(AttemptLedger.user_id == user_id)
                .values(
                    failure_count=case((reaches_threshold, threshold), else_=current + 1),
                    locked_until=case(
                        (reaches_threshold, literal(now + self.cooldown, DateTime)),
                        (lock_expired, null()),
                        else_=AttemptLedger.locked_until,
                    ),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            ledger = await self._load(user_id)

        remaining = self._remaining(ledger)
        locked = remaining > 0
        if locked:
            logger.warning(f"User {user_id} locked out of 2FA verification for {remaining}s")
        else:
            logger.info(f"2FA verification failure {ledger.failure_count}/{threshold} for user {user_id}")

        return LockoutDecision(
            locked=locked,
            remaining_seconds=remaining,
            failure_count=ledger.failure_count,
            attempts_remaining=0 if locked else max(0, threshold - ledger.failure_count),
        )

    async def record_success(self, user_id: int) -> None:
        async with persistence_guard(self.db, "record verification success"):
            await self.db.execute(
                update(AttemptLedger)
                .where(AttemptLedger.user_id == user_id)
                .values(failure_count=0, locked_until=None, updated_at=self.clock.now())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
