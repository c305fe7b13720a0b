"""
Tests for the shared second-factor lockout ledger
"""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.models.attempt_ledger import AttemptLedger
from twofactor.models.user import User
from twofactor.services.lockout_policy import LockoutPolicy


class TestLockoutPolicy:
    @pytest.mark.asyncio
    async def test_unknown_user_not_locked(self, test_db: AsyncSession, test_user: User, clock):
        status = await LockoutPolicy(test_db, clock=clock).check_locked(test_user.id)
        assert status.locked is False
        assert status.remaining_seconds == 0

    @pytest.mark.asyncio
    async def test_locks_on_fifth_failure(self, test_db: AsyncSession, test_user: User, clock):
        policy = LockoutPolicy(test_db, clock=clock)

        for attempt in range(1, 5):
            decision = await policy.record_failure(test_user.id)
            assert decision.locked is False
            assert decision.failure_count == attempt
            assert decision.attempts_remaining == 5 - attempt

        decision = await policy.record_failure(test_user.id)
        assert decision.locked is True
        assert decision.remaining_seconds == 15 * 60
        assert decision.attempts_remaining == 0

        status = await policy.check_locked(test_user.id)
        assert status.locked is True
        assert status.remaining_seconds == 15 * 60

    @pytest.mark.asyncio
    async def test_explicit_policy_overrides_settings(self, test_db: AsyncSession, test_user: User, clock):
        policy = LockoutPolicy(test_db, clock=clock, threshold=2, cooldown=timedelta(minutes=1))

        assert (await policy.record_failure(test_user.id)).locked is False
        decision = await policy.record_failure(test_user.id)

        assert decision.locked is True
        assert decision.remaining_seconds == 60

    @pytest.mark.asyncio
    async def test_check_does_not_change_ledger(self, test_db: AsyncSession, test_user: User, clock):
        policy = LockoutPolicy(test_db, clock=clock)
        await policy.record_failure(test_user.id)

        for _ in range(10):
            await policy.check_locked(test_user.id)

        ledger = await test_db.get(AttemptLedger, test_user.id)
        await test_db.refresh(ledger)
        assert ledger.failure_count == 1

    @pytest.mark.asyncio
    async def test_lock_expires_after_cooldown(self, test_db: AsyncSession, test_user: User, clock):
        policy = LockoutPolicy(test_db, clock=clock)
        for _ in range(5):
            await policy.record_failure(test_user.id)

        clock.advance(minutes=14, seconds=59)
        assert (await policy.check_locked(test_user.id)).remaining_seconds == 1

        clock.advance(seconds=1)
        assert (await policy.check_locked(test_user.id)).locked is False

    @pytest.mark.asyncio
    async def test_failure_after_expired_lock_starts_fresh(self, test_db: AsyncSession, test_user: User, clock):
        policy = LockoutPolicy(test_db, clock=clock)
        for _ in range(5):
            await policy.record_failure(test_user.id)
        clock.advance(minutes=16)

        decision = await policy.record_failure(test_user.id)

        assert decision.locked is False
        assert decision.failure_count == 1
        assert decision.attempts_remaining == 4

    @pytest.mark.asyncio
    async def test_success_resets(self, test_db: AsyncSession, test_user: User, clock):
        policy = LockoutPolicy(test_db, clock=clock)
        for _ in range(4):
            await policy.record_failure(test_user.id)

        await policy.record_success(test_user.id)

        decision = await policy.record_failure(test_user.id)
        assert decision.failure_count == 1

    @pytest.mark.asyncio
    async def test_count_never_exceeds_threshold(self, test_db: AsyncSession, test_user: User, clock):
        policy = LockoutPolicy(test_db, clock=clock, threshold=3, cooldown=timedelta(minutes=1))
        for _ in range(6):
            decision = await policy.record_failure(test_user.id)

        assert decision.failure_count == 3
        assert decision.locked is True

    @pytest.mark.asyncio
    async def test_ledgers_are_per_user(self, test_db: AsyncSession, test_user: User, other_user: User, clock):
        policy = LockoutPolicy(test_db, clock=clock)
        for _ in range(5):
            await policy.record_failure(test_user.id)

        assert (await policy.check_locked(other_user.id)).locked is False
