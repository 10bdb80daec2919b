"""
Tests for the time-bounded job lock.
"""

from datetime import timedelta

import pytest

from ledger_engine.core.exceptions import LockNotAcquiredError
from ledger_engine.services.job_lock import JobLockService


TTL = timedelta(minutes=10)


async def test_first_acquire_wins_second_is_refused(session_factory, clock):
    first = JobLockService(session_factory, clock, owner="instance-a")
    second = JobLockService(session_factory, clock, owner="instance-b")

    assert await first.acquire("daily_benefits", TTL) is True
    assert await second.acquire("daily_benefits", TTL) is False
    assert await first.is_locked("daily_benefits") is True


async def test_expired_lock_can_be_taken_over(session_factory, clock):
    first = JobLockService(session_factory, clock, owner="instance-a")
    second = JobLockService(session_factory, clock, owner="instance-b")

    assert await first.acquire("wallet_health", TTL)
    clock.advance(minutes=10)

    assert await second.acquire("wallet_health", TTL) is True
    # The previous holder's release must not free the new holder's lock
    assert await first.release("wallet_health") is False
    assert await first.acquire("wallet_health", TTL) is False


async def test_release_lets_others_acquire_immediately(session_factory, clock):
    first = JobLockService(session_factory, clock, owner="instance-a")
    second = JobLockService(session_factory, clock, owner="instance-b")

    await first.acquire("commission_unlock", TTL)
    assert await first.release("commission_unlock") is True
    assert await first.is_locked("commission_unlock") is False
    assert await second.acquire("commission_unlock", TTL) is True


async def test_locks_are_independent_by_name(session_factory, clock):
    locks = JobLockService(session_factory, clock)

    assert await locks.acquire("a", TTL)
    assert await locks.acquire("b", TTL)
    assert await locks.is_locked("never-acquired") is False


async def test_hold_releases_on_exit_and_refuses_when_busy(session_factory, clock):
    first = JobLockService(session_factory, clock, owner="instance-a")
    second = JobLockService(session_factory, clock, owner="instance-b")

    async with first.hold("daily_benefits", TTL):
        assert await first.is_locked("daily_benefits")
        with pytest.raises(LockNotAcquiredError) as exc_info:
            async with second.hold("daily_benefits", TTL):
                pass
        assert exc_info.value.code == "LOCK_NOT_ACQUIRED"

    assert await first.is_locked("daily_benefits") is False


async def test_hold_releases_when_block_raises(session_factory, clock):
    locks = JobLockService(session_factory, clock)

    with pytest.raises(RuntimeError):
        async with locks.hold("wallet_health", TTL):
            raise RuntimeError("boom")

    assert await locks.is_locked("wallet_health") is False
