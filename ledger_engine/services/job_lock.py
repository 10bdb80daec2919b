"""
Time-bounded job lock shared by all scheduler instances.

Acquisition is one conditional upsert: the row is taken over only when the
previous holder's lease has expired.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_engine.core.clock import Clock, SystemClock
from ledger_engine.core.database import dialect_insert
from ledger_engine.core.exceptions import LockNotAcquiredError
from ledger_engine.models import JobLock


logger = structlog.get_logger(__name__)


class JobLockService:
    """Acquire / release named locks with a TTL."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        owner: Optional[str] = None
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.owner = owner or uuid.uuid4().hex
        self.logger = logger.bind(service="job_lock", owner=self.owner)

    async def acquire(self, name: str, ttl: timedelta) -> bool:
        """Return True iff this instance now holds the lock."""
        now = self.clock.now()
        lock_until = now + ttl

        async with self.session_factory() as session:
            stmt = dialect_insert(session, JobLock).values(
                name=name,
                lock_until=lock_until,
                owner=self.owner,
                acquired_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[JobLock.name],
                set_={
                    "lock_until": lock_until,
                    "owner": self.owner,
                    "acquired_at": now,
                },
                where=JobLock.lock_until <= now,
            ).returning(JobLock.name)

            result = await session.execute(stmt)
            acquired = result.scalar_one_or_none() is not None
            await session.commit()

        if acquired:
            self.logger.debug("Job lock acquired", lock=name, lock_until=lock_until.isoformat())
        else:
            self.logger.debug("Job lock busy", lock=name)
        return acquired

    async def release(self, name: str) -> bool:
        """Expire the lock early if this instance still owns it."""
        now = self.clock.now()
        async with self.session_factory() as session:
            result = await session.execute(
                update(JobLock)
                .where(JobLock.name == name, JobLock.owner == self.owner)
                .values(lock_until=now)
            )
            await session.commit()

        released = result.rowcount > 0
        if not released:
            self.logger.warning("Job lock was not held at release", lock=name)
        return released

    async def is_locked(self, name: str) -> bool:
        """Read-only probe used for health output."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(JobLock.lock_until).where(JobLock.name == name)
            )
            lock_until = result.scalar_one_or_none()
        return lock_until is not None and lock_until > self.clock.now()

    @asynccontextmanager
    async def hold(self, name: str, ttl: timedelta):
        """
        Hold the lock for the duration of the block.

        Raises:
            LockNotAcquiredError: another instance holds an unexpired lock
        """
        if not await self.acquire(name, ttl):
            raise LockNotAcquiredError(name)
        try:
            yield
        finally:
            await self.release(name)
