"""
Daily Processing Ledger.

Guarantees that each (job_type, process_date) batch runs to completion at
most once across any number of workers, and recovers runs whose worker
died mid-flight after a staleness window.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_engine.core.clock import Clock, SystemClock
from ledger_engine.core.config import Settings, settings as default_settings
from ledger_engine.core.exceptions import (
    AlreadyCompletedError,
    NoRunStateError,
    RunNotOwnedError,
    RunInProgressError,
)
from ledger_engine.core.database import dialect_insert
from ledger_engine.models import DailyProcessingRecord, RunStatus
from .types import BatchStats, RunHandle


logger = structlog.get_logger(__name__)


class ProcessingLedger:
    """Open, close and inspect daily batch runs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.config = config or default_settings
        self.staleness = timedelta(hours=self.config.run_staleness_hours)
        self.logger = logger.bind(service="processing_ledger")

    async def start_run(
        self,
        process_date: date,
        job_type: str,
        triggered_by: str = "scheduler",
        actor_id: Optional[str] = None
    ) -> RunHandle:
        """
        Claim the run for (job_type, process_date).

        Raises:
            AlreadyCompletedError: the date was already processed
            RunInProgressError: another worker started less than the staleness window ago
        """
        now = self.clock.now()

        async with self.session_factory() as session:
            # 1. No record yet: create it
            insert_stmt = dialect_insert(session, DailyProcessingRecord).values(
                job_type=job_type,
                process_date=process_date,
                status=RunStatus.PROCESSING.value,
                started_at=now,
                triggered_by=triggered_by,
                actor_id=actor_id,
                timezone=self.config.reference_timezone,
                attempt_count=1,
                processed_count=0,
                skipped_count=0,
                error_count=0,
                total_amount=0,
            ).on_conflict_do_nothing(
                index_elements=[DailyProcessingRecord.job_type, DailyProcessingRecord.process_date]
            ).returning(DailyProcessingRecord.id)

            created = (await session.execute(insert_stmt)).scalar_one_or_none()
            if created is not None:
                await session.commit()
                self.logger.info(
                    "Processing run started",
                    job_type=job_type,
                    process_date=process_date.isoformat(),
                    triggered_by=triggered_by
                )
                return RunHandle(job_type, process_date, now)

            # 2. Failed or stale processing record: take it over
            stale_before = now - self.staleness
            recover_stmt = (
                update(DailyProcessingRecord)
                .where(
                    DailyProcessingRecord.job_type == job_type,
                    DailyProcessingRecord.process_date == process_date,
                    (
                        (DailyProcessingRecord.status == RunStatus.FAILED.value)
                        | (
                            (DailyProcessingRecord.status == RunStatus.PROCESSING.value)
                            & (DailyProcessingRecord.started_at <= stale_before)
                        )
                    ),
                )
                .values(
                    status=RunStatus.PROCESSING.value,
                    started_at=now,
                    completed_at=None,
                    error_message=None,
                    triggered_by=triggered_by,
                    actor_id=actor_id,
                    attempt_count=DailyProcessingRecord.attempt_count + 1,
                    updated_at=now,
                )
                .returning(DailyProcessingRecord.attempt_count)
            )
            attempt = (await session.execute(recover_stmt)).scalar_one_or_none()
            if attempt is not None:
                await session.commit()
                self.logger.warning(
                    "Recovered failed or stale processing run",
                    job_type=job_type,
                    process_date=process_date.isoformat(),
                    attempt=attempt
                )
                return RunHandle(job_type, process_date, now, attempt_count=attempt, recovered=True)

            # 3. Classify the refusal
            record = await self._get(session, job_type, process_date)
            await session.commit()

        if record is not None and record.status == RunStatus.COMPLETED.value:
            raise AlreadyCompletedError(job_type, process_date)
        raise RunInProgressError(job_type, process_date)

    async def complete_run(
        self,
        process_date: date,
        job_type: str,
        stats: BatchStats,
        handle: Optional[RunHandle] = None
    ) -> DailyProcessingRecord:
        """
        Mark the run completed with its final stats.

        Raises:
            NoRunStateError: the run was never started
            RunNotOwnedError: the run is not processing, or was taken over by another attempt
        """
        record = await self._close(
            process_date, job_type, RunStatus.COMPLETED, stats, None, handle
        )
        self.logger.info(
            "Processing run completed",
            job_type=job_type,
            process_date=process_date.isoformat(),
            processed=stats.processed,
            errors=stats.errors,
            total_amount=str(stats.total_amount),
            duration_ms=record.duration_ms
        )
        return record

    async def fail_run(
        self,
        process_date: date,
        job_type: str,
        error_message: str,
        partial_stats: Optional[BatchStats] = None,
        handle: Optional[RunHandle] = None
    ) -> DailyProcessingRecord:
        """Mark the run failed, keeping whatever stats were gathered."""
        record = await self._close(
            process_date, job_type, RunStatus.FAILED, partial_stats or BatchStats(), error_message, handle
        )
        self.logger.error(
            "Processing run failed",
            job_type=job_type,
            process_date=process_date.isoformat(),
            error=error_message,
            duration_ms=record.duration_ms
        )
        return record

    async def force_restart(
        self,
        process_date: date,
        job_type: str,
        actor_id: Optional[str] = None
    ) -> DailyProcessingRecord:
        """
        Administratively release a run stuck in processing.

        The record is moved to failed so the normal recovery path picks it up
        on the next trigger. Completed records are left alone.
        """
        now = self.clock.now()
        async with self.session_factory() as session:
            record = await self._get(session, job_type, process_date, for_update=True)
            if record is None:
                raise NoRunStateError(job_type, process_date)
            if record.status == RunStatus.COMPLETED.value:
                raise AlreadyCompletedError(job_type, process_date)

            if record.status == RunStatus.PROCESSING.value:
                record.status = RunStatus.FAILED.value
                record.error_message = f"Force restarted by {actor_id or 'unknown'} at {now.isoformat()}"
                record.duration_ms = self._duration_ms(record.started_at, now)
            await session.commit()

        self.logger.warning(
            "Processing run force restarted",
            job_type=job_type,
            process_date=process_date.isoformat(),
            actor_id=actor_id
        )
        return record

    async def get_runs(
        self,
        job_type: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[DailyProcessingRecord]:
        """Runs for a job type within the date range, newest first."""
        stmt = select(DailyProcessingRecord).where(DailyProcessingRecord.job_type == job_type)
        if start_date:
            stmt = stmt.where(DailyProcessingRecord.process_date >= start_date)
        if end_date:
            stmt = stmt.where(DailyProcessingRecord.process_date <= end_date)
        stmt = stmt.order_by(DailyProcessingRecord.process_date.desc())

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_run(self, job_type: str, process_date: date) -> Optional[DailyProcessingRecord]:
        async with self.session_factory() as session:
            await session.refresh(record)
            return record

    async def last_completed_date(self, job_type: str) -> Optional[date]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DailyProcessingRecord.process_date)
                .where(
                    DailyProcessingRecord.job_type == job_type,
                    DailyProcessingRecord.status == RunStatus.COMPLETED.value
                )
                .order_by(DailyProcessingRecord.process_date.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def summary(self, job_type: str, start_date: date, end_date: date) -> Dict[str, Any]:
        """Aggregate counts over a date range for monitoring."""
        runs = await self.get_runs(job_type, start_date, end_date)
        return {
            "job_type": job_type,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "total_runs": len(runs),
            "completed": sum(1 for r in runs if r.status == RunStatus.COMPLETED.value),
            "failed": sum(1 for r in runs if r.status == RunStatus.FAILED.value),
            "processing": sum(1 for r in runs if r.status == RunStatus.PROCESSING.value),
            "total_processed": sum(r.processed_count for r in runs),
            "total_errors": sum(r.error_count for r in runs),
        }

    async def _close(
        self,
        process_date: date,
        job_type: str,
        status: RunStatus,
        stats: BatchStats,
        error_message: Optional[str],
        handle: Optional[RunHandle]
    ) -> DailyProcessingRecord:
        """
        Close the caller's processing attempt.

        Only a record still in processing can be closed. With a handle, the
        attempt number must also match, so a worker whose run was recovered
        by another never rewrites the newer attempt.
        """
        now = self.clock.now()
        async with self.session_factory() as session:
            record = await self._get(session, job_type, process_date, for_update=True)
            if record is None:
                raise NoRunStateError(job_type, process_date)

            current_status, current_attempt = record.status, record.attempt_count
            conditions = [
                DailyProcessingRecord.id == record.id,
                DailyProcessingRecord.status == RunStatus.PROCESSING.value,
            ]
            if handle is not None:
                conditions.append(DailyProcessingRecord.attempt_count == handle.attempt_count)

            result = await session.execute(
                update(DailyProcessingRecord)
                .where(*conditions)
                .values(
                    status=status.value,
                    completed_at=now if status is RunStatus.COMPLETED else None,
                    processed_count=stats.processed,
                    skipped_count=stats.skipped + stats.completed,
                    error_count=stats.errors,
                    total_amount=stats.total_amount,
                    duration_ms=self._duration_ms(record.started_at, now),
                    error_message=error_message,
                    updated_at=now,
                )
                .returning(DailyProcessingRecord.id)
                .execution_options(synchronize_session=False)
            )
            closed = result.scalar_one_or_none() is not None
            if not closed:
                await session.rollback()
                self.logger.warning(
                    "Refusing to close a run this worker no longer owns",
                    job_type=job_type,
                    process_date=process_date.isoformat(),
                    status=current_status,
                    attempt=current_attempt,
                    handle_attempt=handle.attempt_count if handle else None,
                    requested_status=status.value
                )
                raise RunNotOwnedError(job_type, process_date, current_status)

            await session.commit()
            await session.refresh(record)
            return record

    @staticmethod
    def _duration_ms(started_at, now) -> int:
        return max(0, int((now - started_at).total_seconds() * 1000))

    @staticmethod
    async def _get(
        session: AsyncSession,
        job_type: str,
        process_date: date,
        for_update: bool = False
    ) -> Optional[DailyProcessingRecord]:
        stmt = select(DailyProcessingRecord).where(
            DailyProcessingRecord.job_type == job_type,
            DailyProcessingRecord.process_date == process_date
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
