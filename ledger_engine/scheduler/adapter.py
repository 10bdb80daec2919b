"""
Scheduler Adapter.

Maps cron expressions (evaluated in the reference timezone) to engine
operations. Every trigger runs under a job lock so that only one scheduler
instance acts on it; the daily batches additionally rely on the processing
ledger for once-per-date semantics and catch up on missed dates.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ledger_engine.core.config import Settings, settings as default_settings
from ledger_engine.core.exceptions import LockNotAcquiredError, SchedulerError
from ledger_engine.models import JobType
from ledger_engine.services.engine import LedgerEngine
from ledger_engine.services.job_lock import JobLockService


logger = structlog.get_logger(__name__)

WALLET_HEALTH_JOB = "wallet_health"


class SchedulerStatus(Enum):
    """Status of the ledger scheduler."""
    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class JobSchedule:
    job_id: str
    cron: str
    description: str


@dataclass
class JobRunState:
    """Bookkeeping for one scheduled job."""
    last_started: Optional[datetime] = None
    last_finished: Optional[datetime] = None
    last_result: Optional[Any] = None
    last_error: Optional[str] = None
    runs: int = 0
    skipped_locked: int = 0
    failures: int = 0


@dataclass
class RunState:
    """Scheduler state shared with health endpoints. Owned by the adapter."""
    started_at: Optional[datetime] = None
    jobs: Dict[str, JobRunState] = field(default_factory=dict)

    def job(self, job_id: str) -> JobRunState:
        return self.jobs.setdefault(job_id, JobRunState())


class LedgerScheduler:
    """APScheduler-backed trigger source for the ledger engine."""

    def __init__(
        self,
        engine: LedgerEngine,
        locks: JobLockService,
        config: Optional[Settings] = None,
        state: Optional[RunState] = None
    ):
        self.engine = engine
        self.locks = locks
        self.config = config or default_settings
        self.state = state or RunState()
        self.status = SchedulerStatus.STOPPED
        self.lock_ttl = timedelta(seconds=self.config.job_lock_ttl_seconds)
        self._scheduler: Optional[AsyncIOScheduler] = None
        self.logger = logger.bind(service="ledger_scheduler")

    def schedules(self) -> List[JobSchedule]:
        return [
            JobSchedule(JobType.DAILY_BENEFITS.value, self.config.accrual_cron, "Daily benefit accrual"),
            JobSchedule(JobType.COMMISSION_UNLOCK.value, self.config.commission_unlock_cron, "Commission unlock"),
            JobSchedule(WALLET_HEALTH_JOB, self.config.wallet_health_cron, "Wallet pool health check"),
        ]

    def _handlers(self) -> Dict[str, Callable[[], Awaitable[Any]]]:
        return {
            JobType.DAILY_BENEFITS.value: self.trigger_daily_accrual,
            JobType.COMMISSION_UNLOCK.value: self.trigger_commission_unlock,
            WALLET_HEALTH_JOB: self.trigger_wallet_health,
        }

    async def start(self) -> None:
        """Register cron jobs and start the scheduler. Must be called inside a running loop."""
        if not self.config.scheduler_enabled:
            self.logger.info("Ledger scheduler is disabled")
            return

        if self.status is SchedulerStatus.RUNNING:
            self.logger.warning("Scheduler already running")
            return

        tz = self.config.tzinfo
        try:
            scheduler = AsyncIOScheduler(
                timezone=tz,
                job_defaults={
                    "coalesce": True,
                    "max_instances": 1,
                    "misfire_grace_time": self.config.misfire_grace_seconds,
                },
            )
            handlers = self._handlers()
            for schedule in self.schedules():
                scheduler.add_job(
                    handlers[schedule.job_id],
                    trigger=CronTrigger.from_crontab(schedule.cron, timezone=tz),
                    id=schedule.job_id,
                    name=schedule.description,
                    replace_existing=True,
                )
            scheduler.start()
        except ValueError as e:
            self.status = SchedulerStatus.ERROR
            raise SchedulerError(f"Invalid schedule configuration: {e}") from e

        self._scheduler = scheduler
        self.status = SchedulerStatus.RUNNING
        self.state.started_at = self.engine.clock.now()
        self.logger.info(
            "Ledger scheduler started",
            timezone=self.config.reference_timezone,
            jobs={s.job_id: s.cron for s in self.schedules()}
        )

    async def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self.status = SchedulerStatus.STOPPED
        self.logger.info("Ledger scheduler stopped")

    async def trigger_daily_accrual(self):
        return await self._run_locked(
            JobType.DAILY_BENEFITS.value,
            lambda: self.engine.run_with_catchup(JobType.DAILY_BENEFITS.value)
        )

    async def trigger_commission_unlock(self):
        return await self._run_locked(
            JobType.COMMISSION_UNLOCK.value,
            lambda: self.engine.run_with_catchup(JobType.COMMISSION_UNLOCK.value)
        )

    async def trigger_wallet_health(self):
        return await self._run_locked(WALLET_HEALTH_JOB, self._check_wallet_pools)

    async def _check_wallet_pools(self) -> List[Dict[str, Any]]:
        wallets = self.engine.wallets
        reports = []
        for network, currency in await wallets.pools():
            health = await wallets.check_health(network, currency)
            report = health.to_dict()
            if "UNBALANCED_ROTATION" in health.issues and self.config.wallet_auto_rebalance:
                report["rebalanced"] = await wallets.rebalance(network, currency)
            reports.append(report)
        return reports

    async def _run_locked(self, job_id: str, action: Callable[[], Awaitable[Any]]):
        """Run action under the job lock. Returns None when another instance holds it."""
        job_state = self.state.job(job_id)

        try:
            async with self.locks.hold(f"scheduler:{job_id}", self.lock_ttl):
                job_state.last_started = self.engine.clock.now()
                job_state.runs += 1
                try:
                    result = await action()
                except Exception as e:
                    job_state.failures += 1
                    job_state.last_error = str(e)
                    self.logger.error("Scheduled job failed", job_id=job_id, error=str(e))
                    return None
                finally:
                    job_state.last_finished = self.engine.clock.now()
        except LockNotAcquiredError:
            job_state.skipped_locked += 1
            self.logger.info("Job skipped, lock held elsewhere", job_id=job_id)
            return None

        job_state.last_result = result
        job_state.last_error = None
        return result

    def next_run_times(self) -> Dict[str, Optional[str]]:
        if self._scheduler is None:
            return {}
        times = {}
        for job in self._scheduler.get_jobs():
            times[job.id] = job.next_run_time.isoformat() if job.next_run_time else None
        return times

    async def health_check(self) -> Dict[str, Any]:
        """Get health status of the scheduler."""
        jobs = {}
        for schedule in self.schedules():
            job_state = self.state.job(schedule.job_id)
            jobs[schedule.job_id] = {
                "cron": schedule.cron,
                "runs": job_state.runs,
                "failures": job_state.failures,
                "skipped_locked": job_state.skipped_locked,
                "last_started": job_state.last_started.isoformat() if job_state.last_started else None,
                "last_error": job_state.last_error,
                "locked": await self.locks.is_locked(f"scheduler:{schedule.job_id}"),
            }

        return {
            "healthy": self.status is not SchedulerStatus.ERROR
            and not any(j["last_error"] for j in jobs.values()),
            "status": self.status.value,
            "enabled": self.config.scheduler_enabled,
            "timezone": self.config.reference_timezone,
            "started_at": self.state.started_at.isoformat() if self.state.started_at else None,
            "next_runs": self.next_run_times(),
            "jobs": jobs,
        }
