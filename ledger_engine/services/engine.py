"""
LedgerEngine: the operations the scheduler, admin API and CLI call.

Each daily batch is wrapped in the Daily Processing Ledger so it completes
at most once per business date. Concurrency refusals come back as skipped
results; only genuine batch failures raise.
"""

from datetime import date, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_engine.core.clock import Clock, SystemClock, business_date
from ledger_engine.core.config import Settings, settings as default_settings
from ledger_engine.core.exceptions import BatchProcessingError, ConcurrencyError, ValidationError
from ledger_engine.models import DailyProcessingRecord, JobType
from .accrual import BenefitAccrualService
from .balances import BalanceService
from .commission_unlock import CommissionUnlockService
from .hold_policy import CommissionHoldPolicy
from .notifier import Notifier, NullNotifier
from .processing_ledger import ProcessingLedger
from .types import BatchStats, RunHandle, RunResult, WalletAllocation
from .wallet_rotation import WalletRotationService


logger = structlog.get_logger(__name__)

BatchFn = Callable[[date, BatchStats], Awaitable[BatchStats]]


class LedgerEngine:
    """Facade wiring the ledger services around one session factory, clock and notifier."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[Settings] = None
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.notifier = notifier or NullNotifier()
        self.config = config or default_settings
        self.logger = logger.bind(service="ledger_engine")

        self.balances = BalanceService()
        self.hold_policy = CommissionHoldPolicy.from_settings(self.config)
        self.ledger = ProcessingLedger(session_factory, self.clock, self.config)
        self.accrual = BenefitAccrualService(
            session_factory, self.balances, self.notifier, self.clock, self.config
        )
        self.commissions = CommissionUnlockService(
            session_factory, self.balances, self.notifier, self.clock, self.config, self.hold_policy
        )
        self.wallets = WalletRotationService(session_factory, self.clock, self.config)

        self._batches: Dict[str, BatchFn] = {
            JobType.DAILY_BENEFITS.value: self.accrual.process,
            JobType.COMMISSION_UNLOCK.value: self.commissions.process,
        }

    def today(self) -> date:
        """Current business date in the reference timezone."""
        return business_date(self.clock.now(), self.config.tzinfo)

    async def run_daily_accrual(
        self,
        process_date: Optional[date] = None,
        triggered_by: str = "scheduler",
        actor_id: Optional[str] = None
    ) -> RunResult:
        return await self.run_job(JobType.DAILY_BENEFITS.value, process_date, triggered_by, actor_id)

    async def run_commission_unlock(
        self,
        process_date: Optional[date] = None,
        triggered_by: str = "scheduler",
        actor_id: Optional[str] = None
    ) -> RunResult:
        return await self.run_job(JobType.COMMISSION_UNLOCK.value, process_date, triggered_by, actor_id)

    async def run_job(
        self,
        job_type: str,
        process_date: Optional[date] = None,
        triggered_by: str = "scheduler",
        actor_id: Optional[str] = None
    ) -> RunResult:
        """
        Run one daily batch under the processing ledger.

        Raises:
            BatchProcessingError: the batch aborted; the run is marked failed
        """
        batch = self._batches.get(job_type)
        if batch is None:
            raise ValidationError(f"Unknown job type: {job_type}", {"job_type": job_type})

        process_date = process_date or self.today()

        try:
            handle = await self.ledger.start_run(process_date, job_type, triggered_by, actor_id)
        except ConcurrencyError as e:
            self.logger.info(
                "Daily run skipped",
                job_type=job_type,
                process_date=process_date.isoformat(),
                reason=e.code
            )
            return RunResult.skipped_run(job_type, process_date, e.code)

        stats = BatchStats()
        try:
            await batch(process_date, stats)
            await self.ledger.complete_run(process_date, job_type, stats, handle=handle)
        except ConcurrencyError as e:
            # Another worker recovered this date while the batch was running
            self.logger.warning(
                "Daily run lost ownership before closing",
                job_type=job_type,
                process_date=process_date.isoformat(),
                reason=e.code,
                processed=stats.processed
            )
            return RunResult.skipped_run(job_type, process_date, e.code)
        except Exception as e:
            await self._fail_run_safely(handle, str(e), stats)
            raise BatchProcessingError(job_type, process_date, str(e)) from e

        return RunResult.from_stats(job_type, process_date, stats)

    async def _fail_run_safely(self, handle: RunHandle, error_message: str, stats: BatchStats) -> None:
        """Mark the run failed. If that also fails, the staleness window recovers the run."""
        try:
            await self.ledger.fail_run(
                handle.process_date, handle.job_type, error_message, stats, handle=handle
            )
        except Exception as e:
            self.logger.error(
                "Could not mark run failed",
                job_type=handle.job_type,
                process_date=handle.process_date.isoformat(),
                error=str(e)
            )

    async def run_with_catchup(
        self,
        job_type: str,
        today: Optional[date] = None,
        triggered_by: str = "scheduler",
        actor_id: Optional[str] = None
    ) -> List[RunResult]:
        """
        Run every date missed since the last completed run, oldest first.

        At most max_catchup_days dates are processed, ending with today.
        """
        today = today or self.today()
        window_start = today - timedelta(days=self.config.max_catchup_days - 1)

        last_completed = await self.ledger.last_completed_date(job_type)
        if last_completed is None:
            first = today
        else:
            first = min(max(last_completed + timedelta(days=1), window_start), today)

        if last_completed is not None and last_completed + timedelta(days=1) < window_start:
            self.logger.warning(
                "Catch-up window exceeded, older dates will not be processed",
                job_type=job_type,
                last_completed=last_completed.isoformat(),
                window_start=window_start.isoformat()
            )

        results = []
        day = first
        while day <= today:
            run_trigger = triggered_by if day == today else "catchup"
            results.append(await self.run_job(job_type, day, run_trigger, actor_id))
            day += timedelta(days=1)

        if len(results) > 1:
            self.logger.info(
                "Catch-up processed",
                job_type=job_type,
                dates=[r.process_date.isoformat() for r in results]
            )
        return results

    async def allocate_wallet(self, network: Optional[str] = None, currency: Optional[str] = None) -> WalletAllocation:
        return await self.wallets.pick(
            network or self.config.default_network,
            currency or self.config.default_currency
        )

    async def get_run_status(
        self,
        job_type: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[DailyProcessingRecord]:
        return await self.ledger.get_runs(job_type, start_date, end_date)

    async def health_check(self) -> bool:
        """Check database connectivity through the engine's session factory."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            self.logger.error("Database health check failed", error=str(e))
            return False
