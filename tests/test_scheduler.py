"""
Tests for the cron scheduler adapter.
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from ledger_engine.core.exceptions import SchedulerError
from ledger_engine.models import Wallet
from ledger_engine.scheduler.adapter import LedgerScheduler, RunState, SchedulerStatus
from ledger_engine.services.job_lock import JobLockService
from ledger_engine.services.types import RunOutcome
from tests.factories import add_position, add_wallets


@pytest.fixture
def locks(session_factory, clock):
    return JobLockService(session_factory, clock, owner="scheduler-a")


@pytest.fixture
def scheduler(ledger_engine, locks, config):
    return LedgerScheduler(ledger_engine, locks, config, RunState())


def test_schedules_come_from_configuration(scheduler):
    crons = {s.job_id: s.cron for s in scheduler.schedules()}
    assert crons == {
        "daily_benefits": "0 3 * * *",
        "commission_unlock": "0 3 * * *",
        "wallet_health": "*/5 * * * *",
    }


async def test_start_registers_jobs_in_reference_timezone(scheduler):
    await scheduler.start()
    try:
        assert scheduler.status is SchedulerStatus.RUNNING
        next_runs = scheduler.next_run_times()
        assert set(next_runs) == {"daily_benefits", "commission_unlock", "wallet_health"}
        assert "T03:00:00-05:00" in next_runs["daily_benefits"]
    finally:
        await scheduler.stop()
    assert scheduler.status is SchedulerStatus.STOPPED


async def test_invalid_cron_is_reported(ledger_engine, locks, config):
    bad = config.model_copy(update={"accrual_cron": "not a cron"})
    scheduler = LedgerScheduler(ledger_engine, locks, bad)

    with pytest.raises(SchedulerError):
        await scheduler.start()
    assert scheduler.status is SchedulerStatus.ERROR


async def test_disabled_scheduler_does_not_start(ledger_engine, locks, config):
    scheduler = LedgerScheduler(ledger_engine, locks, config.model_copy(update={"scheduler_enabled": False}))

    await scheduler.start()

    assert scheduler.status is SchedulerStatus.STOPPED


async def test_trigger_runs_accrual_and_releases_lock(scheduler, ledger_engine, locks):
    await add_position(ledger_engine.session_factory)

    results = await scheduler.trigger_daily_accrual()

    assert [r.outcome for r in results] == [RunOutcome.COMPLETED]
    assert scheduler.state.job("daily_benefits").runs == 1
    assert await locks.is_locked("scheduler:daily_benefits") is False


async def test_trigger_skips_when_other_instance_holds_lock(scheduler, session_factory, clock):
    other = JobLockService(session_factory, clock, owner="scheduler-b")
    await other.acquire("scheduler:commission_unlock", timedelta(minutes=30))

    assert await scheduler.trigger_commission_unlock() is None

    job_state = scheduler.state.job("commission_unlock")
    assert job_state.skipped_locked == 1
    assert job_state.runs == 0


async def test_trigger_failure_is_recorded_not_raised(scheduler, ledger_engine, monkeypatch):
    async def broken(job_type, today=None, triggered_by="scheduler", actor_id=None):
        raise RuntimeError("database unreachable")

    monkeypatch.setattr(ledger_engine, "run_with_catchup", broken)

    assert await scheduler.trigger_daily_accrual() is None

    health = await scheduler.health_check()
    assert health["healthy"] is False
    assert health["jobs"]["daily_benefits"]["failures"] == 1
    assert health["jobs"]["daily_benefits"]["last_error"] == "database unreachable"


async def test_wallet_health_trigger_reports_each_pool(scheduler, session_factory):
    await add_wallets(session_factory, 3)
    await add_wallets(session_factory, 1, network="TRC20")

    reports = await scheduler.trigger_wallet_health()

    by_network = {r["network"]: r for r in reports}
    assert by_network["BEP20"]["status"] == "healthy"
    assert by_network["TRC20"]["issues"] == ["LOW_AVAILABLE_WALLETS"]


async def test_wallet_health_trigger_can_rebalance(ledger_engine, locks, config, session_factory):
    scheduler = LedgerScheduler(ledger_engine, locks, config.model_copy(update={"wallet_auto_rebalance": True}))
    wallets = await add_wallets(session_factory, 3)
    async with session_factory() as session:
        await session.execute(update(Wallet).where(Wallet.id == wallets[0].id).values(shown_count=20))
        await session.commit()

    [report] = await scheduler.trigger_wallet_health()

    assert "UNBALANCED_ROTATION" in report["issues"]
    assert report["rebalanced"] == 1
