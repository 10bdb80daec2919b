"""
Tests for the daily processing ledger: once-per-date completion, stale run
recovery and run history.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from ledger_engine.core.exceptions import (
    AlreadyCompletedError,
    NoRunStateError,
    RunNotOwnedError,
    RunInProgressError,
)
from ledger_engine.models import RunStatus
from ledger_engine.services.processing_ledger import ProcessingLedger
from ledger_engine.services.types import BatchStats


JOB = "daily_benefits"
DAY = date(2024, 3, 10)


@pytest.fixture
def ledger(session_factory, clock, config):
    return ProcessingLedger(session_factory, clock, config)


async def test_start_creates_processing_record(ledger, config):
    handle = await ledger.start_run(DAY, JOB, triggered_by="manual", actor_id="admin-7")

    assert handle.attempt_count == 1
    assert handle.recovered is False

    record = await ledger.get_run(JOB, DAY)
    assert record.status == RunStatus.PROCESSING.value
    assert record.triggered_by == "manual"
    assert record.actor_id == "admin-7"
    assert record.timezone == config.reference_timezone


async def test_completed_run_is_never_restarted(ledger, clock):
    await ledger.start_run(DAY, JOB)
    clock.advance(seconds=1, milliseconds=500)
    await ledger.complete_run(DAY, JOB, BatchStats(processed=3, total_amount=Decimal("375")))

    record = await ledger.get_run(JOB, DAY)
    assert record.status == RunStatus.COMPLETED.value
    assert record.processed_count == 3
    assert record.duration_ms == 1500

    with pytest.raises(AlreadyCompletedError):
        await ledger.start_run(DAY, JOB)

    # Even long after, a completed date stays completed
    clock.advance(days=3)
    with pytest.raises(AlreadyCompletedError):
        await ledger.start_run(DAY, JOB)


async def test_fresh_processing_run_refuses_second_worker(ledger, clock):
    await ledger.start_run(DAY, JOB)
    clock.advance(hours=1, minutes=59)

    with pytest.raises(RunInProgressError):
        await ledger.start_run(DAY, JOB)


async def test_stale_processing_run_is_recovered(ledger, clock):
    await ledger.start_run(DAY, JOB)
    clock.advance(hours=2)

    handle = await ledger.start_run(DAY, JOB)

    assert handle.recovered is True
    assert handle.attempt_count == 2
    record = await ledger.get_run(JOB, DAY)
    assert record.status == RunStatus.PROCESSING.value
    assert record.started_at == clock.now()


async def test_failed_run_restarts_and_clears_error(ledger, clock):
    await ledger.start_run(DAY, JOB)
    await ledger.fail_run(DAY, JOB, "database went away", BatchStats(processed=2, errors=1))

    failed = await ledger.get_run(JOB, DAY)
    assert failed.status == RunStatus.FAILED.value
    assert failed.error_message == "database went away"
    assert failed.processed_count == 2
    assert failed.error_count == 1

    clock.advance(minutes=5)
    handle = await ledger.start_run(DAY, JOB)

    assert handle.recovered is True
    record = await ledger.get_run(JOB, DAY)
    assert record.status == RunStatus.PROCESSING.value
    assert record.error_message is None
    assert record.attempt_count == 2


async def test_closing_unknown_run_raises(ledger):
    with pytest.raises(NoRunStateError):
        await ledger.complete_run(DAY, JOB, BatchStats())
    with pytest.raises(NoRunStateError):
        await ledger.fail_run(DAY, JOB, "boom")


async def test_job_types_are_tracked_separately(ledger):
    await ledger.start_run(DAY, "daily_benefits")
    await ledger.start_run(DAY, "commission_unlock")

    assert (await ledger.get_run("daily_benefits", DAY)).status == RunStatus.PROCESSING.value
    assert (await ledger.get_run("commission_unlock", DAY)).status == RunStatus.PROCESSING.value


async def test_concurrent_start_admits_exactly_one(ledger):
    results = await asyncio.gather(
        *(ledger.start_run(DAY, JOB) for _ in range(5)),
        return_exceptions=True
    )

    started = [r for r in results if not isinstance(r, Exception)]
    refused = [r for r in results if isinstance(r, RunInProgressError)]
    assert len(started) == 1
    assert len(refused) == 4


async def test_force_restart_moves_processing_to_failed(ledger):
    await ledger.start_run(DAY, JOB)

    record = await ledger.force_restart(DAY, JOB, actor_id="admin-1")

    assert record.status == RunStatus.FAILED.value
    assert "admin-1" in record.error_message
    handle = await ledger.start_run(DAY, JOB)
    assert handle.recovered is True


async def test_force_restart_leaves_completed_runs_alone(ledger):
    await ledger.start_run(DAY, JOB)
    await ledger.complete_run(DAY, JOB, BatchStats())

    with pytest.raises(AlreadyCompletedError):
        await ledger.force_restart(DAY, JOB)
    with pytest.raises(NoRunStateError):
        await ledger.force_restart(date(2024, 1, 1), JOB)


async def test_run_history_is_newest_first_within_range(ledger):
    for day in (date(2024, 3, 7), date(2024, 3, 8), date(2024, 3, 9)):
        await ledger.start_run(day, JOB)
        await ledger.complete_run(day, JOB, BatchStats(processed=1))

    runs = await ledger.get_runs(JOB, date(2024, 3, 8), date(2024, 3, 9))
    assert [r.process_date for r in runs] == [date(2024, 3, 9), date(2024, 3, 8)]

    assert await ledger.last_completed_date(JOB) == date(2024, 3, 9)
    assert await ledger.last_completed_date("commission_unlock") is None

    summary = await ledger.summary(JOB, date(2024, 3, 1), date(2024, 3, 31))
    assert summary["completed"] == 3
    assert summary["total_processed"] == 3


async def test_superseded_worker_cannot_rewrite_completed_run(ledger, clock):
    first = await ledger.start_run(DAY, JOB)
    clock.advance(hours=3)
    second = await ledger.start_run(DAY, JOB)
    await ledger.complete_run(DAY, JOB, BatchStats(processed=5), handle=second)

    with pytest.raises(RunNotOwnedError) as exc_info:
        await ledger.fail_run(DAY, JOB, "worker A crashed", handle=first)
    assert exc_info.value.code == "RUN_NOT_OWNED"
    with pytest.raises(RunNotOwnedError):
        await ledger.complete_run(DAY, JOB, BatchStats(processed=1), handle=first)

    record = await ledger.get_run(JOB, DAY)
    assert record.status == RunStatus.COMPLETED.value
    assert record.processed_count == 5
    assert record.error_message is None
    with pytest.raises(AlreadyCompletedError):
        await ledger.start_run(DAY, JOB)


async def test_superseded_worker_cannot_close_the_newer_attempt(ledger, clock):
    first = await ledger.start_run(DAY, JOB)
    clock.advance(hours=3)
    second = await ledger.start_run(DAY, JOB)

    with pytest.raises(RunNotOwnedError):
        await ledger.complete_run(DAY, JOB, BatchStats(processed=1), handle=first)

    record = await ledger.get_run(JOB, DAY)
    assert record.status == RunStatus.PROCESSING.value
    assert record.attempt_count == 2

    closed = await ledger.complete_run(DAY, JOB, BatchStats(processed=4), handle=second)
    assert closed.status == RunStatus.COMPLETED.value
    assert closed.processed_count == 4


async def test_completed_run_cannot_be_closed_again(ledger):
    await ledger.start_run(DAY, JOB)
    await ledger.complete_run(DAY, JOB, BatchStats(processed=2))

    with pytest.raises(RunNotOwnedError):
        await ledger.fail_run(DAY, JOB, "late failure")
    assert (await ledger.get_run(JOB, DAY)).status == RunStatus.COMPLETED.value
