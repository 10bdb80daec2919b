"""
Tests for commission hold periods and the pending -> available unlock.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from ledger_engine.core.exceptions import ValidationError
from ledger_engine.models import BalanceTransaction, Commission, CommissionStatus
from ledger_engine.services.commission_unlock import CommissionUnlockService
from ledger_engine.services.hold_policy import CommissionHoldPolicy
from tests.factories import add_commission, balance_of


@pytest.fixture
def unlocker(session_factory, notifier, clock, config):
    return CommissionUnlockService(session_factory, notifier=notifier, clock=clock, config=config)


async def reload(session_factory, commission_id):
    async with session_factory() as session:
        return await session.get(Commission, commission_id)


def test_hold_policy_uses_reference_calendar_day(config):
    policy = CommissionHoldPolicy.from_settings(config)

    # 05:00 in Bogota on March 1st
    assert policy.unlock_date_for("direct", datetime(2024, 3, 1, 10, 0)) == date(2024, 3, 10)
    assert policy.unlock_date_for("team", datetime(2024, 3, 1, 10, 0)) == date(2024, 3, 18)
    assert policy.unlock_date_for("binary", datetime(2024, 3, 1, 10, 0)) == date(2024, 3, 18)
    assert policy.unlock_date_for("leadership", datetime(2024, 3, 1, 10, 0)) == date(2024, 3, 18)
    # 02:00 UTC on March 2nd is still March 1st in Bogota
    assert policy.unlock_date_for("direct", datetime(2024, 3, 2, 2, 0)) == date(2024, 3, 10)


def test_hold_policy_rejects_unknown_type(config):
    with pytest.raises(ValidationError):
        CommissionHoldPolicy.from_settings(config).hold_days("pyramid")


async def test_direct_commission_unlocks_on_day_nine(unlocker, session_factory, clock):
    # clock is 2024-03-10 in Bogota
    commission = await unlocker.create_commission("referrer-1", "referee-1", "direct", Decimal("50"))
    assert commission.unlock_date == date(2024, 3, 19)

    day_eight = await unlocker.process(date(2024, 3, 18))
    assert day_eight.processed == 0
    assert (await reload(session_factory, commission.id)).status == CommissionStatus.PENDING.value
    assert await balance_of(session_factory, "referrer-1") == Decimal("0")

    day_nine = await unlocker.process(date(2024, 3, 19))
    assert day_nine.processed == 1
    assert day_nine.total_amount == Decimal("50")

    unlocked = await reload(session_factory, commission.id)
    assert unlocked.status == CommissionStatus.AVAILABLE.value
    assert unlocked.unlocked_at == clock.now()
    assert await balance_of(session_factory, "referrer-1") == Decimal("50")

    async with session_factory() as session:
        tx = (await session.execute(select(BalanceTransaction))).scalar_one()
    assert tx.transaction_type == "commission"
    assert tx.reference_type == "commission"
    assert tx.reference_id == commission.id
    assert unlocked.transaction_id == tx.id


async def test_unlock_is_one_way_and_idempotent(unlocker, session_factory, notifier):
    commission = await add_commission(session_factory, date(2024, 3, 5))

    await unlocker.process(date(2024, 3, 10))
    again = await unlocker.process(date(2024, 3, 11))

    assert again.processed == 0
    assert await balance_of(session_factory, "referrer-1") == Decimal("50")
    assert [e[0] for e in notifier.events] == ["commission_unlocked"]
    assert (await reload(session_factory, commission.id)).status == CommissionStatus.AVAILABLE.value


async def test_commission_moved_by_another_worker_is_skipped(unlocker, session_factory):
    commission = await add_commission(session_factory, date(2024, 3, 5))
    stale_copy = (await unlocker.due_commissions(date(2024, 3, 10)))[0]

    async with session_factory() as session:
        await session.execute(
            update(Commission)
            .where(Commission.id == commission.id)
            .values(status=CommissionStatus.AVAILABLE.value)
        )
        await session.commit()

    assert await unlocker.unlock(stale_copy) is False
    assert await balance_of(session_factory, "referrer-1") == Decimal("0")


async def test_failed_unlock_rolls_back_and_batch_continues(unlocker, session_factory, monkeypatch):
    broken = await add_commission(session_factory, date(2024, 3, 5), recipient="broken")
    await add_commission(session_factory, date(2024, 3, 5), recipient="healthy")

    original_credit = unlocker.balances.credit

    async def flaky_credit(session, **kwargs):
        if kwargs["user_id"] == "broken":
            raise RuntimeError("balance row locked")
        return await original_credit(session, **kwargs)

    monkeypatch.setattr(unlocker.balances, "credit", flaky_credit)

    stats = await unlocker.process(date(2024, 3, 10))

    assert stats.errors == 1
    assert stats.processed == 1
    # Status change rolled back together with the failed credit
    assert (await reload(session_factory, broken.id)).status == CommissionStatus.PENDING.value
    assert await balance_of(session_factory, "healthy") == Decimal("50")


async def test_upcoming_unlocks_grouped_by_date(unlocker, session_factory):
    await add_commission(session_factory, date(2024, 3, 10))
    await add_commission(session_factory, date(2024, 3, 12), amount=Decimal("10"))
    await add_commission(session_factory, date(2024, 3, 12), amount=Decimal("5"), commission_type="team")
    await add_commission(session_factory, date(2024, 3, 30))

    upcoming = await unlocker.upcoming_unlocks(date(2024, 3, 10), days=7)

    assert upcoming == [
        {
            "unlock_date": "2024-03-12",
            "count": 2,
            "total_amount": "15.00000000",
            "by_type": {"direct": 1, "team": 1},
        }
    ]


async def test_unlock_stats_for_business_date(unlocker, session_factory):
    await add_commission(session_factory, date(2024, 3, 9))
    await unlocker.process(date(2024, 3, 10))
    await add_commission(session_factory, date(2024, 3, 10), amount=Decimal("20"))
    await add_commission(session_factory, date(2024, 3, 20), amount=Decimal("7"))

    stats = await unlocker.unlock_stats(date(2024, 3, 10))

    assert stats == {
        "process_date": "2024-03-10",
        "unlocked_count": 1,
        "unlocked_amount": "50.00000000",
        "ready_count": 1,
        "ready_amount": "20.00000000",
        "by_status": {
            "available": {"count": 1, "total_amount": "50.00000000"},
            "pending": {"count": 2, "total_amount": "27.00000000"},
        },
    }

    yesterday = await unlocker.unlock_stats(date(2024, 3, 9))
    assert yesterday["unlocked_count"] == 0
    assert yesterday["unlocked_amount"] == "0.00000000"
