"""
Benefit Accrual Engine.

For a business date, credits one benefit day to every active position,
derives (cycle, day) from the days elapsed since activation, and completes
positions that ran past their last cycle. Each position is handled in its
own transaction; one position failing never stops the batch.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_engine.core.clock import Clock, SystemClock, business_date, day_end_utc
from ledger_engine.core.config import Settings, settings as default_settings
from ledger_engine.models import (
    BenefitLedgerEntry,
    BenefitStatus,
    Position,
    PositionStatus,
    TransactionType,
)
from .balances import BalanceService, quantize_money
from .notifier import Notifier, NullNotifier, notify_safely
from .types import BatchStats


logger = structlog.get_logger(__name__)


@dataclass
class BenefitSlot:
    """Where a position sits in its plan on a given date."""
    days_since_activation: int
    cycle: int
    day: int


def benefit_slot(activation_date: date, run_date: date, days_per_cycle: int) -> BenefitSlot:
    days = (run_date - activation_date).days
    return BenefitSlot(
        days_since_activation=days,
        cycle=days // days_per_cycle + 1,
        day=days % days_per_cycle + 1,
    )


def daily_benefit_amount(principal: Decimal, daily_rate: Decimal) -> Decimal:
    return quantize_money(Decimal(principal) * Decimal(daily_rate))


def _entry_lookup(position_id: int, slot: BenefitSlot, run_date: date):
    return select(BenefitLedgerEntry.id).where(
        BenefitLedgerEntry.position_id == position_id,
        BenefitLedgerEntry.cycle == slot.cycle,
        BenefitLedgerEntry.day == slot.day,
        BenefitLedgerEntry.scheduled_date == run_date
    )


class AccrualOutcome(Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    COMPLETED = "completed"


class BenefitAccrualService:
    """Credits daily benefits for active positions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        balances: Optional[BalanceService] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None
    ):
        self.session_factory = session_factory
        self.balances = balances or BalanceService()
        self.notifier = notifier or NullNotifier()
        self.clock = clock or SystemClock()
        self.config = config or default_settings
        self.tz = self.config.tzinfo
        self.logger = logger.bind(service="benefit_accrual")

    async def eligible_positions(self, run_date: date) -> List[Position]:
        """Active positions activated no later than the end of run_date."""
        cutoff = day_end_utc(run_date, self.tz)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Position)
                .where(
                    Position.status == PositionStatus.ACTIVE.value,
                    Position.activated_at.is_not(None),
                    Position.activated_at < cutoff
                )
                .order_by(Position.id)
            )
            return list(result.scalars().all())

    async def process(self, run_date: date, stats: Optional[BatchStats] = None) -> BatchStats:
        """
        Accrue benefits for run_date.

        Item failures are counted in stats. Errors loading the eligible set
        propagate, leaving stats with whatever was gathered.
        """
        stats = stats if stats is not None else BatchStats()
        positions = await self.eligible_positions(run_date)

        self.logger.info(
            "Starting benefit accrual",
            process_date=run_date.isoformat(),
            eligible_positions=len(positions)
        )

        for position in positions:
            try:
                outcome, amount = await self.process_position(position, run_date)
            except Exception as e:
                stats.errors += 1
                stats.failed_ids.append(position.id)
                self.logger.error(
                    "Benefit accrual failed for position",
                    entity_type="position",
                    entity_id=position.id,
                    user_id=position.user_id,
                    process_date=run_date.isoformat(),
                    error=str(e)
                )
                continue

            if outcome == AccrualOutcome.PROCESSED:
                stats.processed += 1
                stats.total_amount += amount
            elif outcome == AccrualOutcome.COMPLETED:
                stats.completed += 1
            else:
                stats.skipped += 1

        self.logger.info(
            "Benefit accrual finished",
            process_date=run_date.isoformat(),
            processed=stats.processed,
            skipped=stats.skipped,
            completed=stats.completed,
            errors=stats.errors,
            total_amount=str(stats.total_amount)
        )
        return stats

    async def process_position(self, position: Position, run_date: date):
        """
        Handle one position for one date.

        Returns (outcome, amount credited).
        """
        activation_date = business_date(position.activated_at, self.tz)
        slot = benefit_slot(activation_date, run_date, position.days_per_cycle)

        if slot.days_since_activation < 0:
            return AccrualOutcome.SKIPPED, Decimal("0")

        if slot.cycle > position.total_cycles:
            changed = await self._complete_position(position)
            return (AccrualOutcome.COMPLETED if changed else AccrualOutcome.SKIPPED), Decimal("0")

        amount = daily_benefit_amount(position.principal, position.daily_rate)
        try:
            credited = await self._credit_benefit(position, slot, run_date, amount)
        except IntegrityError:
            if not await self._entry_exists(position.id, slot, run_date):
                raise
            # Another worker inserted the same entry first
            self.logger.info(
                "Benefit already recorded concurrently",
                position_id=position.id,
                cycle=slot.cycle,
                day=slot.day
            )
            return AccrualOutcome.SKIPPED, Decimal("0")

        if not credited:
            return AccrualOutcome.SKIPPED, Decimal("0")

        await notify_safely(
            self.notifier,
            "benefit_credited",
            user_id=position.user_id,
            position_id=position.id,
            amount=amount,
            currency=position.currency,
            cycle=slot.cycle,
            day=slot.day
        )
        return AccrualOutcome.PROCESSED, amount

    async def _credit_benefit(
        self,
        position: Position,
        slot: BenefitSlot,
        run_date: date,
        amount: Decimal
    ) -> bool:
        now = self.clock.now()
        async with self.session_factory() as session:
            async with session.begin():
                existing = await session.execute(_entry_lookup(position.id, slot, run_date))
                if existing.scalar_one_or_none() is not None:
                    return False

                entry = BenefitLedgerEntry(
                    position_id=position.id,
                    user_id=position.user_id,
                    cycle=slot.cycle,
                    day=slot.day,
                    amount=amount,
                    currency=position.currency,
                    daily_rate=position.daily_rate,
                    base_amount=position.principal,
                    scheduled_date=run_date,
                    status=BenefitStatus.PROCESSED.value,
                    processed_at=now,
                )
                session.add(entry)
                await session.flush()

                tx = await self.balances.credit(
                    session,
                    user_id=position.user_id,
                    currency=position.currency,
                    amount=amount,
                    transaction_type=TransactionType.DAILY_BENEFIT.value,
                    reference_type="benefit_ledger",
                    reference_id=entry.id,
                    position_id=position.id,
                    description=f"Daily benefit cycle {slot.cycle} day {slot.day}",
                )
                entry.transaction_id = tx.id

                await session.execute(
                    update(Position)
                    .where(Position.id == position.id)
                    .values(
                        current_cycle=slot.cycle,
                        current_day=slot.day,
                        total_benefits_paid=Position.total_benefits_paid + amount,
                        last_accrual_date=run_date,
                        updated_at=now,
                    )
                )
        return True

    async def _entry_exists(self, position_id: int, slot: BenefitSlot, run_date: date) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(_entry_lookup(position_id, slot, run_date))
            return result.scalar_one_or_none() is not None

    async def _complete_position(self, position: Position) -> bool:
        now = self.clock.now()
        async with self.session_factory() as session:
            result = await session.execute(
                update(Position)
                .where(
                    Position.id == position.id,
                    Position.status == PositionStatus.ACTIVE.value
                )
                .values(
                    status=PositionStatus.COMPLETED.value,
                    completed_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        changed = result.rowcount > 0
        if changed:
            self.logger.info(
                "Position completed all cycles",
                position_id=position.id,
                user_id=position.user_id,
                total_cycles=position.total_cycles
            )
        return changed
