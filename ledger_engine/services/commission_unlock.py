"""
Commission Unlock Engine.

Moves referral commissions from pending to available once their hold
period has elapsed and credits the recipient. The status change, balance
increment and audit record are one transaction per commission.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_engine.core.clock import Clock, SystemClock, day_end_utc, day_start_utc
from ledger_engine.core.config import Settings, settings as default_settings
from ledger_engine.models import Commission, CommissionStatus, TransactionType
from .balances import BalanceService, quantize_money
from .hold_policy import CommissionHoldPolicy
from .notifier import Notifier, NullNotifier, notify_safely
from .types import BatchStats


logger = structlog.get_logger(__name__)


def _money_str(value: Optional[Decimal]) -> str:
    return format(quantize_money(value or 0), "f")


class CommissionUnlockService:
    """Unlocks pending commissions whose unlock date has been reached."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        balances: Optional[BalanceService] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        hold_policy: Optional[CommissionHoldPolicy] = None
    ):
        self.session_factory = session_factory
        self.balances = balances or BalanceService()
        self.notifier = notifier or NullNotifier()
        self.clock = clock or SystemClock()
        self.config = config or default_settings
        self.hold_policy = hold_policy or CommissionHoldPolicy.from_settings(self.config)
        self.logger = logger.bind(service="commission_unlock")

    async def due_commissions(self, run_date: date) -> List[Commission]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Commission)
                .where(
                    Commission.status == CommissionStatus.PENDING.value,
                    Commission.unlock_date <= run_date
                )
                .order_by(Commission.unlock_date, Commission.id)
            )
            return list(result.scalars().all())

    async def process(self, run_date: date, stats: Optional[BatchStats] = None) -> BatchStats:
        """Unlock every pending commission due on or before run_date."""
        stats = stats if stats is not None else BatchStats()
        commissions = await self.due_commissions(run_date)

        self.logger.info(
            "Starting commission unlock",
            process_date=run_date.isoformat(),
            due_commissions=len(commissions)
        )

        for commission in commissions:
            try:
                unlocked = await self.unlock(commission)
            except Exception as e:
                stats.errors += 1
                stats.failed_ids.append(commission.id)
                self.logger.error(
                    "Commission unlock failed",
                    entity_type="commission",
                    entity_id=commission.id,
                    recipient=commission.recipient_user_id,
                    commission_type=commission.commission_type,
                    error=str(e)
                )
                continue

            if unlocked:
                stats.processed += 1
                stats.total_amount += quantize_money(commission.amount)
            else:
                stats.skipped += 1

        self.logger.info(
            "Commission unlock finished",
            process_date=run_date.isoformat(),
            unlocked=stats.processed,
            skipped=stats.skipped,
            errors=stats.errors,
            total_amount=str(stats.total_amount)
        )
        return stats

    async def unlock(self, commission: Commission) -> bool:
        """
        Unlock a single commission.

        Returns False when another worker already moved it out of pending.
        """
        now = self.clock.now()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Commission)
                    .where(
                        Commission.id == commission.id,
                        Commission.status == CommissionStatus.PENDING.value
                    )
                    .values(
                        status=CommissionStatus.AVAILABLE.value,
                        unlocked_at=now,
                        updated_at=now,
                    )
                    .returning(Commission.id)
                )
                if result.scalar_one_or_none() is None:
                    return False

                tx = await self.balances.credit(
                    session,
                    user_id=commission.recipient_user_id,
                    currency=commission.currency,
                    amount=commission.amount,
                    transaction_type=TransactionType.COMMISSION.value,
                    reference_type="commission",
                    reference_id=commission.id,
                    position_id=commission.position_id,
                    description=f"Unlocked {commission.commission_type} commission",
                )
                await session.execute(
                    update(Commission)
                    .where(Commission.id == commission.id)
                    .values(transaction_id=tx.id)
                )

        await notify_safely(
            self.notifier,
            "commission_unlocked",
            user_id=commission.recipient_user_id,
            commission_id=commission.id,
            amount=quantize_money(commission.amount),
            currency=commission.currency
        )
        return True

    async def upcoming_unlocks(self, run_date: date, days: int = 7) -> List[Dict[str, Any]]:
        """Pending commissions unlocking within the next `days` days, grouped by date."""
        horizon = run_date + timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Commission)
                .where(
                    Commission.status == CommissionStatus.PENDING.value,
                    Commission.unlock_date > run_date,
                    Commission.unlock_date <= horizon
                )
                .order_by(Commission.unlock_date, Commission.id)
            )
            commissions = result.scalars().all()

        grouped: Dict[date, Dict[str, Any]] = defaultdict(
            lambda: {"count": 0, "total_amount": Decimal("0"), "by_type": defaultdict(int)}
        )
        for commission in commissions:
            bucket = grouped[commission.unlock_date]
            bucket["count"] += 1
            bucket["total_amount"] += quantize_money(commission.amount)
            bucket["by_type"][commission.commission_type] += 1

        return [
            {
                "unlock_date": unlock_date.isoformat(),
                "count": bucket["count"],
                "total_amount": str(bucket["total_amount"]),
                "by_type": dict(bucket["by_type"]),
            }
            for unlock_date, bucket in sorted(grouped.items())
        ]

    async def unlock_stats(self, run_date: date) -> Dict[str, Any]:
        """
        Unlock activity for a business date.

        Reports commissions unlocked during run_date, pending commissions
        already due, and counts and amounts per status.
        """
        tz = self.config.tzinfo
        day_start, day_end = day_start_utc(run_date, tz), day_end_utc(run_date, tz)

        async with self.session_factory() as session:
            unlocked_count, unlocked_amount = (await session.execute(
                select(func.count(Commission.id), func.sum(Commission.amount))
                .where(
                    Commission.unlocked_at >= day_start,
                    Commission.unlocked_at < day_end
                )
            )).one()

            ready_count, ready_amount = (await session.execute(
                select(func.count(Commission.id), func.sum(Commission.amount))
                .where(
                    Commission.status == CommissionStatus.PENDING.value,
                    Commission.unlock_date <= run_date
                )
            )).one()

            by_status = (await session.execute(
                select(Commission.status, func.count(Commission.id), func.sum(Commission.amount))
                .group_by(Commission.status)
                .order_by(Commission.status)
            )).all()

        return {
            "process_date": run_date.isoformat(),
            "unlocked_count": unlocked_count,
            "unlocked_amount": _money_str(unlocked_amount),
            "ready_count": ready_count,
            "ready_amount": _money_str(ready_amount),
            "by_status": {
                status: {"count": count, "total_amount": _money_str(amount)}
                for status, count, amount in by_status
            },
        }

    async def create_commission(
        self,
        recipient_user_id: str,
        source_user_id: str,
        commission_type: str,
        amount: Decimal,
        currency: str = "USDT",
        position_id: Optional[int] = None
    ) -> Commission:
        """Record a new pending commission with its unlock date from the hold policy."""
        now = self.clock.now()
        commission = Commission(
            recipient_user_id=recipient_user_id,
            source_user_id=source_user_id,
            commission_type=commission_type,
            amount=quantize_money(amount),
            currency=currency,
            position_id=position_id,
            status=CommissionStatus.PENDING.value,
            unlock_date=self.hold_policy.unlock_date_for(commission_type, now),
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(commission)
            await session.commit()

        self.logger.info(
            "Commission created",
            commission_id=commission.id,
            recipient=recipient_user_id,
            commission_type=commission_type,
            unlock_date=commission.unlock_date.isoformat()
        )
        return commission
