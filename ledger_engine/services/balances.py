"""
Balance mutation primitive and audit trail writer.

Balances are only changed by SQL-side increments through an upsert, so
concurrent credits to the same user never lose an update.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_engine.core.database import dialect_insert
from ledger_engine.models import UserBalance, BalanceTransaction


logger = structlog.get_logger(__name__)

MONEY_QUANT = Decimal("0.00000001")


def quantize_money(value: Decimal) -> Decimal:
    """Round to the 8 decimal places money columns store."""
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


class BalanceService:
    """
    Credits user balances. Every method runs inside the caller's session and
    transaction; nothing here commits.
    """

    def __init__(self, processed_by: str = "ledger_engine"):
        self.processed_by = processed_by
        self.logger = logger.bind(service="balance_service")

    async def increment(
        self,
        session: AsyncSession,
        user_id: str,
        currency: str,
        amount: Decimal
    ) -> Decimal:
        """Add amount to available and total. Returns the new available balance."""
        amount = quantize_money(amount)
        stmt = dialect_insert(session, UserBalance).values(
            user_id=user_id,
            currency=currency,
            available=amount,
            total=amount,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserBalance.user_id, UserBalance.currency],
            set_={
                "available": UserBalance.available + amount,
                "total": UserBalance.total + amount,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(UserBalance.available)

        result = await session.execute(stmt)
        return quantize_money(result.scalar_one())

    async def record_transaction(
        self,
        session: AsyncSession,
        user_id: str,
        currency: str,
        transaction_type: str,
        amount: Decimal,
        balance_after: Decimal,
        reference_type: str,
        reference_id: Optional[int] = None,
        position_id: Optional[int] = None,
        description: Optional[str] = None
    ) -> BalanceTransaction:
        """Append the audit record for a credit."""
        tx = BalanceTransaction(
            user_id=user_id,
            currency=currency,
            transaction_type=transaction_type,
            amount=quantize_money(amount),
            balance_after=balance_after,
            reference_type=reference_type,
            reference_id=reference_id,
            position_id=position_id,
            description=description,
            processed_by=self.processed_by,
        )
        session.add(tx)
        await session.flush()
        return tx

    async def credit(
        self,
        session: AsyncSession,
        user_id: str,
        currency: str,
        amount: Decimal,
        transaction_type: str,
        reference_type: str,
        reference_id: Optional[int] = None,
        position_id: Optional[int] = None,
        description: Optional[str] = None
    ) -> BalanceTransaction:
        """Increment the balance and write its audit record."""
        balance_after = await self.increment(session, user_id, currency, amount)
        return await self.record_transaction(
            session,
            user_id=user_id,
            currency=currency,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=balance_after,
            reference_type=reference_type,
            reference_id=reference_id,
            position_id=position_id,
            description=description,
        )

    async def get_balance(self, session: AsyncSession, user_id: str, currency: str) -> Decimal:
        result = await session.execute(
            select(UserBalance.available).where(
                UserBalance.user_id == user_id,
                UserBalance.currency == currency
            )
        )
        value = result.scalar_one_or_none()
        return quantize_money(value) if value is not None else Decimal("0")
