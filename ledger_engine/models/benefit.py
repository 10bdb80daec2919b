"""
Benefit ledger: one immutable row per paid benefit day.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Date, Numeric, Index, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money


class BenefitStatus(str, Enum):
    SCHEDULED = "scheduled"
    PROCESSED = "processed"


class BenefitLedgerEntry(BaseModel, TimestampMixin):
    """Daily benefit paid to a position."""

    __tablename__ = "benefit_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    position_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("positions.id"),
        index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    cycle: Mapped[int] = mapped_column(Integer, comment="1-based cycle number")
    day: Mapped[int] = mapped_column(Integer, comment="1-based day within the cycle")

    amount: Mapped[Decimal] = mapped_column(Money)
    currency: Mapped[str] = mapped_column(String(16))
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 6))
    base_amount: Mapped[Decimal] = mapped_column(Money, comment="Principal the rate was applied to")

    scheduled_date: Mapped[date] = mapped_column(
        Date,
        comment="Business day (reference timezone) this benefit belongs to"
    )

    status: Mapped[str] = mapped_column(String(20), default=BenefitStatus.PROCESSED.value)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transaction_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("balance_transactions.id"),
        comment="Balance transaction that credited this benefit"
    )

    __table_args__ = (
        UniqueConstraint(
            "position_id", "cycle", "day", "scheduled_date",
            name="uq_benefit_position_cycle_day_date"
        ),
        Index("idx_benefit_user_date", "user_id", "scheduled_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<BenefitLedgerEntry(position={self.position_id}, cycle={self.cycle}, "
            f"day={self.day}, amount={self.amount})>"
        )
