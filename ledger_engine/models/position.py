"""
Investment positions that accrue daily benefits.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Date, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money


class PositionStatus(str, Enum):
    """Lifecycle of a position."""
    PENDING_PAYMENT = "pending_payment"
    CONFIRMING = "confirming"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Position(BaseModel, TimestampMixin):
    """A user's funded position with its benefit plan."""

    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Owner of the position"
    )

    principal: Mapped[Decimal] = mapped_column(
        Money,
        comment="Funded amount the daily rate applies to"
    )

    currency: Mapped[str] = mapped_column(String(16), default="USDT")

    status: Mapped[str] = mapped_column(
        String(20),
        default=PositionStatus.PENDING_PAYMENT.value,
        comment="pending_payment, confirming, active, completed, expired, cancelled"
    )

    activated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When payment was confirmed; day zero of the benefit plan"
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Benefit plan
    daily_rate: Mapped[Decimal] = mapped_column(
        Numeric(10, 6),
        default=Decimal("0.125"),
        comment="Fraction of principal paid per benefit day"
    )
    days_per_cycle: Mapped[int] = mapped_column(Integer, default=8)
    total_cycles: Mapped[int] = mapped_column(Integer, default=5)

    # Progress, advanced by the accrual engine only
    current_cycle: Mapped[int] = mapped_column(Integer, default=0)
    current_day: Mapped[int] = mapped_column(Integer, default=0)
    total_benefits_paid: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    last_accrual_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        Index("idx_position_status_activated", "status", "activated_at"),
    )

    def __repr__(self) -> str:
        return f"<Position(id={self.id}, user={self.user_id}, status={self.status})>"

    @property
    def total_benefit_days(self) -> int:
        return self.days_per_cycle * self.total_cycles
