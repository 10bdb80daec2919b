"""
Referral commissions held for a period before they become withdrawable.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Date, Index, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money


class CommissionType(str, Enum):
    DIRECT = "direct"
    TEAM = "team"
    BINARY = "binary"
    LEADERSHIP = "leadership"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    AVAILABLE = "available"
    WITHDRAWN = "withdrawn"


class Commission(BaseModel, TimestampMixin):
    """Commission earned by a referrer from a referee's position."""

    __tablename__ = "commissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    recipient_user_id: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="User receiving the commission"
    )
    source_user_id: Mapped[str] = mapped_column(
        String(64),
        comment="User whose activity generated the commission"
    )
    position_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("positions.id"))

    commission_type: Mapped[str] = mapped_column(
        String(20),
        comment="direct, team, binary or leadership"
    )

    amount: Mapped[Decimal] = mapped_column(Money)
    currency: Mapped[str] = mapped_column(String(16), default="USDT")

    status: Mapped[str] = mapped_column(String(20), default=CommissionStatus.PENDING.value)

    unlock_date: Mapped[date] = mapped_column(
        Date,
        comment="First business day on which the commission may be unlocked"
    )
    unlocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transaction_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("balance_transactions.id")
    )

    __table_args__ = (
        Index("idx_commission_status_unlock", "status", "unlock_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Commission(id={self.id}, recipient={self.recipient_user_id}, "
            f"type={self.commission_type}, status={self.status})>"
        )
