"""
User balances and the audit trail of every credit the engine posts.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money


class TransactionType(str, Enum):
    DAILY_BENEFIT = "daily_benefit"
    COMMISSION = "commission"


class UserBalance(BaseModel, TimestampMixin):
    """Per-currency balance aggregate. Only ever changed by SQL-side increments."""

    __tablename__ = "user_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64))
    currency: Mapped[str] = mapped_column(String(16))

    available: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), comment="Lifetime credited")

    __table_args__ = (
        UniqueConstraint("user_id", "currency", name="uq_balance_user_currency"),
    )

    def __repr__(self) -> str:
        return f"<UserBalance(user={self.user_id}, {self.currency}={self.available})>"


class BalanceTransaction(BaseModel, TimestampMixin):
    """Append-only audit record of a balance credit."""

    __tablename__ = "balance_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    currency: Mapped[str] = mapped_column(String(16))

    transaction_type: Mapped[str] = mapped_column(String(30))
    amount: Mapped[Decimal] = mapped_column(Money)
    balance_after: Mapped[Decimal] = mapped_column(Money)

    reference_type: Mapped[str] = mapped_column(String(30), comment="benefit_ledger or commission")
    reference_id: Mapped[Optional[int]] = mapped_column(Integer)
    position_id: Mapped[Optional[int]] = mapped_column(Integer)

    description: Mapped[Optional[str]] = mapped_column(Text)
    processed_by: Mapped[str] = mapped_column(String(40))

    __table_args__ = (
        Index("idx_balance_tx_reference", "reference_type", "reference_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<BalanceTransaction(user={self.user_id}, type={self.transaction_type}, "
            f"amount={self.amount})>"
        )
