"""
Pool of inbound payment addresses shown to users in rotation.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin
from ledger_engine.core.clock import EPOCH


class WalletStatus(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    DISABLED = "disabled"


class Wallet(BaseModel, TimestampMixin):
    """Payment address. Never deleted, only disabled."""

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    address: Mapped[str] = mapped_column(String(128), unique=True, comment="On-chain address")
    network: Mapped[str] = mapped_column(String(20), comment="e.g. BEP20, TRC20")
    currency: Mapped[str] = mapped_column(String(16))

    status: Mapped[str] = mapped_column(String(20), default=WalletStatus.AVAILABLE.value)

    shown_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Times this address was handed out"
    )
    last_shown_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=EPOCH,
        comment="Last allocation time; epoch when never shown"
    )

    label: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        Index("idx_wallet_rotation", "network", "currency", "status", "shown_count", "last_shown_at"),
    )

    def __repr__(self) -> str:
        return f"<Wallet(address={self.address}, network={self.network}, shown={self.shown_count})>"
