"""
Database models for the referral ledger engine.
"""

from .base import Base, BaseModel, TimestampMixin
from .position import Position, PositionStatus
from .benefit import BenefitLedgerEntry, BenefitStatus
from .commission import Commission, CommissionType, CommissionStatus
from .wallet import Wallet, WalletStatus
from .processing import DailyProcessingRecord, JobLock, JobType, RunStatus
from .balance import UserBalance, BalanceTransaction, TransactionType

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "Position",
    "PositionStatus",
    "BenefitLedgerEntry",
    "BenefitStatus",
    "Commission",
    "CommissionType",
    "CommissionStatus",
    "Wallet",
    "WalletStatus",
    "DailyProcessingRecord",
    "JobLock",
    "JobType",
    "RunStatus",
    "UserBalance",
    "BalanceTransaction",
    "TransactionType",
]
