"""
Result and statistics types shared by the ledger services.
"""

from datetime import date, datetime
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class RunOutcome(Enum):
    """How a daily batch trigger ended."""
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass
class RunHandle:
    """Returned by start_run; identifies the processing record owned by this worker."""
    job_type: str
    process_date: date
    started_at: datetime
    attempt_count: int = 1
    recovered: bool = False


@dataclass
class BatchStats:
    """Counters accumulated while a batch runs. Partial values survive a batch failure."""
    processed: int = 0
    skipped: int = 0
    completed: int = 0
    errors: int = 0
    total_amount: Decimal = Decimal("0")
    failed_ids: List[int] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.processed + self.skipped + self.completed + self.errors


@dataclass
class RunResult:
    """Outcome of run_daily_accrual / run_commission_unlock."""
    job_type: str
    process_date: date
    outcome: RunOutcome
    processed: int = 0
    errors: int = 0
    total_amount: Decimal = Decimal("0")
    skipped: int = 0
    completed: int = 0
    reason: Optional[str] = None

    @property
    def unlocked(self) -> int:
        """Commission unlock naming for processed."""
        return self.processed

    @classmethod
    def from_stats(cls, job_type: str, process_date: date, stats: BatchStats) -> "RunResult":
        return cls(
            job_type=job_type,
            process_date=process_date,
            outcome=RunOutcome.COMPLETED,
            processed=stats.processed,
            errors=stats.errors,
            total_amount=stats.total_amount,
            skipped=stats.skipped,
            completed=stats.completed,
        )

    @classmethod
    def skipped_run(cls, job_type: str, process_date: date, reason: str) -> "RunResult":
        return cls(
            job_type=job_type,
            process_date=process_date,
            outcome=RunOutcome.SKIPPED,
            reason=reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_type": self.job_type,
            "process_date": self.process_date.isoformat(),
            "outcome": self.outcome.value,
            "processed": self.processed,
            "skipped": self.skipped,
            "completed": self.completed,
            "errors": self.errors,
            "total_amount": str(self.total_amount),
            "reason": self.reason,
        }


@dataclass
class WalletAllocation:
    wallet_id: int
    address: str
    network: str
    currency: str
    shown_count: int


@dataclass
class RotationStats:
    network: str
    currency: str
    total_wallets: int = 0
    available_wallets: int = 0
    min_shown: int = 0
    max_shown: int = 0
    avg_shown: float = 0.0

    @property
    def rotation_balance(self) -> int:
        return self.max_shown - self.min_shown


class HealthStatus(Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class WalletHealth:
    status: HealthStatus
    issues: List[str]
    stats: RotationStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "issues": list(self.issues),
            "network": self.stats.network,
            "currency": self.stats.currency,
            "total_wallets": self.stats.total_wallets,
            "available_wallets": self.stats.available_wallets,
            "min_shown": self.stats.min_shown,
            "max_shown": self.stats.max_shown,
            "rotation_balance": self.stats.rotation_balance,
        }
