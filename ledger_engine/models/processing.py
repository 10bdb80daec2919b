"""
Daily processing records and job locks.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, BigInteger, DateTime, Date, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money


class JobType(str, Enum):
    DAILY_BENEFITS = "daily_benefits"
    COMMISSION_UNLOCK = "commission_unlock"


class RunStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DailyProcessingRecord(BaseModel, TimestampMixin):
    """
    One row per (job_type, process_date).

    The unique constraint is what makes a daily batch run at most once to
    completion, no matter how many workers try.
    """

    __tablename__ = "daily_processing_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    job_type: Mapped[str] = mapped_column(String(40))
    process_date: Mapped[date] = mapped_column(Date, comment="Business day being processed")

    status: Mapped[str] = mapped_column(String(20), default=RunStatus.PROCESSING.value)
    started_at: Mapped[datetime] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Stats
    processed_count: Mapped[int] = mapped_column(Integer, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    total_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger)

    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Metadata
    triggered_by: Mapped[str] = mapped_column(
        String(20),
        default="scheduler",
        comment="scheduler, manual or catchup"
    )
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), comment="Admin who triggered a manual run")
    timezone: Mapped[str] = mapped_column(String(64))
    attempt_count: Mapped[int] = mapped_column(Integer, default=1)

    __table_args__ = (
        UniqueConstraint("job_type", "process_date", name="uq_processing_job_date"),
        Index("idx_processing_status", "status", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyProcessingRecord(job={self.job_type}, date={self.process_date}, "
            f"status={self.status})>"
        )


class JobLock(BaseModel):
    """Time-bounded mutual exclusion across scheduler instances."""

    __tablename__ = "job_locks"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    lock_until: Mapped[datetime] = mapped_column(DateTime, comment="Lock expires at this UTC time")
    owner: Mapped[str] = mapped_column(String(64), comment="Token of the instance holding the lock")
    acquired_at: Mapped[datetime] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<JobLock(name={self.name}, owner={self.owner}, until={self.lock_until})>"
