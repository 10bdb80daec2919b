"""
Cron-driven triggers for the daily ledger batches and wallet health checks.
"""

from .adapter import LedgerScheduler, RunState, JobSchedule, SchedulerStatus

__all__ = ["LedgerScheduler", "RunState", "JobSchedule", "SchedulerStatus"]
