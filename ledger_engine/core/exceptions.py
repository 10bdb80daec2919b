"""
Custom exception classes for the ledger engine.
Provides structured error handling across all modules.
"""

from datetime import date
from typing import Any, Optional, Dict


class LedgerEngineException(Exception):
    """Base exception class for the ledger engine."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(LedgerEngineException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(LedgerEngineException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class SchedulerError(LedgerEngineException):
    """Raised when there's a scheduler error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SCHEDULER_ERROR", details)


class ValidationError(LedgerEngineException):
    """Raised when data validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(LedgerEngineException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class ConcurrencyError(LedgerEngineException):
    """
    Raised when another worker owns the work being requested.

    Callers treat these as "skip this trigger", never as failures.
    """


# Daily processing ledger exceptions
class AlreadyCompletedError(ConcurrencyError):
    """Raised when a run for the date has already completed."""

    def __init__(self, job_type: str, process_date: date):
        super().__init__(
            f"Processing of {job_type} for {process_date.isoformat()} already completed",
            "ALREADY_COMPLETED",
            {"job_type": job_type, "process_date": process_date.isoformat()}
        )


class RunInProgressError(ConcurrencyError):
    """Raised when a non-stale run for the date is still processing."""

    def __init__(self, job_type: str, process_date: date):
        super().__init__(
            f"Processing of {job_type} for {process_date.isoformat()} is already in progress",
            "RUN_IN_PROGRESS",
            {"job_type": job_type, "process_date": process_date.isoformat()}
        )


class RunNotOwnedError(ConcurrencyError):
    """Raised when closing a run that is no longer this worker's processing attempt."""

    def __init__(self, job_type: str, process_date: date, status: str):
        super().__init__(
            f"Processing of {job_type} for {process_date.isoformat()} is no longer owned by this worker",
            "RUN_NOT_OWNED",
            {"job_type": job_type, "process_date": process_date.isoformat(), "status": status}
        )


class LockNotAcquiredError(ConcurrencyError):
    """Raised when a job lock is held by another instance."""

    def __init__(self, name: str):
        super().__init__(
            f"Job lock {name} is held by another instance",
            "LOCK_NOT_ACQUIRED",
            {"name": name}
        )


class NoRunStateError(NotFoundError):
    """Raised when closing a run that was never opened."""

    def __init__(self, job_type: str, process_date: date):
        super().__init__(
            f"No processing state found for {job_type} on {process_date.isoformat()}",
            {"job_type": job_type, "process_date": process_date.isoformat()}
        )


class NoWalletsAvailableError(LedgerEngineException):
    """Raised when the wallet pool has no available wallet for a network/currency."""

    def __init__(self, network: str, currency: str):
        super().__init__(
            f"No wallets available for {currency} on {network}",
            "NO_WALLETS_AVAILABLE",
            {"network": network, "currency": currency}
        )


class BatchProcessingError(LedgerEngineException):
    """Raised when a batch run aborts (eligible set or run record unavailable)."""

    def __init__(self, job_type: str, process_date: date, reason: str):
        super().__init__(
            f"Batch {job_type} for {process_date.isoformat()} failed: {reason}",
            "BATCH_PROCESSING_ERROR",
            {"job_type": job_type, "process_date": process_date.isoformat(), "reason": reason}
        )
