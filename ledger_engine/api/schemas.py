"""
Pydantic schemas for API responses and requests.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ledger_engine.core.clock import SystemClock


_clock = SystemClock()


class APIResponse(BaseModel):
    """Base API response model."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_clock.now)


class SuccessResponse(APIResponse):
    """Success response model."""
    data: Optional[Any] = None


class ErrorResponse(APIResponse):
    """Error response model."""
    success: bool = False
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class HealthCheckResponse(BaseModel):
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=_clock.now)
    version: str
    services: Dict[str, str] = Field(default_factory=dict)


class RunResultSchema(BaseModel):
    job_type: str
    process_date: date
    outcome: str
    processed: int
    skipped: int
    completed: int
    errors: int
    total_amount: Decimal
    reason: Optional[str] = None


class ProcessingRecordSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_type: str
    process_date: date
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    processed_count: int
    skipped_count: int
    error_count: int
    total_amount: Decimal
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    triggered_by: str
    actor_id: Optional[str] = None
    attempt_count: int


class WalletAllocationRequest(BaseModel):
    network: Optional[str] = Field(default=None, max_length=20, description="Defaults to the configured network")
    currency: Optional[str] = Field(default=None, max_length=16, description="Defaults to the configured currency")


class WalletAllocationSchema(BaseModel):
    wallet_id: int
    address: str
    network: str
    currency: str


class AddWalletRequest(BaseModel):
    address: str = Field(min_length=1, max_length=128)
    network: str = Field(min_length=1, max_length=20)
    currency: str = Field(min_length=1, max_length=16)
    label: Optional[str] = Field(default=None, max_length=100)


class WalletSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    address: str
    network: str
    currency: str
    status: str
    shown_count: int
    last_shown_at: datetime
    label: Optional[str] = None


def create_success_response(data: Any = None, message: str = None) -> SuccessResponse:
    """Create a success response."""
    return SuccessResponse(data=data, message=message)


def create_error_response(
    message: str,
    error_code: str = None,
    details: Dict[str, Any] = None
) -> ErrorResponse:
    """Create an error response."""
    return ErrorResponse(message=message, error_code=error_code, details=details)


def run_results_payload(results) -> List[Dict[str, Any]]:
    return [RunResultSchema(**r.to_dict()).model_dump(mode="json") for r in results]
