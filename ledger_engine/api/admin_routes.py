"""
Admin API routes: manual batch triggers, run status and wallet pool management.
"""

from datetime import date
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from ledger_engine.models import JobType
from ledger_engine.services.engine import LedgerEngine
from .dependencies import get_actor_id, get_engine
from .schemas import (
    AddWalletRequest,
    ProcessingRecordSchema,
    RunResultSchema,
    SuccessResponse,
    WalletAllocationRequest,
    WalletAllocationSchema,
    WalletSchema,
    create_success_response,
    run_results_payload,
)


logger = structlog.get_logger(__name__)

admin_router = APIRouter()
wallets_router = APIRouter()


@admin_router.post(
    "/jobs/{job_type}/run",
    response_model=SuccessResponse,
    summary="Run a daily batch",
    description="Manually trigger daily accrual or commission unlock for a business date"
)
async def run_job(
    job_type: JobType,
    process_date: Optional[date] = Query(default=None, description="Business date, defaults to today"),
    catchup: bool = Query(default=False, description="Also run missed dates since the last completed run"),
    engine: LedgerEngine = Depends(get_engine),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    logger.info(
        "Manual run requested",
        job_type=job_type.value,
        process_date=process_date.isoformat() if process_date else None,
        catchup=catchup,
        actor_id=actor_id
    )

    if catchup:
        results = await engine.run_with_catchup(job_type.value, process_date, "manual", actor_id)
    else:
        results = [await engine.run_job(job_type.value, process_date, "manual", actor_id)]

    return create_success_response(
        data=run_results_payload(results),
        message=f"{job_type.value} run finished"
    )


@admin_router.get(
    "/jobs/{job_type}/runs",
    response_model=SuccessResponse,
    summary="Run history"
)
async def list_runs(
    job_type: JobType,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    engine: LedgerEngine = Depends(get_engine)
):
    records = await engine.get_run_status(job_type.value, start_date, end_date)
    return create_success_response(
        data=[ProcessingRecordSchema.model_validate(r).model_dump(mode="json") for r in records]
    )


@admin_router.post(
    "/jobs/{job_type}/runs/{process_date}/force-restart",
    response_model=SuccessResponse,
    summary="Release a stuck run",
    description="Marks a processing run as failed so the next trigger recovers it"
)
async def force_restart(
    job_type: JobType,
    process_date: date,
    engine: LedgerEngine = Depends(get_engine),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    record = await engine.ledger.force_restart(process_date, job_type.value, actor_id)
    return create_success_response(
        data=ProcessingRecordSchema.model_validate(record).model_dump(mode="json"),
        message="Run released for recovery"
    )


@admin_router.get(
    "/commissions/upcoming",
    response_model=SuccessResponse,
    summary="Commissions unlocking soon"
)
async def upcoming_unlocks(
    days: int = Query(default=7, ge=1, le=60),
    engine: LedgerEngine = Depends(get_engine)
):
    data = await engine.commissions.upcoming_unlocks(engine.today(), days)
    return create_success_response(data=data)


@admin_router.get(
    "/commissions/unlock-stats",
    response_model=SuccessResponse,
    summary="Commission unlock statistics for a business date"
)
async def unlock_stats(
    process_date: Optional[date] = Query(default=None, description="Business date, defaults to today"),
    engine: LedgerEngine = Depends(get_engine)
):
    data = await engine.commissions.unlock_stats(process_date or engine.today())
    return create_success_response(data=data)


@admin_router.get(
    "/wallets/health",
    response_model=SuccessResponse,
    summary="Wallet pool health"
)
async def wallet_health(
    network: Optional[str] = Query(default=None),
    currency: Optional[str] = Query(default=None),
    engine: LedgerEngine = Depends(get_engine)
):
    health = await engine.wallets.check_health(
        network or engine.config.default_network,
        currency or engine.config.default_currency
    )
    return create_success_response(data=health.to_dict())


@admin_router.post(
    "/wallets",
    response_model=SuccessResponse,
    summary="Add a wallet to the pool"
)
async def add_wallet(
    request: AddWalletRequest,
    engine: LedgerEngine = Depends(get_engine),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    wallet = await engine.wallets.add_wallet(
        request.address, request.network, request.currency, request.label
    )
    logger.info("Wallet added via admin", wallet_id=wallet.id, actor_id=actor_id)
    return create_success_response(data=WalletSchema.model_validate(wallet).model_dump(mode="json"))


@admin_router.post(
    "/wallets/{wallet_id}/disable",
    response_model=SuccessResponse,
    summary="Take a wallet out of rotation"
)
async def disable_wallet(
    wallet_id: int,
    engine: LedgerEngine = Depends(get_engine),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    wallet = await engine.wallets.disable_wallet(wallet_id)
    logger.info("Wallet disabled via admin", wallet_id=wallet_id, actor_id=actor_id)
    return create_success_response(data=WalletSchema.model_validate(wallet).model_dump(mode="json"))


@admin_router.post(
    "/wallets/rebalance",
    response_model=SuccessResponse,
    summary="Reset over-shown wallets to the pool minimum"
)
async def rebalance_wallets(
    network: Optional[str] = Query(default=None),
    currency: Optional[str] = Query(default=None),
    engine: LedgerEngine = Depends(get_engine),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    changed = await engine.wallets.rebalance(
        network or engine.config.default_network,
        currency or engine.config.default_currency
    )
    logger.info("Wallet rebalance via admin", wallets_reset=changed, actor_id=actor_id)
    return create_success_response(data={"wallets_reset": changed})


@wallets_router.post(
    "/allocate",
    response_model=SuccessResponse,
    summary="Allocate a payment address"
)
async def allocate_wallet(
    request: WalletAllocationRequest,
    engine: LedgerEngine = Depends(get_engine)
):
    allocation = await engine.allocate_wallet(request.network, request.currency)
    return create_success_response(
        data=WalletAllocationSchema(
            wallet_id=allocation.wallet_id,
            address=allocation.address,
            network=allocation.network,
            currency=allocation.currency,
        ).model_dump()
    )
