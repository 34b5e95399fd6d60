from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.container import Container
from app.domain.dtos import (
    PendingStatsResponse,
    ReconcilePaymentResponse,
    ReconciliationRunResponse,
    RegisterPaymentRequest,
    RegisterPaymentResponse,
)
from app.utils.security import verify_bearer_token

from .deps import get_container

router = APIRouter(
    prefix="/reconciliation",
    tags=["reconciliation"],
    dependencies=[Depends(verify_bearer_token)],
)
logger = logging.getLogger(__name__)


@router.post("/run", response_model=ReconciliationRunResponse)
async def run_reconciliation(container: Container = Depends(get_container)) -> ReconciliationRunResponse:
    logger.info("manual reconciliation run", extra={"endpoint": "/reconciliation/run", "method": "POST"})
    summary = await container.reconciliation.run_once()
    return ReconciliationRunResponse(
        processed=summary.processed,
        updated=summary.updated,
        failed=summary.failed,
        errors=summary.errors,
        skipped=summary.skipped,
    )


@router.post("/run/{payment_id}", response_model=ReconcilePaymentResponse)
async def reconcile_payment(
    payment_id: str,
    container: Container = Depends(get_container),
) -> ReconcilePaymentResponse:
    result = await container.reconciliation.reconcile_payment_by_id(payment_id)
    return ReconcilePaymentResponse(**asdict(result))


@router.get("/stats", response_model=PendingStatsResponse)
async def reconciliation_stats(container: Container = Depends(get_container)) -> PendingStatsResponse:
    return PendingStatsResponse(**asdict(container.reconciliation.get_pending_stats()))


@router.post("/register", response_model=RegisterPaymentResponse)
async def register_payment(
    body: RegisterPaymentRequest,
    container: Container = Depends(get_container),
) -> RegisterPaymentResponse:
    entry = container.reconciliation.register_new_payment(body.payment_id, body.transaction_id, body.discovered_at)
    return RegisterPaymentResponse(
        payment_id=entry.payment_id,
        transaction_id=entry.transaction_id,
        discovered_at=entry.discovered_at,
        status=entry.status,
        cache_size=len(container.reconciliation.cache),
    )
