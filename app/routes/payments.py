from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status

from app.container import Container
from app.domain.dtos import PaymentCreateRequest, PaymentCreateResponse, PaymentStatusResponse
from app.domain.enums import ProviderName
from app.utils.security import verify_bearer_token

from .deps import get_container

router = APIRouter(prefix="/payments", tags=["payments"], dependencies=[Depends(verify_bearer_token)])
logger = logging.getLogger(__name__)


@router.post("", response_model=PaymentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: PaymentCreateRequest,
    container: Container = Depends(get_container),
) -> PaymentCreateResponse:
    logger.info(
        "create payment requested",
        extra={
            "endpoint": "/payments",
            "method": "POST",
            "amount": body.amount,
            "currency": body.currency,
            "provider": body.provider.value if body.provider else None,
        },
    )
    return await container.payments.create_payment(body)


@router.get("/{transaction_id}/status", response_model=PaymentStatusResponse)
async def payment_status(
    transaction_id: str,
    provider: ProviderName | None = Query(default=None),
    container: Container = Depends(get_container),
) -> PaymentStatusResponse:
    logger.info(
        "status requested",
        extra={"endpoint": "/payments/{transaction_id}/status", "transaction_id": transaction_id},
    )
    return await container.payments.check_status(transaction_id, provider.value if provider else None)
