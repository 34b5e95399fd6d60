from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal
from typing import List, Union

from fastapi import APIRouter, Depends, Query

from app.container import Container
from app.domain.dtos import AvailablePaymentMethodsResponse, HealthCheckResponse, PaymentMethodOut
from app.domain.errors import ValidationError
from app.providers.base import HealthCheckResult
from app.utils.security import verify_bearer_token

from .deps import get_container

router = APIRouter(
    prefix="/payment-methods",
    tags=["payment-methods"],
    dependencies=[Depends(verify_bearer_token)],
)


def _health_out(result: HealthCheckResult) -> HealthCheckResponse:
    return HealthCheckResponse(
        provider=result.provider,
        status=result.status,
        configured=result.configured,
        message=result.message,
        response_time=result.response_time_ms,
        error=result.error,
        timestamp=result.timestamp,
    )


@router.get("/available", response_model=AvailablePaymentMethodsResponse)
async def available_payment_methods(
    amount: Decimal = Query(...),
    currency: str = Query(...),
    provider: str | None = Query(default=None),
    container: Container = Depends(get_container),
) -> AvailablePaymentMethodsResponse:
    if amount <= 0:
        raise ValidationError("amount must be greater than 0")
    if len(currency.strip()) != 3:
        raise ValidationError("currency must be a valid 3-letter ISO code")
    result = await container.router.get_available_payment_methods(amount, currency.strip().upper(), provider)
    return AvailablePaymentMethodsResponse(
        success=result.success,
        fallback=result.fallback,
        payment_methods=[PaymentMethodOut(**asdict(method)) for method in result.payment_methods],
        invoice_amount=result.invoice_amount,
        currency=result.currency,
        message=result.message,
        timestamp=result.timestamp,
    )


@router.get(
    "/health",
    response_model=Union[HealthCheckResponse, List[HealthCheckResponse]],
)
async def providers_health(
    provider: str | None = Query(default=None),
    container: Container = Depends(get_container),
) -> Union[HealthCheckResponse, List[HealthCheckResponse]]:
    result = await container.router.health_check(provider)
    if isinstance(result, list):
        return [_health_out(item) for item in result]
    return _health_out(result)
