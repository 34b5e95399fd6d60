from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import HealthStatus, ProviderName
from .statuses import PaymentStatus


class CamelModel(BaseModel):
    """Response/request model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentCreateRequest(CamelModel):
    """Request body for creating a payment."""

    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3, description="ISO 4217 code")
    reference_id: str = Field(..., min_length=1, description="Caller reference (donation/order id)")
    description: str | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_mobile: str | None = None
    payment_method_id: str | int | None = None
    payment_method: str = Field(default="", description="Free-form label stored with the payment")
    provider: ProviderName | None = Field(default=None, description="Defaults to the active provider")
    metadata: Dict[str, str] = Field(default_factory=dict)


class PaymentCreateResponse(CamelModel):
    id: str
    transaction_id: str
    provider: str
    status: PaymentStatus
    payment_url: str | None = None


class PaymentStatusResponse(CamelModel):
    payment_id: str | None = None
    transaction_id: str
    provider: str
    status: PaymentStatus
    outcome: PaymentStatus
    amount: Decimal | None = None
    currency: str | None = None


class PaymentMethodOut(CamelModel):
    id: str | int
    code: str
    name_en: str
    name_ar: str | None = None
    is_direct_payment: bool = False
    service_charge: Decimal | None = None
    total_amount: Decimal | None = None
    currency: str | None = None
    image_url: str | None = None
    min_limit: Decimal | None = None
    max_limit: Decimal | None = None
    note: str | None = None


class AvailablePaymentMethodsResponse(CamelModel):
    success: bool = True
    fallback: bool = False
    payment_methods: List[PaymentMethodOut]
    invoice_amount: Decimal
    currency: str
    message: str | None = None
    timestamp: str


class HealthCheckResponse(CamelModel):
    provider: str
    status: HealthStatus
    configured: bool
    message: str | None = None
    response_time: int | None = Field(default=None, description="Milliseconds")
    error: str | None = None
    timestamp: str


class WebhookAckResponse(CamelModel):
    received: bool = True
    success: bool = True


class ReconciliationRunResponse(CamelModel):
    processed: int
    updated: int
    failed: int
    errors: int
    skipped: bool = False


class ReconcilePaymentResponse(CamelModel):
    success: bool
    updated: bool
    new_status: PaymentStatus | None = None
    message: str


class PendingStatsResponse(CamelModel):
    total_pending: int
    pending_over_timeout: int
    oldest_pending_minutes: int
    cache_size: int
    timeout_minutes: int
    oldest_pending_at: datetime | None = None


class RegisterPaymentRequest(CamelModel):
    payment_id: str
    transaction_id: str
    discovered_at: datetime | None = None


class RegisterPaymentResponse(CamelModel):
    payment_id: str
    transaction_id: str
    discovered_at: datetime
    status: PaymentStatus
    cache_size: int


class ErrorResponse(BaseModel):
    message: str
    details: Dict[str, Any] | None = None
