from __future__ import annotations

import logging
from typing import Callable, Optional

from app.domain.dtos import PaymentCreateRequest, PaymentCreateResponse, PaymentStatusResponse
from app.domain.errors import UpstreamNotFound
from app.domain.models import Payment, PaymentNotification
from app.domain.statuses import PaymentStatus
from app.providers.base import PaymentPayload
from app.repositories.stores import PaymentStore

from .notifications import NotificationService
from .payment_router import PaymentRouter

RegistrationHook = Callable[[str, str], object]


class PaymentsService:
    """Business logic for payments."""

    def __init__(
        self,
        store: PaymentStore,
        router: PaymentRouter,
        notifications: NotificationService,
        on_created: Optional[RegistrationHook] = None,
    ):
        self.store = store
        self.router = router
        self.notifications = notifications
        self.on_created = on_created
        self.logger = logging.getLogger(__name__)

    async def create_payment(self, request: PaymentCreateRequest) -> PaymentCreateResponse:
        payload = PaymentPayload(
            amount=request.amount,
            currency=request.currency.upper(),
            reference_id=request.reference_id,
            description=request.description,
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            customer_mobile=request.customer_mobile,
            payment_method_id=request.payment_method_id,
            metadata=dict(request.metadata),
        )
        provider_type = request.provider.value if request.provider else None
        provider_name, result = await self.router.create_payment(payload, provider_type)

        raw = dict(result.raw_response or {})
        raw["provider"] = provider_name
        payment = Payment(
            amount=payload.amount,
            currency=payload.currency,
            transaction_id=result.id,
            payment_method=request.payment_method or str(request.payment_method_id or ""),
            provider=provider_name,
            payment_url=result.url,
            reference_id=request.reference_id,
            raw_response=raw,
        )
        payment = self.store.create(payment)
        self.logger.info(
            "payment stored",
            extra={
                "payment_id": payment.id,
                "transaction_id": payment.transaction_id,
                "provider": provider_name,
                "status": payment.status.value,
            },
        )
        if self.on_created is not None:
            try:
                self.on_created(payment.id, payment.transaction_id)
            except Exception as exc:  # noqa: BLE001
                self.logger.info(
                    "reconciliation registration error",
                    extra={"payment_id": payment.id, "event": str(exc)},
                )
        return PaymentCreateResponse(
            id=payment.id,
            transaction_id=payment.transaction_id,
            provider=provider_name,
            status=payment.status,
            payment_url=payment.payment_url,
        )

    async def check_status(self, transaction_id: str, provider_type: str | None = None) -> PaymentStatusResponse:
        """Query the gateway and apply a terminal outcome to the stored payment."""
        payment = self.store.find_by_transaction_id(transaction_id)
        if provider_type is None and payment is not None:
            provider_type = payment.provider
        provider_name, _ = self.router.provider_for(provider_type)

        try:
            result = await self.router.get_status(transaction_id, provider_name)
        except UpstreamNotFound:
            self.logger.info(
                "payment not found at provider",
                extra={"transaction_id": transaction_id, "provider": provider_name},
            )
            raise

        status = payment.status if payment else result.outcome
        if payment is not None and payment.status is PaymentStatus.PENDING and result.outcome.is_terminal:
            raw = dict(payment.raw_response or {})
            raw["last_status_check"] = result.raw
            applied = self.store.update(
                payment.id,
                {"status": result.outcome, "raw_response": raw},
                expected_status=PaymentStatus.PENDING,
            )
            if applied:
                status = result.outcome
                self.logger.info(
                    "payment status refreshed",
                    extra={
                        "payment_id": payment.id,
                        "transaction_id": transaction_id,
                        "previous_status": payment.status.value,
                        "status": status.value,
                    },
                )
                self.notifications.notify(
                    PaymentNotification(
                        payment_id=payment.id,
                        transaction_id=transaction_id,
                        status=status,
                        previous_status=payment.status,
                        amount=payment.amount,
                        currency=payment.currency,
                        source="status_check",
                        provider=provider_name,
                    )
                )
            else:
                refreshed = self.store.find_by_transaction_id(transaction_id)
                status = refreshed.status if refreshed else status

        return PaymentStatusResponse(
            payment_id=payment.id if payment else None,
            transaction_id=result.transaction_id or transaction_id,
            provider=provider_name,
            status=status,
            outcome=result.outcome,
            amount=result.amount,
            currency=result.currency,
        )
