from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict

import stripe  # type: ignore[import-untyped]

from app.config import Settings
from app.domain.errors import (
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFound,
    ValidationError,
)
from app.domain.statuses import PaymentStatus

from .base import (
    AvailablePaymentMethods,
    CustomerInfo,
    InboundWebhook,
    PaymentPayload,
    PaymentProvider,
    PaymentResult,
    PaymentStatusResult,
    ProviderPaymentMethod,
    WebhookEvent,
    from_minor_units,
    iso_now,
    to_minor_units,
)

logger = logging.getLogger(__name__)

WALLET_METHODS = {"apple_pay", "google_pay"}


def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None) or getattr(obj, "to_dict_recursive", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def intent_outcome(status: str | None) -> PaymentStatus:
    if status == "succeeded":
        return PaymentStatus.PAID
    if status in {"failed", "canceled"}:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def event_outcome(event_type: str, obj: Dict[str, Any]) -> PaymentStatus:
    if event_type == "payment_intent.succeeded":
        return PaymentStatus.PAID
    if event_type in {"payment_intent.payment_failed", "payment_intent.canceled"}:
        return PaymentStatus.FAILED
    if event_type in {"checkout.session.completed", "checkout.session.async_payment_succeeded"}:
        return PaymentStatus.PAID if obj.get("payment_status") == "paid" else PaymentStatus.PENDING
    if event_type in {"checkout.session.expired", "checkout.session.async_payment_failed"}:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


class StripeIntentsProvider(PaymentProvider):
    """Stripe PaymentIntents implementation.

    create_payment(): creates a PaymentIntent, or a Checkout Session when
    success/cancel URLs are configured, and returns its id and redirect URL.
    get_payment_status(): retrieves the intent (or session) and maps its status.
    """

    provider_name = "stripe"
    provider_version = "1.0.0"
    validates_webhooks = True

    def __init__(self, settings: Settings):
        self.settings = settings
        self.secret_key = settings.stripe_secret_key
        self.webhook_secret = settings.stripe_webhook_secret
        self.api_version = settings.stripe_api_version
        self.success_url = settings.stripe_success_url
        self.cancel_url = settings.stripe_cancel_url
        self.timeout = settings.provider_timeout_seconds

    def is_configured(self) -> bool:
        return bool(self.secret_key and self.secret_key.strip())

    def _request_options(self) -> Dict[str, Any]:
        return {"api_key": self.secret_key, "stripe_version": self.api_version}

    async def _call(self, operation: str, fn: Callable[[], Any]) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(asyncio.to_thread(fn), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamError(f"{operation} timed out", provider=self.provider_name) from exc
        except stripe.StripeError as exc:
            status_code = getattr(exc, "http_status", None)
            message = getattr(exc, "user_message", None) or str(exc)
            logger.info(
                "stripe error",
                extra={"provider": self.provider_name, "event": operation, "response_code": status_code},
            )
            if status_code in (401, 403):
                raise UpstreamAuthError(
                    f"Stripe authentication failed. Original error: {message}",
                    provider=self.provider_name,
                    upstream_status=status_code,
                ) from exc
            if status_code == 404:
                raise UpstreamNotFound(
                    f"Stripe resource not found. Original error: {message}",
                    provider=self.provider_name,
                    upstream_status=status_code,
                ) from exc
            raise UpstreamError(
                f"Failed to {operation}: {message}",
                provider=self.provider_name,
                upstream_status=status_code,
            ) from exc
        logger.debug(
            "stripe response",
            extra={
                "provider": self.provider_name,
                "event": operation,
                "response_time_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return _as_dict(result)

    async def create_payment(self, payload: PaymentPayload) -> PaymentResult:
        if not self.is_configured():
            raise ValidationError(
                "Stripe service is not configured. Please configure STRIPE_SECRET_KEY.",
                provider=self.provider_name,
            )
        currency = (payload.currency or "usd").lower()
        amount = to_minor_units(payload.amount, currency)
        metadata: Dict[str, str] = {"referenceId": str(payload.reference_id), **payload.metadata}
        if payload.customer_name:
            metadata["customerName"] = payload.customer_name
        description = payload.description or f"Payment for {payload.reference_id}"
        options = self._request_options()

        if self.success_url and self.cancel_url:
            session_kwargs: Dict[str, Any] = {
                "mode": "payment",
                "success_url": self.success_url.replace("{referenceId}", str(payload.reference_id)),
                "cancel_url": self.cancel_url.replace("{referenceId}", str(payload.reference_id)),
                "line_items": [
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": description},
                            "unit_amount": amount,
                        },
                        "quantity": 1,
                    }
                ],
                "metadata": metadata,
                "payment_intent_data": {"metadata": metadata},
            }
            if payload.customer_email:
                session_kwargs["customer_email"] = payload.customer_email
            session = await self._call(
                "create Stripe checkout session",
                lambda: stripe.checkout.Session.create(**session_kwargs, **options),
            )
            if not session.get("id"):
                raise UpstreamError("Stripe checkout session creation failed: id not received", provider=self.provider_name)
            logger.info(
                "stripe session created",
                extra={"transaction_id": session["id"], "amount": payload.amount, "currency": payload.currency},
            )
            return PaymentResult(id=str(session["id"]), url=session.get("url"), raw_response=session)

        intent_kwargs: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "description": description,
            "metadata": metadata,
            "payment_method_types": ["card"],
        }
        if payload.customer_email:
            intent_kwargs["receipt_email"] = payload.customer_email
        if payload.payment_method_id:
            method_id = str(payload.payment_method_id)
            if method_id in WALLET_METHODS:
                intent_kwargs["payment_method_types"] = ["card", "apple_pay", "google_pay"]
            else:
                intent_kwargs["payment_method"] = method_id
                intent_kwargs["confirmation_method"] = "manual"
                intent_kwargs["confirm"] = True

        intent = await self._call(
            "create Stripe payment intent",
            lambda: stripe.PaymentIntent.create(**intent_kwargs, **options),
        )
        if not intent.get("id"):
            raise UpstreamError(
                "Stripe payment intent creation failed: Payment Intent ID not received",
                provider=self.provider_name,
            )
        logger.info(
            "stripe intent created",
            extra={"transaction_id": intent["id"], "amount": payload.amount, "currency": payload.currency},
        )
        return PaymentResult(id=str(intent["id"]), url=intent.get("client_secret"), raw_response=intent)

    async def get_payment_status(self, transaction_id: str) -> PaymentStatusResult:
        if not transaction_id:
            raise ValidationError("Transaction ID is required", provider=self.provider_name)
        options = self._request_options()
        try:
            if transaction_id.startswith("cs_"):
                session = await self._call(
                    "get Stripe checkout session status",
                    lambda: stripe.checkout.Session.retrieve(transaction_id, expand=["payment_intent"], **options),
                )
                expanded = session.get("payment_intent")
                intent = expanded if isinstance(expanded, dict) else {}
                outcome = intent_outcome(intent.get("status"))
                if session.get("payment_status") == "paid":
                    outcome = PaymentStatus.PAID
                elif session.get("status") == "expired" and outcome is PaymentStatus.PENDING:
                    outcome = PaymentStatus.FAILED
                currency = str(session.get("currency") or "")
                total = session.get("amount_total")
                return PaymentStatusResult(
                    outcome=outcome,
                    transaction_id=str(session.get("id") or transaction_id),
                    payment_id=intent.get("id"),
                    amount=from_minor_units(total, currency) if total is not None else None,
                    currency=currency.upper() or None,
                    raw=session,
                )
            intent = await self._call(
                "get Stripe payment intent status",
                lambda: stripe.PaymentIntent.retrieve(transaction_id, **options),
            )
        except UpstreamNotFound:
            return PaymentStatusResult(
                outcome=PaymentStatus.PENDING,
                transaction_id=transaction_id,
                raw={"message": "Payment intent not found, may still be processing"},
            )

        currency = str(intent.get("currency") or "")
        amount = intent.get("amount")
        return PaymentStatusResult(
            outcome=intent_outcome(intent.get("status")),
            transaction_id=str(intent.get("id") or transaction_id),
            payment_id=intent.get("latest_charge") if isinstance(intent.get("latest_charge"), str) else None,
            amount=from_minor_units(amount, currency) if amount is not None else None,
            currency=currency.upper() or None,
            raw=intent,
        )

    async def get_available_payment_methods(self, amount: Decimal, currency: str) -> AvailablePaymentMethods:
        methods = [
            ProviderPaymentMethod(
                id="card",
                code="CARD",
                name_en="Credit/Debit Card",
                name_ar="بطاقة ائتمان/خصم",
                service_charge=Decimal("0"),
                total_amount=amount,
                currency=currency,
                note="Visa, Mastercard, American Express, and other card networks",
            ),
            ProviderPaymentMethod(
                id="apple_pay",
                code="APPLE_PAY",
                name_en="Apple Pay",
                name_ar="ابل باي",
                is_direct_payment=True,
                service_charge=Decimal("0"),
                total_amount=amount,
                currency=currency,
                note="Available on supported devices",
            ),
            ProviderPaymentMethod(
                id="google_pay",
                code="GOOGLE_PAY",
                name_en="Google Pay",
                name_ar="جوجل باي",
                is_direct_payment=True,
                service_charge=Decimal("0"),
                total_amount=amount,
                currency=currency,
                note="Available on supported devices",
            ),
        ]
        return AvailablePaymentMethods(
            payment_methods=methods,
            invoice_amount=amount,
            currency=currency,
            message="Payment methods retrieved. Actual availability depends on the Stripe account configuration.",
        )

    async def handle_webhook(self, webhook: InboundWebhook) -> WebhookEvent:
        event = webhook.payload or {}
        event_type = str(event.get("type") or "")
        obj = (event.get("data") or {}).get("object") or {}
        currency = str(obj.get("currency") or "")
        amount = obj.get("amount", obj.get("amount_total"))
        created = event.get("created")
        if isinstance(created, (int, float)):
            timestamp = datetime.fromtimestamp(created, tz=timezone.utc).isoformat()
        else:
            timestamp = iso_now()
        details = obj.get("customer_details") or {}
        return WebhookEvent(
            event_type=event_type,
            transaction_id=str(obj.get("id") or ""),
            status=event_outcome(event_type, obj),
            amount=from_minor_units(amount, currency) if isinstance(amount, int) else None,
            currency=currency.upper() or None,
            customer_info=CustomerInfo(
                email=obj.get("receipt_email") or obj.get("customer_email") or details.get("email"),
                name=(obj.get("metadata") or {}).get("customerName") or details.get("name"),
            ),
            raw_data=dict(event),
            timestamp=timestamp,
        )

    async def validate_webhook(self, webhook: InboundWebhook) -> bool:
        if not self.webhook_secret:
            event = webhook.payload or {}
            return bool(event.get("id") and event.get("type") and event.get("data"))
        signature = webhook.header("Stripe-Signature")
        if not signature:
            logger.warning("stripe webhook missing signature", extra={"provider": self.provider_name})
            return False
        try:
            stripe.Webhook.construct_event(webhook.body, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning(
                "stripe webhook signature rejected",
                extra={"provider": self.provider_name, "reason": str(exc)},
            )
            return False
        return True

    async def _health_probe(self) -> bool:
        options = self._request_options()
        await self._call("health check", lambda: stripe.Balance.retrieve(**options))
        return True
