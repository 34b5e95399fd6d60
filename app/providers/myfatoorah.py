from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from app.config import Settings
from app.domain.errors import (
    PaymentError,
    UpstreamError,
    UpstreamNotFound,
    ValidationError,
)
from app.domain.statuses import derive_outcome

from .base import (
    AvailablePaymentMethods,
    CustomerInfo,
    HttpGatewayProvider,
    InboundWebhook,
    PaymentPayload,
    PaymentResult,
    PaymentStatusResult,
    ProviderPaymentMethod,
    WebhookEvent,
    iso_now,
    to_decimal,
)
from .fallback_methods import fallback_payment_methods

logger = logging.getLogger(__name__)

NOT_FOUND_MARKERS = ("no data match", "not found", "does not exist")
HEALTH_SENTINEL_KEY = "00000000-0000-0000-0000-000000000000"


def _normalize_base_url(raw: str) -> str:
    trimmed = (raw or "").strip().rstrip("/")
    if not trimmed:
        return ""
    return f"{trimmed}/" if trimmed.endswith("/v2") else f"{trimmed}/v2/"


class MyFatoorahProvider(HttpGatewayProvider):
    """Invoice based gateway (MyFatoorah API v2).

    Invoices are created with ``SendPayment`` and carry an ``ExpiryDate``
    derived from the configured TTL. Status lookups accept either an
    ``InvoiceId`` or a ``PaymentId``; the two live in different identifier
    spaces, so a miss on the first is retried with the second.
    """

    provider_name = "myfatoorah"
    provider_version = "2.0.0"
    validates_webhooks = True

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = settings.myfatoorah_api_key
        self.base_url = _normalize_base_url(settings.myfatoorah_api_url)
        self.callback_url = settings.myfatoorah_callback_url
        self.error_url = settings.myfatoorah_error_url
        self.invoice_ttl_minutes = settings.myfatoorah_invoice_ttl_minutes
        self.invoice_tz = settings.myfatoorah_tz
        self.ttl_skew_seconds = max(settings.myfatoorah_ttl_skew_seconds, 0)
        self.webhook_secret = settings.myfatoorah_webhook_secret
        super().__init__(
            settings,
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json; charset=utf-8",
                "Accept": "application/json",
            },
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(
            self.api_key
            and self.base_url
            and self.invoice_ttl_minutes > 0
            and self.callback_url
            and self.error_url
        )

    def _error_message(self, resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.text[:512]
        if isinstance(data, dict):
            message = data.get("Message") or ""
            errors = data.get("ValidationErrors") or []
            details = [str(err.get("Error")) for err in errors if isinstance(err, dict) and err.get("Error")]
            if details:
                message = f"{message} ({'; '.join(details)})" if message else "; ".join(details)
            if message:
                return str(message)
        return resp.text[:512]

    def _raise_for_status(self, resp: httpx.Response, operation: str) -> None:
        message = self._error_message(resp)
        if resp.status_code < 500 and _looks_not_found(message):
            raise UpstreamNotFound(
                f"Payment not found in MyFatoorah: {message}",
                provider=self.provider_name,
                upstream_status=resp.status_code,
            )
        super()._raise_for_status(resp, operation)

    async def _request(self, url: str, body: dict[str, Any], operation: str) -> dict[str, Any]:
        envelope = await self._send("POST", url, json=body, operation=operation)
        if not isinstance(envelope, dict):
            raise UpstreamError(f"{operation} failed: unexpected response", provider=self.provider_name)
        if not envelope.get("IsSuccess"):
            message = str(envelope.get("Message") or "Unknown error")
            if _looks_not_found(message):
                raise UpstreamNotFound(f"Payment not found in MyFatoorah: {message}", provider=self.provider_name)
            raise ValidationError(f"{operation} failed: {message}", provider=self.provider_name)
        data = envelope.get("Data")
        if data is None:
            raise UpstreamError(
                f"{operation} failed: 'Data' field missing from MyFatoorah response",
                provider=self.provider_name,
            )
        return data

    def _format_expiry(self) -> str:
        try:
            tz = ZoneInfo(self.invoice_tz)
        except ZoneInfoNotFoundError:
            tz = timezone.utc
        target = datetime.now(tz) + timedelta(minutes=self.invoice_ttl_minutes, seconds=self.ttl_skew_seconds)
        return target.strftime("%Y-%m-%dT%H:%M:%S")

    async def create_payment(self, payload: PaymentPayload) -> PaymentResult:
        if not self.api_key:
            raise ValidationError("MyFatoorah API key is required", provider=self.provider_name)
        if not self.callback_url:
            raise ValidationError(
                "Callback URL is required. Please configure MYFATOORAH_CALLBACK_URL.",
                provider=self.provider_name,
            )
        if not self.error_url:
            raise ValidationError(
                "Error URL is required. Please configure MYFATOORAH_ERROR_URL.",
                provider=self.provider_name,
            )

        body: dict[str, Any] = {
            "NotificationOption": "LNK",
            "InvoiceValue": float(payload.amount),
            "CallBackUrl": self.callback_url,
            "ErrorUrl": self.error_url,
            "Language": "AR",
            "CurrencyIso": payload.currency,
            "Description": payload.description,
            "ClientReferenceId": payload.reference_id,
            "CustomerReference": payload.reference_id,
            "ExpiryDate": self._format_expiry(),
        }
        if payload.payment_method_id:
            body["InvoicePaymentMethods"] = [payload.payment_method_id]
        if payload.customer_name:
            body["CustomerName"] = payload.customer_name
        if payload.customer_email:
            body["CustomerEmail"] = payload.customer_email
        if payload.customer_mobile:
            body["CustomerMobile"] = payload.customer_mobile

        data = await self._request("SendPayment", body, "create MyFatoorah payment")
        invoice_id = data.get("InvoiceId")
        invoice_url = data.get("InvoiceURL")
        if not invoice_id or not invoice_url:
            raise UpstreamError(
                "Payment initiation failed: missing InvoiceURL or InvoiceId",
                provider=self.provider_name,
            )
        logger.info(
            "myfatoorah invoice created",
            extra={"transaction_id": str(invoice_id), "amount": payload.amount, "currency": payload.currency},
        )
        return PaymentResult(id=str(invoice_id), url=str(invoice_url), raw_response=dict(data))

    async def _status_by_key(self, key: str, key_type: str) -> dict[str, Any]:
        if not key:
            raise ValidationError("Key is required", provider=self.provider_name)
        return await self._request(
            "GetPaymentStatus",
            {"Key": key, "KeyType": key_type},
            "get MyFatoorah payment status",
        )

    async def get_payment_status(self, transaction_id: str) -> PaymentStatusResult:
        try:
            data = await self._status_by_key(transaction_id, "InvoiceId")
        except UpstreamNotFound:
            logger.info(
                "invoice id lookup missed, retrying as payment id",
                extra={"provider": self.provider_name, "transaction_id": transaction_id},
            )
            data = await self._status_by_key(transaction_id, "PaymentId")

        attempts = data.get("Payments")
        if attempts is None:
            attempts = data.get("InvoiceTransactions") or []
        attempt_statuses = [
            item.get("PaymentStatus", item.get("TransactionStatus"))
            for item in attempts
            if isinstance(item, dict)
        ]
        first = attempts[0] if attempts and isinstance(attempts[0], dict) else {}
        payment_id = first.get("PaymentId")
        return PaymentStatusResult(
            outcome=derive_outcome(data.get("InvoiceStatus"), attempt_statuses),
            transaction_id=str(data.get("InvoiceId") or transaction_id),
            payment_id=str(payment_id) if payment_id else None,
            amount=to_decimal(data.get("InvoiceValue")),
            currency=first.get("PaymentCurrencyIso") or first.get("Currency"),
            raw=dict(data),
        )

    async def initiate_payment(self, amount: Decimal, currency: str) -> dict[str, Any]:
        if amount is None or amount <= 0:
            raise ValidationError("InvoiceAmount must be greater than 0", provider=self.provider_name)
        if not currency or len(currency) != 3:
            raise ValidationError("CurrencyIso must be a valid 3-letter ISO code", provider=self.provider_name)
        data = await self._request(
            "InitiatePayment",
            {"InvoiceAmount": float(amount), "CurrencyIso": currency},
            "initiate MyFatoorah payment",
        )
        if not isinstance(data.get("PaymentMethods"), list):
            raise UpstreamError(
                "InitiatePayment failed: missing or invalid PaymentMethods array",
                provider=self.provider_name,
            )
        return data

    async def get_available_payment_methods(self, amount: Decimal, currency: str) -> AvailablePaymentMethods:
        try:
            data = await self.initiate_payment(amount, currency)
        except PaymentError as exc:
            logger.warning(
                "myfatoorah methods unavailable, using fallback list",
                extra={"provider": self.provider_name, "reason": exc.message},
            )
            return fallback_payment_methods(amount, currency, "MyFatoorah")

        methods = [
            ProviderPaymentMethod(
                id=method.get("PaymentMethodId"),
                code=str(method.get("PaymentMethodCode") or ""),
                name_en=str(method.get("PaymentMethodEn") or ""),
                name_ar=method.get("PaymentMethodAr"),
                is_direct_payment=bool(method.get("IsDirectPayment")),
                service_charge=to_decimal(method.get("ServiceCharge")),
                total_amount=to_decimal(method.get("TotalAmount")),
                currency=method.get("CurrencyIso"),
                image_url=method.get("ImageUrl"),
                min_limit=to_decimal(method.get("MinLimit")),
                max_limit=to_decimal(method.get("MaxLimit")),
            )
            for method in data["PaymentMethods"]
            if isinstance(method, dict)
        ]
        return AvailablePaymentMethods(payment_methods=methods, invoice_amount=amount, currency=currency)

    async def handle_webhook(self, webhook: InboundWebhook) -> WebhookEvent:
        event = webhook.payload or {}
        data = event.get("Data")
        if not isinstance(data, dict):
            data = event

        attempts = data.get("Payments")
        if isinstance(attempts, list):
            attempt_statuses = [p.get("PaymentStatus") for p in attempts if isinstance(p, dict)]
        elif data.get("TransactionStatus") is not None:
            attempt_statuses = [data.get("TransactionStatus")]
        else:
            attempt_statuses = []

        amount = (
            data.get("InvoiceValue")
            or data.get("InvoiceValueInBaseCurrency")
            or data.get("InvoiceValueInDisplayCurreny")
        )
        currency = data.get("CurrencyIso") or data.get("BaseCurrency") or data.get("DisplayCurrency") or "KWD"
        return WebhookEvent(
            event_type=str(event.get("Event", event.get("EventType", ""))),
            transaction_id=str(data.get("InvoiceId") or ""),
            status=derive_outcome(data.get("InvoiceStatus"), attempt_statuses),
            amount=to_decimal(amount),
            currency=str(currency),
            customer_info=CustomerInfo(
                name=data.get("CustomerName"),
                email=data.get("CustomerEmail"),
                mobile=data.get("CustomerMobile"),
            ),
            raw_data=dict(event),
            timestamp=str(event.get("CreatedDate") or event.get("DateTime") or iso_now()),
        )

    async def validate_webhook(self, webhook: InboundWebhook) -> bool:
        event = webhook.payload or {}
        data = event.get("Data")
        if not isinstance(data, dict) or data.get("InvoiceId") is None:
            return False
        if event.get("Event") is None and event.get("EventType") is None:
            return False
        if not self.webhook_secret:
            return True
        signature = webhook.header("MyFatoorah-Signature")
        if not signature:
            logger.warning("myfatoorah webhook missing signature", extra={"provider": self.provider_name})
            return False
        return hmac.compare_digest(self.sign_webhook_data(data), signature.strip())

    def sign_webhook_data(self, data: dict[str, Any]) -> str:
        """Signature over the ``Data`` object: sorted ``key=value`` pairs joined by commas."""
        parts = []
        for key in sorted(data, key=str.lower):
            value = data[key]
            if isinstance(value, (dict, list)):
                continue
            parts.append(f"{key}={'' if value is None else value}")
        digest = hmac.new(self.webhook_secret.encode(), ",".join(parts).encode(), hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    async def _health_probe(self) -> bool:
        await self._request(
            "GetPaymentStatus",
            {"Key": HEALTH_SENTINEL_KEY, "KeyType": "InvoiceId"},
            "health check",
        )
        return True


def _looks_not_found(message: str) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in NOT_FOUND_MARKERS)
