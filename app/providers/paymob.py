from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List

import httpx

from app.config import Settings
from app.domain.errors import UpstreamError, UpstreamNotFound, ValidationError
from app.domain.statuses import PaymentStatus

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
    from_minor_units,
    iso_now,
    to_minor_units,
)

logger = logging.getLogger(__name__)

AUTH_TOKEN_TTL = timedelta(hours=23)
PAYMENT_KEY_EXPIRATION_SECONDS = 3600

# Field order of the transaction callback HMAC
HMAC_FIELDS = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
)


@dataclass(frozen=True)
class CountryConfig:
    base_url: str
    intention_api_url: str
    default_currency: str


COUNTRY_CONFIGS: Dict[str, CountryConfig] = {
    "EGYPT": CountryConfig("https://accept.paymob.com/api", "https://accept.paymob.com/v1/intention", "EGP"),
    "SAUDI_ARABIA": CountryConfig("https://ksa.paymob.com/api", "https://ksa.paymob.com/v1/intention", "SAR"),
    "UAE": CountryConfig("https://uae.paymob.com/api", "https://uae.paymob.com/v1/intention", "AED"),
    "OMAN": CountryConfig("https://oman.paymob.com/api", "https://oman.paymob.com/v1/intention", "OMR"),
    "PAKISTAN": CountryConfig("https://pakistan.paymob.com/api", "https://pakistan.paymob.com/v1/intention", "PKR"),
}


def _join(base: str, path: str) -> str:
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def _lookup(data: Dict[str, Any], dotted: str) -> Any:
    value: Any = data
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _hmac_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def transaction_outcome(txn: Dict[str, Any]) -> PaymentStatus:
    """Map a wallet transaction to an outcome.

    Explicit string statuses win. Otherwise ``success``/``pending`` flags
    decide, and only explicit ``False`` flags count as a failure so that
    objects without flags (intentions) stay pending.
    """
    text = str(txn.get("status") or "").strip().lower()
    if text in {"paid", "success"}:
        return PaymentStatus.PAID
    if text in {"failed", "error", "canceled", "cancelled"}:
        return PaymentStatus.FAILED
    if txn.get("success") is True and not txn.get("pending"):
        return PaymentStatus.PAID
    if txn.get("error_occured") is True:
        return PaymentStatus.FAILED
    if txn.get("success") is False and txn.get("pending") is False:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


class PayMobProvider(HttpGatewayProvider):
    """Wallet gateway (PayMob Accept).

    The Intention API is used whenever a secret key is configured; otherwise
    the legacy flow runs: auth token, order, payment key, iframe URL.
    """

    provider_name = "paymob"
    provider_version = "1.0.0"
    validates_webhooks = True

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        country = (settings.paymob_country or "EGYPT").upper()
        defaults = COUNTRY_CONFIGS.get(country, COUNTRY_CONFIGS["EGYPT"])
        self.country = country
        self.api_key = settings.paymob_api_key
        self.secret_key = settings.paymob_secret_key
        self.base_url = settings.paymob_base_url or defaults.base_url
        self.intention_url = settings.paymob_intention_api_url or defaults.intention_api_url
        self.integration_id = settings.paymob_integration_id
        self.iframe_id = settings.paymob_iframe_id
        self.callback_url = settings.paymob_callback_url
        self.notification_url = settings.paymob_notification_url
        self.hmac_secret = settings.paymob_hmac_secret
        self.default_currency = settings.paymob_default_currency or defaults.default_currency
        self.fallback_phone = settings.paymob_fallback_phone
        self._auth_token: str | None = None
        self._auth_token_expiry: datetime | None = None
        super().__init__(
            settings,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )

    @property
    def uses_intention_api(self) -> bool:
        return bool(self.secret_key and self.intention_url)

    def is_configured(self) -> bool:
        has_auth = bool(self.secret_key or self.api_key)
        has_base = bool(self.base_url or self.intention_url)
        has_config = bool(self.integration_id or self.callback_url)
        return has_auth and has_base and has_config

    def _intention_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self.secret_key}"}

    async def authenticate(self) -> str:
        now = datetime.now(timezone.utc)
        if self._auth_token and self._auth_token_expiry and self._auth_token_expiry > now:
            return self._auth_token
        self._auth_token = None
        self._auth_token_expiry = None
        data = await self._send(
            "POST",
            _join(self.base_url, "auth/tokens"),
            json={"api_key": self.api_key},
            operation="PayMob authentication",
        )
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise UpstreamError("PayMob authentication failed: Token not received", provider=self.provider_name)
        self._auth_token = str(token)
        self._auth_token_expiry = now + AUTH_TOKEN_TTL
        logger.debug("paymob authentication successful", extra={"provider": self.provider_name})
        return self._auth_token

    def _billing_data(self, payload: PaymentPayload) -> Dict[str, str]:
        first_name, last_name = _split_name(payload.customer_name)
        return {
            "apartment": "NA",
            "email": payload.customer_email or "",
            "floor": "NA",
            "first_name": first_name,
            "street": "NA",
            "building": "NA",
            "phone_number": payload.customer_mobile or self.fallback_phone,
            "shipping_method": "UNK",
            "postal_code": "NA",
            "city": "NA",
            "country": "NA",
            "last_name": last_name,
            "state": "NA",
        }

    def _payment_methods(self, payment_method_id: str | int | None) -> List[Any]:
        if payment_method_id is not None and payment_method_id != "":
            if isinstance(payment_method_id, str) and payment_method_id.isdigit():
                return [int(payment_method_id)]
            return [payment_method_id]
        if self.integration_id:
            return [self.integration_id]
        return ["card"]

    def _iframe_url(self, payment_token: str) -> str:
        root = self.base_url.rstrip("/")
        if root.endswith("/api"):
            root = root[: -len("/api")]
        if self.iframe_id:
            return f"{root}/api/acceptance/iframes/{self.iframe_id}?payment_token={payment_token}"
        return f"{root}/api/acceptance/payment_keys/{payment_token}"

    async def create_payment(self, payload: PaymentPayload) -> PaymentResult:
        if self.uses_intention_api:
            return await self._create_intention(payload)

        if not self.api_key:
            raise ValidationError(
                "PayMob API Key is required for legacy flow. Configure PAYMOB_API_KEY or PAYMOB_SECRET_KEY.",
                provider=self.provider_name,
            )
        if not self.callback_url:
            raise ValidationError("Callback URL is required. Please configure PAYMOB_CALLBACK_URL.", provider=self.provider_name)
        if not self.integration_id:
            raise ValidationError(
                "Integration ID is required. Please configure PAYMOB_INTEGRATION_ID.",
                provider=self.provider_name,
            )

        token = await self.authenticate()
        currency = payload.currency or self.default_currency
        amount_cents = to_minor_units(payload.amount, currency)
        description = payload.description or "Payment"

        order = await self._send(
            "POST",
            _join(self.base_url, "ecommerce/orders"),
            json={
                "auth_token": token,
                "delivery_needed": "false",
                "amount_cents": amount_cents,
                "currency": currency,
                "merchant_order_id": payload.reference_id,
                "items": [
                    {"name": description, "amount_cents": amount_cents, "description": description, "quantity": 1}
                ],
            },
            operation="create PayMob order",
        )
        order_id = order.get("id") if isinstance(order, dict) else None
        if not order_id:
            raise UpstreamError("PayMob order creation failed: Order ID not received", provider=self.provider_name)

        key_resp = await self._send(
            "POST",
            _join(self.base_url, "acceptance/payment_keys"),
            json={
                "auth_token": token,
                "amount_cents": amount_cents,
                "expiration": PAYMENT_KEY_EXPIRATION_SECONDS,
                "order_id": order_id,
                "billing_data": self._billing_data(payload),
                "currency": currency,
                "integration_id": self.integration_id,
                "lock_order_when_paid": "false",
            },
            operation="generate PayMob payment key",
        )
        payment_token = key_resp.get("token") if isinstance(key_resp, dict) else None
        if not payment_token:
            raise UpstreamError("PayMob payment key generation failed: Token not received", provider=self.provider_name)

        logger.info(
            "paymob order created",
            extra={"transaction_id": str(order_id), "amount": payload.amount, "currency": currency},
        )
        return PaymentResult(
            id=str(order_id),
            url=self._iframe_url(str(payment_token)),
            raw_response={
                "order_id": order_id,
                "payment_token": payment_token,
                "amount_cents": amount_cents,
                "currency": currency,
            },
        )

    async def _create_intention(self, payload: PaymentPayload) -> PaymentResult:
        currency = payload.currency or self.default_currency
        amount_cents = to_minor_units(payload.amount, currency)
        description = payload.description or "Payment"
        first_name, last_name = _split_name(payload.customer_name)
        customer: Dict[str, str] = {
            "first_name": first_name,
            "last_name": last_name,
            "email": payload.customer_email or "",
        }
        if payload.customer_mobile:
            customer["phone_number"] = payload.customer_mobile

        body: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "payment_methods": self._payment_methods(payload.payment_method_id),
            "items": [{"name": description, "amount": amount_cents, "description": description, "quantity": 1}],
            "billing_data": self._billing_data(payload),
            "customer": customer,
            "extras": {"referenceId": payload.reference_id, **payload.metadata},
            "special_reference": str(payload.reference_id),
        }
        if self.callback_url:
            body["redirection_url"] = self.callback_url
        if self.notification_url:
            body["notification_url"] = self.notification_url

        data = await self._send(
            "POST",
            _join(self.intention_url, ""),
            json=body,
            headers=self._intention_headers(),
            operation="create PayMob intention",
        )
        if not isinstance(data, dict):
            raise UpstreamError("PayMob intention creation failed: unexpected response", provider=self.provider_name)
        keys = data.get("payment_keys") or []
        first_key = keys[0] if keys and isinstance(keys[0], dict) else {}
        payment_key = first_key.get("key") or data.get("client_secret") or data.get("id")
        if not payment_key:
            raise UpstreamError("PayMob intention creation failed: Payment key not received", provider=self.provider_name)

        if self.iframe_id:
            url = self._iframe_url(str(payment_key))
        else:
            url = first_key.get("redirection_url") or data.get("redirection_url")

        intention_id = data.get("id") or payment_key
        logger.info(
            "paymob intention created",
            extra={"transaction_id": str(intention_id), "amount": payload.amount, "currency": currency},
        )
        return PaymentResult(
            id=str(intention_id),
            url=url,
            raw_response={
                "intentionId": data.get("id"),
                "payment_keys": keys,
                "paymentKey": payment_key,
                "amount_cents": amount_cents,
                "currency": currency,
                "response": data,
            },
        )

    async def get_payment_status(self, transaction_id: str) -> PaymentStatusResult:
        if not transaction_id:
            raise ValidationError("Transaction ID is required", provider=self.provider_name)
        try:
            if self.uses_intention_api:
                txn = await self._send(
                    "GET",
                    _join(self.intention_url, transaction_id),
                    headers=self._intention_headers(),
                    operation="get PayMob intention status",
                )
            else:
                # Legacy payments are stored under the order id.
                token = await self.authenticate()
                txn = await self._send(
                    "POST",
                    _join(self.base_url, "ecommerce/orders/transaction_inquiry"),
                    json={
                        "auth_token": token,
                        "order_id": int(transaction_id) if transaction_id.isdigit() else transaction_id,
                    },
                    headers={"Authorization": f"Token {token}"},
                    operation="get PayMob transaction status",
                )
        except UpstreamNotFound:
            return PaymentStatusResult(
                outcome=PaymentStatus.PENDING,
                transaction_id=transaction_id,
                raw={"message": "Transaction not found, may still be processing"},
            )

        txn = txn if isinstance(txn, dict) else {}
        currency = str(txn.get("currency") or self.default_currency)
        amount_cents = txn.get("amount_cents")
        return PaymentStatusResult(
            outcome=transaction_outcome(txn),
            transaction_id=transaction_id,
            payment_id=str(txn["id"]) if txn.get("id") is not None else None,
            amount=from_minor_units(amount_cents, currency) if isinstance(amount_cents, int) else None,
            currency=currency,
            raw=txn,
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
                note="Visa, Mastercard, and other card networks",
            ),
            ProviderPaymentMethod(
                id="wallet",
                code="WALLET",
                name_en="Mobile Wallet",
                name_ar="محفظة إلكترونية",
                service_charge=Decimal("0"),
                total_amount=amount,
                currency=currency,
                note="Vodafone Cash, Etisalat Cash, etc.",
            ),
        ]
        return AvailablePaymentMethods(
            payment_methods=methods,
            invoice_amount=amount,
            currency=currency,
            message="Payment methods retrieved. Actual availability depends on the PayMob account configuration.",
        )

    async def handle_webhook(self, webhook: InboundWebhook) -> WebhookEvent:
        event = webhook.payload or {}
        txn = event.get("obj") if isinstance(event.get("obj"), dict) else event
        order = txn.get("order") if isinstance(txn.get("order"), dict) else {}
        currency = str(txn.get("currency") or order.get("currency") or self.default_currency)
        amount_cents = txn.get("amount_cents") or order.get("amount_cents")
        customer = txn.get("customer") if isinstance(txn.get("customer"), dict) else {}
        # Some callbacks carry the order as a bare id instead of an object.
        order_id = order.get("id") if order else txn.get("order")
        if self.uses_intention_api:
            transaction_id = txn.get("id") or order_id
        else:
            transaction_id = order_id or txn.get("id")
        return WebhookEvent(
            event_type=str(event.get("type") or "transaction"),
            transaction_id=str(transaction_id or ""),
            status=transaction_outcome(txn),
            amount=from_minor_units(amount_cents, currency) if isinstance(amount_cents, int) else None,
            currency=currency,
            customer_info=CustomerInfo(email=customer.get("email"), mobile=customer.get("phone")),
            raw_data=dict(event),
            timestamp=str(txn.get("created_at") or iso_now()),
        )

    async def validate_webhook(self, webhook: InboundWebhook) -> bool:
        event = webhook.payload or {}
        txn = event.get("obj")
        if not isinstance(txn, dict) or not event.get("type"):
            return False
        if not (txn.get("id") or _lookup(txn, "order.id")):
            return False
        if not self.hmac_secret:
            return True
        received = webhook.query.get("hmac") or event.get("hmac")
        if not received:
            logger.warning("paymob webhook missing hmac", extra={"provider": self.provider_name})
            return False
        return hmac.compare_digest(self.compute_hmac(txn), str(received).lower())

    def compute_hmac(self, txn: Dict[str, Any]) -> str:
        message = "".join(_hmac_value(_lookup(txn, name)) for name in HMAC_FIELDS)
        return hmac.new(self.hmac_secret.encode(), message.encode(), hashlib.sha512).hexdigest()

    async def _health_probe(self) -> bool:
        if self.uses_intention_api:
            # Any answer from the intention endpoint proves reachability; 404 is expected.
            await self._send(
                "GET",
                _join(self.intention_url, "test"),
                headers=self._intention_headers(),
                operation="health check",
            )
            return True
        if self.api_key and self.base_url:
            await self.authenticate()
            return True
        return False


def _split_name(full_name: str | None) -> tuple[str, str]:
    parts = (full_name or "Customer").split(" ")
    first = parts[0] or "Customer"
    last = " ".join(parts[1:]) or "Customer"
    return first, last
