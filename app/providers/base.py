from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping

import httpx

from app.config import Settings
from app.domain.enums import HealthStatus
from app.domain.errors import (
    PaymentError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFound,
)
from app.domain.statuses import PaymentStatus

logger = logging.getLogger(__name__)

THREE_DECIMAL_CURRENCIES = {"KWD", "BHD", "OMR", "JOD", "TND"}
ZERO_DECIMAL_CURRENCIES = {"CLP", "JPY", "KRW", "VND"}


def currency_exponent(currency: str) -> int:
    code = (currency or "").upper()
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    return 2


def to_minor_units(amount: Decimal, currency: str) -> int:
    exponent = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exponent)
    quantized = Decimal(str(amount)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(quantized.scaleb(exponent).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    exponent = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exponent)
    return (Decimal(int(amount)).scaleb(-exponent)).quantize(quantum, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (ArithmeticError, ValueError):
        return None


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PaymentPayload:
    """Provider-agnostic request to open a payment at a gateway."""

    amount: Decimal
    currency: str
    reference_id: str
    description: str | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_mobile: str | None = None
    payment_method_id: str | int | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentResult:
    id: str
    url: str | None = None
    status: PaymentStatus = PaymentStatus.PENDING
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentStatusResult:
    outcome: PaymentStatus
    transaction_id: str
    payment_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderPaymentMethod:
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


@dataclass
class AvailablePaymentMethods:
    payment_methods: list[ProviderPaymentMethod]
    invoice_amount: Decimal
    currency: str
    success: bool = True
    fallback: bool = False
    message: str | None = None
    timestamp: str = field(default_factory=iso_now)


@dataclass
class CustomerInfo:
    name: str | None = None
    email: str | None = None
    mobile: str | None = None


@dataclass
class InboundWebhook:
    """Raw inbound gateway callback as received over HTTP."""

    payload: dict[str, Any]
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class WebhookEvent:
    """Normalized webhook event; ``status`` is already canonical."""

    transaction_id: str
    status: PaymentStatus
    event_type: str = ""
    amount: Decimal | None = None
    currency: str | None = None
    customer_info: CustomerInfo | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=iso_now)


@dataclass
class HealthCheckResult:
    provider: str
    status: HealthStatus
    configured: bool
    message: str | None = None
    response_time_ms: int | None = None
    error: str | None = None
    timestamp: str = field(default_factory=iso_now)


class PaymentProvider(ABC):
    """Abstract payment provider."""

    provider_name: str = ""
    provider_version: str = "1.0.0"
    # Providers that can authenticate callbacks set this and override validate_webhook().
    validates_webhooks: bool = False

    @abstractmethod
    def is_configured(self) -> bool:
        """True only when every credential/URL the gateway needs is present."""

    @abstractmethod
    async def create_payment(self, payload: PaymentPayload) -> PaymentResult:
        """Open a payment at the gateway; the result is always pending."""

    @abstractmethod
    async def get_payment_status(self, transaction_id: str) -> PaymentStatusResult:
        """Query the gateway and map its answer to a canonical outcome."""

    @abstractmethod
    async def get_available_payment_methods(self, amount: Decimal, currency: str) -> AvailablePaymentMethods:
        """List methods with service charges; degrade to a fallback list instead of raising."""

    @abstractmethod
    async def handle_webhook(self, webhook: InboundWebhook) -> WebhookEvent:
        """Normalize a gateway callback. Best effort, must not raise on odd payloads."""

    async def validate_webhook(self, webhook: InboundWebhook) -> bool:
        return True

    async def health_check(self) -> HealthCheckResult:
        started = time.monotonic()
        if not self.is_configured():
            return HealthCheckResult(
                provider=self.provider_name,
                status=HealthStatus.NOT_CONFIGURED,
                configured=False,
                message=f"{self.provider_name} is not configured",
            )
        try:
            probed = await self._health_probe()
        except UpstreamNotFound:
            # The gateway answered a sentinel lookup correctly.
            probed = True
        except UpstreamAuthError as exc:
            return HealthCheckResult(
                provider=self.provider_name,
                status=HealthStatus.UNHEALTHY,
                configured=True,
                message=f"{self.provider_name} API is reachable but authentication failed",
                response_time_ms=_elapsed_ms(started),
                error=exc.message,
            )
        except PaymentError as exc:
            return HealthCheckResult(
                provider=self.provider_name,
                status=HealthStatus.UNHEALTHY,
                configured=True,
                message=f"{self.provider_name} API connection test failed",
                response_time_ms=_elapsed_ms(started),
                error=exc.message,
            )
        if not probed:
            return HealthCheckResult(
                provider=self.provider_name,
                status=HealthStatus.HEALTHY,
                configured=True,
                message="Provider is configured but health check is not available",
            )
        return HealthCheckResult(
            provider=self.provider_name,
            status=HealthStatus.HEALTHY,
            configured=True,
            message=f"{self.provider_name} API is reachable and responding",
            response_time_ms=_elapsed_ms(started),
        )

    async def _health_probe(self) -> bool:
        """Issue one side-effect free upstream call. Return False when there is none."""
        return False

    async def aclose(self) -> None:
        return None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class HttpGatewayProvider(PaymentProvider):
    """Provider talking JSON over a pooled ``httpx.AsyncClient``.

    Every call is bounded by the configured timeout and is never retried here;
    transport failures surface as ``UpstreamError``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        base_url: str = "",
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.http = httpx.AsyncClient(
            base_url=base_url,
            headers=dict(headers or {}),
            timeout=httpx.Timeout(settings.provider_timeout_seconds),
            limits=httpx.Limits(
                max_connections=settings.provider_max_connections,
                max_keepalive_connections=settings.provider_max_keepalive_connections,
            ),
            transport=transport,
        )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        started = time.monotonic()
        try:
            resp = await self.http.request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning(
                "provider request timed out",
                extra={"provider": self.provider_name, "event": operation, "response_time_ms": _elapsed_ms(started)},
            )
            raise UpstreamError(f"{operation} timed out", provider=self.provider_name) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "provider request failed",
                extra={"provider": self.provider_name, "event": operation, "reason": str(exc)},
            )
            raise UpstreamError(f"{operation} failed: {exc}", provider=self.provider_name) from exc

        logger.debug(
            "provider response",
            extra={
                "provider": self.provider_name,
                "event": operation,
                "response_code": resp.status_code,
                "response_time_ms": _elapsed_ms(started),
            },
        )
        if resp.is_error:
            self._raise_for_status(resp, operation)
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(
                f"{operation} returned a non-JSON body",
                provider=self.provider_name,
                upstream_status=resp.status_code,
            ) from exc

    def _error_message(self, resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.text[:512]
        if isinstance(data, dict):
            for key in ("message", "Message", "detail", "error"):
                value = data.get(key)
                if isinstance(value, dict):
                    value = value.get("message")
                if value:
                    return str(value)
        return resp.text[:512]

    def _raise_for_status(self, resp: httpx.Response, operation: str) -> None:
        status_code = resp.status_code
        message = self._error_message(resp)
        logger.info(
            "provider error response",
            extra={"provider": self.provider_name, "event": operation, "response_code": status_code},
        )
        if status_code in (401, 403):
            raise UpstreamAuthError(
                f"{self.provider_name} authentication failed: {message}",
                provider=self.provider_name,
                upstream_status=status_code,
            )
        if status_code == 404:
            raise UpstreamNotFound(
                f"{self.provider_name} resource not found: {message}",
                provider=self.provider_name,
                upstream_status=status_code,
            )
        raise UpstreamError(
            f"Failed to {operation}: {message}",
            provider=self.provider_name,
            upstream_status=status_code,
        )

    async def aclose(self) -> None:
        await self.http.aclose()
