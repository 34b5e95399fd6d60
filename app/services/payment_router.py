from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Tuple, Union

from app.domain.enums import HealthStatus
from app.domain.errors import WebhookValidationError
from app.domain.models import as_utc
from app.domain.statuses import PaymentStatus
from app.providers.base import (
    AvailablePaymentMethods,
    HealthCheckResult,
    InboundWebhook,
    PaymentPayload,
    PaymentProvider,
    PaymentResult,
    PaymentStatusResult,
    WebhookEvent,
)
from app.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

EXPIRY_FIELDS = ("ExpireDate", "ExpiryDate", "expiryDate", "expiresAt", "expires_at")
EXPIRY_TEXT_FORMATS = ("%B %d, %Y", "%d/%m/%Y %H:%M:%S", "%d/%m/%Y")


def parse_expiry(value: Any) -> Optional[datetime]:
    """Best-effort parse of an expiry value; naive timestamps are read as UTC."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in EXPIRY_TEXT_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    return as_utc(parsed)


def is_payment_expired(raw: Mapping[str, Any] | None, now: datetime | None = None) -> bool:
    if not raw:
        return False
    for name in EXPIRY_FIELDS:
        if raw.get(name):
            expiry = parse_expiry(raw[name])
            if expiry is None:
                return False
            return expiry < (now or datetime.now(timezone.utc))
    return False


class PaymentRouter:
    """Provider-agnostic entry point: picks a provider and applies shared rules."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    def provider_for(self, provider_type: str | None = None) -> Tuple[str, PaymentProvider]:
        provider = self.registry.route(provider_type)
        name = (provider_type or self.registry.active_provider_name()).lower()
        return name, provider

    async def create_payment(
        self, payload: PaymentPayload, provider_type: str | None = None
    ) -> Tuple[str, PaymentResult]:
        name, provider = self.provider_for(provider_type)
        logger.info(
            "creating payment with provider",
            extra={"provider": name, "amount": payload.amount, "currency": payload.currency},
        )
        return name, await provider.create_payment(payload)

    async def get_status(self, transaction_id: str, provider_type: str | None = None) -> PaymentStatusResult:
        name, provider = self.provider_for(provider_type)
        result = await provider.get_payment_status(transaction_id)
        if result.outcome is PaymentStatus.PENDING and is_payment_expired(result.raw):
            logger.warning(
                "payment expired at provider, marking failed",
                extra={"provider": name, "transaction_id": transaction_id},
            )
            result.outcome = PaymentStatus.FAILED
        return result

    async def get_available_payment_methods(
        self, amount: Decimal, currency: str, provider_type: str | None = None
    ) -> AvailablePaymentMethods:
        _, provider = self.provider_for(provider_type)
        return await provider.get_available_payment_methods(amount, currency)

    async def handle_webhook(self, webhook: InboundWebhook, provider_type: str) -> WebhookEvent:
        name, provider = self.provider_for(provider_type)
        if provider.validates_webhooks and not await provider.validate_webhook(webhook):
            logger.warning("webhook validation failed", extra={"provider": name})
            raise WebhookValidationError(f"Invalid {name} webhook", provider=name)
        event = await provider.handle_webhook(webhook)
        if event.status not in (PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.PENDING):
            event.status = PaymentStatus.parse(event.status)
        return event

    async def health_check(
        self, provider_type: str | None = None
    ) -> Union[HealthCheckResult, List[HealthCheckResult]]:
        if provider_type:
            provider = self.registry.get(provider_type)
            if provider is None:
                return HealthCheckResult(
                    provider=provider_type,
                    status=HealthStatus.NOT_CONFIGURED,
                    configured=False,
                    message=f"Provider '{provider_type}' is not registered",
                )
            return await self._safe_health_check(provider_type, provider)
        return [await self._safe_health_check(name, provider) for name, provider in self.registry.items()]

    async def _safe_health_check(self, name: str, provider: PaymentProvider) -> HealthCheckResult:
        try:
            return await provider.health_check()
        except Exception as exc:  # noqa: BLE001
            logger.warning("health check error", extra={"provider": name, "event": str(exc)})
            return HealthCheckResult(
                provider=name,
                status=HealthStatus.UNHEALTHY,
                configured=provider.is_configured(),
                message="Health check failed",
                error=str(exc),
            )

    async def aclose(self) -> None:
        for name, provider in self.registry.items():
            try:
                await provider.aclose()
            except Exception as exc:  # noqa: BLE001
                logger.info("provider close error", extra={"provider": name, "event": str(exc)})
