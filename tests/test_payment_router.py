from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.domain.enums import HealthStatus
from app.domain.errors import ProviderNotFoundError, UpstreamError, WebhookValidationError
from app.domain.statuses import PaymentStatus
from app.providers.base import InboundWebhook
from app.providers.registry import ProviderRegistry
from app.services.payment_router import PaymentRouter, is_payment_expired, parse_expiry

from fakes import FakeProvider


def make_router(*providers: FakeProvider) -> PaymentRouter:
    registry = ProviderRegistry()
    for provider in providers:
        registry.register(provider.provider_name, provider)
    return PaymentRouter(registry)


def test_parse_expiry_formats():
    assert parse_expiry("2030-01-01T10:00:00Z") == datetime(2030, 1, 1, 10, tzinfo=timezone.utc)
    assert parse_expiry("2030-01-01T10:00:00").tzinfo is timezone.utc
    assert parse_expiry(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert parse_expiry("January 5, 2030") == datetime(2030, 1, 5, tzinfo=timezone.utc)
    assert parse_expiry("not a date") is None
    assert parse_expiry("") is None


def test_is_payment_expired():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    past = (now - timedelta(minutes=1)).isoformat()
    future = (now + timedelta(minutes=1)).isoformat()
    assert is_payment_expired({"ExpiryDate": past}, now=now)
    assert not is_payment_expired({"expiresAt": future}, now=now)
    assert not is_payment_expired({"ExpiryDate": "garbage"}, now=now)
    assert not is_payment_expired({}, now=now)
    assert not is_payment_expired(None, now=now)


@pytest.mark.asyncio
async def test_expired_pending_payment_is_reported_failed():
    provider = FakeProvider("myfatoorah", raw={"ExpiryDate": "2000-01-01T00:00:00Z"})
    router = make_router(provider)
    result = await router.get_status("123")
    assert result.outcome is PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_expiry_does_not_override_paid():
    provider = FakeProvider("myfatoorah", outcome=PaymentStatus.PAID, raw={"ExpiryDate": "2000-01-01T00:00:00Z"})
    router = make_router(provider)
    result = await router.get_status("123")
    assert result.outcome is PaymentStatus.PAID


@pytest.mark.asyncio
async def test_status_for_unregistered_provider():
    router = make_router(FakeProvider("stripe"))
    with pytest.raises(ProviderNotFoundError):
        await router.get_status("pi_1", "paymob")


@pytest.mark.asyncio
async def test_webhook_rejected_when_signature_invalid():
    provider = FakeProvider("myfatoorah")
    provider.validates_webhooks = True
    provider.webhook_valid = False
    router = make_router(provider)
    with pytest.raises(WebhookValidationError):
        await router.handle_webhook(InboundWebhook(payload={"transactionId": "1", "status": "paid"}), "myfatoorah")


@pytest.mark.asyncio
async def test_webhook_skips_validation_when_provider_cannot_validate():
    provider = FakeProvider("paymob")
    provider.webhook_valid = False
    router = make_router(provider)
    event = await router.handle_webhook(InboundWebhook(payload={"transactionId": "1", "status": "paid"}), "paymob")
    assert event.status is PaymentStatus.PAID
    assert event.transaction_id == "1"


@pytest.mark.asyncio
async def test_health_for_unregistered_type_is_not_configured():
    router = make_router(FakeProvider("stripe"))
    result = await router.health_check("paymob")
    assert result.status is HealthStatus.NOT_CONFIGURED
    assert result.configured is False


@pytest.mark.asyncio
async def test_health_for_all_providers_never_raises(monkeypatch: pytest.MonkeyPatch):
    healthy = FakeProvider("stripe")
    broken = FakeProvider("paymob")

    async def explode():
        raise UpstreamError("boom")

    monkeypatch.setattr(broken, "health_check", explode)
    results = await make_router(healthy, broken).health_check()
    by_name = {result.provider: result for result in results}
    assert by_name["stripe"].status is HealthStatus.HEALTHY
    assert by_name["paymob"].status is HealthStatus.UNHEALTHY
    assert by_name["paymob"].error == "boom"
