from __future__ import annotations

from decimal import Decimal

from app.domain.models import Payment
from app.providers.registry import ProviderRegistry
from app.services.provider_detection import detect_provider

from fakes import FakeProvider


def registry_with(*names: str, active: str | None = None) -> ProviderRegistry:
    registry = ProviderRegistry()
    for name in names:
        registry.register(name, FakeProvider(name))
    if active:
        registry.set_active(active)
    return registry


def payment(transaction_id: str, provider: str | None = None, raw: dict | None = None) -> Payment:
    return Payment(
        amount=Decimal("10"),
        currency="KWD",
        transaction_id=transaction_id,
        provider=provider,
        raw_response=raw or {},
    )


def test_recorded_provider_wins():
    registry = registry_with("myfatoorah", "stripe")
    assert detect_provider(payment("123", provider="stripe"), registry) == "stripe"


def test_raw_response_hints():
    registry = registry_with("myfatoorah", "paymob", "stripe", active="stripe")
    assert detect_provider(payment("x", raw={"InvoiceId": 5}), registry) == "myfatoorah"
    assert detect_provider(payment("x", raw={"intentionId": "abc"}), registry) == "paymob"
    assert detect_provider(payment("x", raw={"client_secret": "s"}), registry) == "stripe"


def test_stripe_ids():
    registry = registry_with("myfatoorah", "stripe")
    assert detect_provider(payment("pi_123"), registry) == "stripe"
    assert detect_provider(payment("cs_test_1"), registry) == "stripe"


def test_numeric_id_prefers_active_wallet_gateway():
    registry = registry_with("myfatoorah", "paymob", active="paymob")
    assert detect_provider(payment("987654"), registry) == "paymob"


def test_numeric_id_defaults_to_invoice_gateway():
    registry = registry_with("stripe", "myfatoorah", "paymob", active="stripe")
    assert detect_provider(payment("987654"), registry) == "myfatoorah"


def test_unregistered_hint_is_skipped():
    registry = registry_with("paymob")
    assert detect_provider(payment("pi_1", provider="stripe"), registry) == "paymob"


def test_no_providers_registered():
    assert detect_provider(payment("pi_1"), ProviderRegistry()) is None
