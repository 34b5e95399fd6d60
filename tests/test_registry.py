from __future__ import annotations

import pytest

from app.domain.errors import ConfigError, NoActiveProviderError, ProviderNotFoundError
from app.providers.factory import build_registry, get_provider_by_name
from app.providers.registry import ProviderRegistry

from fakes import FakeProvider, make_settings


def test_unconfigured_provider_is_not_registered():
    registry = ProviderRegistry()
    assert registry.register("stripe", FakeProvider("stripe", configured=False)) is False
    assert registry.get_registered_providers() == []
    with pytest.raises(NoActiveProviderError):
        registry.get_active()


def test_skip_config_check_registers_anyway():
    registry = ProviderRegistry()
    assert registry.register("stripe", FakeProvider("stripe", configured=False), skip_config_check=True)
    assert "stripe" in registry


def test_default_provider_becomes_active():
    registry = ProviderRegistry(default_provider="paymob")
    registry.register("myfatoorah", FakeProvider("myfatoorah"))
    assert registry.active_provider_name() == "myfatoorah"
    registry.register("paymob", FakeProvider("paymob"))
    assert registry.active_provider_name() == "paymob"


def test_set_active_requires_registration():
    registry = ProviderRegistry()
    registry.register("stripe", FakeProvider("stripe"))
    with pytest.raises(ConfigError):
        registry.set_active("paymob")
    registry.register("paymob", FakeProvider("paymob"))
    registry.set_active("PayMob")
    assert registry.get_active().provider_name == "paymob"


def test_pinned_active_survives_new_registrations():
    registry = ProviderRegistry(default_provider="myfatoorah")
    registry.register("stripe", FakeProvider("stripe"))
    registry.set_active("stripe")
    registry.register("myfatoorah", FakeProvider("myfatoorah"))
    assert registry.active_provider_name() == "stripe"


def test_unregister_active_falls_back():
    registry = ProviderRegistry()
    registry.register("stripe", FakeProvider("stripe"))
    registry.register("paymob", FakeProvider("paymob"))
    assert registry.active_provider_name() == "stripe"
    assert registry.unregister("stripe") is not None
    assert registry.active_provider_name() == "paymob"
    assert registry.unregister("stripe") is None
    registry.unregister("paymob")
    assert registry.active_provider_name() == "none"


def test_capacity_limit():
    registry = ProviderRegistry(max_providers=2)
    assert registry.register("a", FakeProvider("a"))
    assert registry.register("b", FakeProvider("b"))
    assert registry.register("c", FakeProvider("c")) is False
    # Replacing an existing key is allowed at capacity.
    assert registry.register("a", FakeProvider("a"))
    assert len(registry) == 2


def test_route_by_name_and_unknown():
    registry = ProviderRegistry()
    stripe = FakeProvider("stripe")
    registry.register("stripe", stripe)
    assert registry.route("STRIPE") is stripe
    assert registry.route() is stripe
    with pytest.raises(ProviderNotFoundError):
        registry.route("paymob")


def test_register_with_config_prefers_default():
    registry = ProviderRegistry(default_provider="paymob")
    registry.register_with_config("stripe", FakeProvider("stripe", configured=False))
    registry.register_with_config("paymob", FakeProvider("paymob", configured=False))
    assert registry.active_provider_name() == "paymob"


def test_build_registry_registers_configured_providers_only():
    settings = make_settings(payment_provider="stripe", stripe_secret_key="sk_test_1")
    registry = build_registry(settings)
    assert registry.get_registered_providers() == ["stripe"]
    assert registry.active_provider_name() == "stripe"


def test_unknown_provider_name():
    with pytest.raises(ValueError):
        get_provider_by_name(make_settings(), "paypal")
