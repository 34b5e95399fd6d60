from __future__ import annotations

import logging
from typing import Optional

import httpx

from app.config import Settings
from app.domain.enums import ProviderName

from .base import PaymentProvider
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)


def get_provider_by_name(
    settings: Settings,
    name: Optional[str],
    transport: httpx.AsyncBaseTransport | None = None,
) -> PaymentProvider:
    """Return a provider instance by normalized name.

    Supported names:
    - "myfatoorah" -> MyFatoorahProvider
    - "stripe" -> StripeIntentsProvider
    - "paymob" -> PayMobProvider
    """
    normalized = (name or settings.payment_provider or "").lower()
    if normalized == ProviderName.MYFATOORAH.value:
        from .myfatoorah import MyFatoorahProvider

        return MyFatoorahProvider(settings, transport=transport)
    if normalized == ProviderName.STRIPE.value:
        from .stripe_intents import StripeIntentsProvider

        return StripeIntentsProvider(settings)
    if normalized == ProviderName.PAYMOB.value:
        from .paymob import PayMobProvider

        return PayMobProvider(settings, transport=transport)
    msg = f"Unknown provider {name}"
    raise ValueError(msg)


def build_registry(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> ProviderRegistry:
    """Register every built-in provider whose configuration is complete."""
    registry = ProviderRegistry(default_provider=settings.payment_provider)
    for name in ProviderName:
        provider = get_provider_by_name(settings, name.value, transport=transport)
        if not registry.register(name.value, provider):
            logger.info("provider skipped", extra={"provider": name.value, "reason": "not configured"})
    logger.info(
        "payment providers ready",
        extra={"provider": registry.active_provider_name(), "processed": len(registry)},
    )
    return registry
