from __future__ import annotations

from enum import Enum


class ProviderName(str, Enum):
    """Built-in payment providers (registry keys)."""

    MYFATOORAH = "myfatoorah"
    STRIPE = "stripe"
    PAYMOB = "paymob"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NOT_CONFIGURED = "not_configured"


class ReferenceTime(str, Enum):
    """Which timestamp a reconciliation timeout was measured from."""

    DISCOVERED_AT = "discovered_at"
    CREATED_AT = "created_at"
