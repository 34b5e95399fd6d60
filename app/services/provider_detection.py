from __future__ import annotations

from typing import Any, Iterator, Optional

from app.domain.enums import ProviderName
from app.domain.models import Payment
from app.providers.registry import ProviderRegistry

NUMERIC_ID_PROVIDERS = (ProviderName.MYFATOORAH.value, ProviderName.PAYMOB.value)


def _raw_hints(raw: dict[str, Any]) -> Iterator[str]:
    if raw.get("provider"):
        yield str(raw["provider"]).lower()
    if raw.get("InvoiceId") or raw.get("InvoiceURL") or raw.get("PaymentMethods"):
        yield ProviderName.MYFATOORAH.value
    if raw.get("intentionId") or raw.get("payment_keys") or raw.get("order_id"):
        yield ProviderName.PAYMOB.value
    raw_id = raw.get("id")
    if (isinstance(raw_id, str) and raw_id.startswith(("pi_", "cs_"))) or raw.get("client_secret"):
        yield ProviderName.STRIPE.value


def _transaction_id_hints(transaction_id: str, active: str) -> Iterator[str]:
    if transaction_id.startswith(("pi_", "cs_")):
        yield ProviderName.STRIPE.value
    elif transaction_id.isdigit():
        # Both the invoice and the wallet gateway issue numeric ids.
        if active in NUMERIC_ID_PROVIDERS:
            yield active
        yield from NUMERIC_ID_PROVIDERS


def detect_provider(payment: Payment, registry: ProviderRegistry) -> Optional[str]:
    """Work out which registered provider owns ``payment``.

    Order: the provider recorded on the payment, hints in the stored raw
    response, the shape of the transaction id, the active provider, then the
    first registered one. Hints naming an unregistered provider are skipped.
    """
    registered = registry.get_registered_providers()
    if not registered:
        return None
    active = registry.active_provider_name()

    def candidates() -> Iterator[str]:
        if payment.provider:
            yield payment.provider.lower()
        if isinstance(payment.raw_response, dict):
            yield from _raw_hints(payment.raw_response)
        if payment.transaction_id:
            yield from _transaction_id_hints(payment.transaction_id, active)
        yield active
        yield registered[0]

    for name in candidates():
        if name in registered:
            return name
    return None
