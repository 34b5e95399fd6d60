from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Callable, Dict, List

import httpx
import pytest

from app.domain.enums import HealthStatus
from app.domain.errors import UpstreamNotFound, ValidationError
from app.domain.statuses import PaymentStatus
from app.providers.base import InboundWebhook, PaymentPayload
from app.providers.myfatoorah import MyFatoorahProvider

from fakes import make_settings

Handler = Callable[[httpx.Request], httpx.Response]


def envelope(data: Any, success: bool = True, message: str = "") -> Dict[str, Any]:
    return {"IsSuccess": success, "Message": message, "ValidationErrors": None, "Data": data}


def make_provider(handler: Handler, **overrides: Any) -> MyFatoorahProvider:
    values: Dict[str, Any] = {
        "myfatoorah_api_key": "mf-key",
        "myfatoorah_api_url": "https://mf.test",
        "myfatoorah_callback_url": "https://donate.test/ok",
        "myfatoorah_error_url": "https://donate.test/error",
    }
    values.update(overrides)
    return MyFatoorahProvider(make_settings(**values), transport=httpx.MockTransport(handler))


def test_base_url_is_normalized():
    provider = make_provider(lambda request: httpx.Response(200))
    assert provider.base_url == "https://mf.test/v2/"
    assert provider.is_configured()


def test_missing_callback_url_is_not_configured():
    provider = make_provider(lambda request: httpx.Response(200), myfatoorah_callback_url="")
    assert not provider.is_configured()


@pytest.mark.asyncio
async def test_create_payment_sends_invoice():
    captured: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/SendPayment"
        assert request.headers["Authorization"] == "Bearer mf-key"
        captured.append(json.loads(request.content))
        return httpx.Response(200, json=envelope({"InvoiceId": 4321, "InvoiceURL": "https://mf.test/pay/4321"}))

    provider = make_provider(handler)
    result = await provider.create_payment(
        PaymentPayload(amount=Decimal("12.500"), currency="KWD", reference_id="don-1", customer_name="Ali")
    )
    assert result.id == "4321"
    assert result.url == "https://mf.test/pay/4321"
    assert result.status is PaymentStatus.PENDING
    body = captured[0]
    assert body["InvoiceValue"] == 12.5
    assert body["CustomerReference"] == "don-1"
    assert body["CustomerName"] == "Ali"
    assert "ExpiryDate" in body


@pytest.mark.asyncio
async def test_create_payment_requires_callback_url():
    provider = make_provider(lambda request: httpx.Response(500), myfatoorah_callback_url="")
    with pytest.raises(ValidationError):
        await provider.create_payment(PaymentPayload(amount=Decimal("1"), currency="KWD", reference_id="r"))


@pytest.mark.asyncio
async def test_status_paid_from_attempts():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=envelope(
                {
                    "InvoiceId": 77,
                    "InvoiceStatus": "Pending",
                    "InvoiceValue": 5,
                    "InvoiceTransactions": [
                        {"TransactionStatus": "Failed", "PaymentId": "p1"},
                        {"TransactionStatus": "Succss", "PaymentId": "p2", "Currency": "KWD"},
                    ],
                }
            ),
        )

    result = await make_provider(handler).get_payment_status("77")
    assert result.outcome is PaymentStatus.PAID
    assert result.transaction_id == "77"
    assert result.amount == Decimal("5")


@pytest.mark.asyncio
async def test_status_falls_back_to_payment_id_lookup():
    key_types: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        key_types.append(body["KeyType"])
        if body["KeyType"] == "InvoiceId":
            return httpx.Response(200, json=envelope(None, success=False, message="No data match with the key"))
        return httpx.Response(200, json=envelope({"InvoiceId": 88, "InvoiceStatus": "Paid"}))

    result = await make_provider(handler).get_payment_status("0701")
    assert key_types == ["InvoiceId", "PaymentId"]
    assert result.outcome is PaymentStatus.PAID
    assert result.transaction_id == "88"


@pytest.mark.asyncio
async def test_status_not_found_on_both_lookups():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"IsSuccess": False, "Message": "Invoice not found"})

    with pytest.raises(UpstreamNotFound):
        await make_provider(handler).get_payment_status("1")


@pytest.mark.asyncio
async def test_health_not_found_counts_as_healthy():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=envelope(None, success=False, message="No data match"))

    result = await make_provider(handler).health_check()
    assert result.status is HealthStatus.HEALTHY
    assert result.configured is True


@pytest.mark.asyncio
async def test_health_auth_failure_is_unhealthy():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"Message": "Unauthorized"})

    result = await make_provider(handler).health_check()
    assert result.status is HealthStatus.UNHEALTHY
    assert result.configured is True
    assert "authentication failed" in result.message


@pytest.mark.asyncio
async def test_health_not_configured():
    result = await make_provider(lambda request: httpx.Response(200), myfatoorah_api_key="").health_check()
    assert result.status is HealthStatus.NOT_CONFIGURED


@pytest.mark.asyncio
async def test_payment_methods_from_gateway():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/InitiatePayment"
        return httpx.Response(
            200,
            json=envelope(
                {
                    "PaymentMethods": [
                        {
                            "PaymentMethodId": 1,
                            "PaymentMethodCode": "kn",
                            "PaymentMethodEn": "KNET",
                            "ServiceCharge": 0.1,
                            "TotalAmount": 10.1,
                            "CurrencyIso": "KWD",
                        }
                    ]
                }
            ),
        )

    result = await make_provider(handler).get_available_payment_methods(Decimal("10"), "KWD")
    assert result.fallback is False
    assert [m.name_en for m in result.payment_methods] == ["KNET"]
    assert result.payment_methods[0].service_charge == Decimal("0.1")


@pytest.mark.asyncio
async def test_payment_methods_fallback_on_error():
    result = await make_provider(lambda request: httpx.Response(503)).get_available_payment_methods(
        Decimal("10"), "KWD"
    )
    assert result.fallback is True
    assert result.success is True
    assert all(m.total_amount == Decimal("10") for m in result.payment_methods)


@pytest.mark.asyncio
async def test_webhook_normalization():
    provider = make_provider(lambda request: httpx.Response(200))
    event = await provider.handle_webhook(
        InboundWebhook(
            payload={
                "Event": "TransactionsStatusChanged",
                "Data": {"InvoiceId": 55, "TransactionStatus": "SUCCESS", "InvoiceValueInBaseCurrency": "3.5"},
            }
        )
    )
    assert event.transaction_id == "55"
    assert event.status is PaymentStatus.PAID
    assert event.amount == Decimal("3.5")
    assert event.currency == "KWD"


@pytest.mark.asyncio
async def test_webhook_signature_validation():
    provider = make_provider(lambda request: httpx.Response(200), myfatoorah_webhook_secret="whsec")
    data = {"InvoiceId": 55, "TransactionStatus": "SUCCESS", "Nested": {"ignored": True}}
    payload = {"Event": "TransactionsStatusChanged", "Data": data}
    signature = provider.sign_webhook_data(data)

    good = InboundWebhook(payload=payload, headers={"myfatoorah-signature": signature})
    bad = InboundWebhook(payload=payload, headers={"MyFatoorah-Signature": "forged"})
    missing = InboundWebhook(payload=payload)
    assert await provider.validate_webhook(good)
    assert not await provider.validate_webhook(bad)
    assert not await provider.validate_webhook(missing)


@pytest.mark.asyncio
async def test_webhook_shape_checked_without_secret():
    provider = make_provider(lambda request: httpx.Response(200))
    assert await provider.validate_webhook(InboundWebhook(payload={"Event": "x", "Data": {"InvoiceId": 1}}))
    assert not await provider.validate_webhook(InboundWebhook(payload={"Data": {"InvoiceId": 1}}))
    assert not await provider.validate_webhook(InboundWebhook(payload={"Event": "x"}))
