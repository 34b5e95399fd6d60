from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.config import Settings
from app.domain.models import PaymentNotification, utcnow
from app.domain.statuses import PaymentStatus
from app.providers.base import (
    AvailablePaymentMethods,
    InboundWebhook,
    PaymentPayload,
    PaymentProvider,
    PaymentResult,
    PaymentStatusResult,
    WebhookEvent,
)


class FakeProvider(PaymentProvider):
    """Scriptable provider used across service and route tests."""

    provider_name = "fake"

    def __init__(
        self,
        name: str = "fake",
        configured: bool = True,
        outcome: PaymentStatus = PaymentStatus.PENDING,
        raw: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.provider_name = name
        self.configured = configured
        self.outcome = outcome
        self.raw = raw or {}
        self.status_error: Optional[Exception] = None
        self.status_calls: List[str] = []
        self.created: List[PaymentPayload] = []
        self.webhook_valid = True
        self.validates_webhooks = False
        self.next_id = 1000

    def is_configured(self) -> bool:
        return self.configured

    async def create_payment(self, payload: PaymentPayload) -> PaymentResult:
        self.created.append(payload)
        self.next_id += 1
        return PaymentResult(
            id=f"{self.provider_name}-{self.next_id}",
            url=f"https://pay.example/{self.next_id}",
            raw_response={"reference": payload.reference_id},
        )

    async def get_payment_status(self, transaction_id: str) -> PaymentStatusResult:
        self.status_calls.append(transaction_id)
        if self.status_error is not None:
            raise self.status_error
        return PaymentStatusResult(outcome=self.outcome, transaction_id=transaction_id, raw=dict(self.raw))

    async def get_available_payment_methods(self, amount: Decimal, currency: str) -> AvailablePaymentMethods:
        return AvailablePaymentMethods(payment_methods=[], invoice_amount=amount, currency=currency)

    async def handle_webhook(self, webhook: InboundWebhook) -> WebhookEvent:
        payload = webhook.payload
        return WebhookEvent(
            transaction_id=str(payload.get("transactionId", "")),
            status=PaymentStatus.parse(payload.get("status", "pending")),
            event_type="fake.event",
            raw_data=payload,
        )

    async def validate_webhook(self, webhook: InboundWebhook) -> bool:
        return self.webhook_valid


class RecordingSink:
    def __init__(self) -> None:
        self.sent: List[PaymentNotification] = []

    async def send(self, notification: PaymentNotification) -> None:
        self.sent.append(notification)



class Clock:
    """Settable clock; ``advance`` moves it forward."""

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


API_TOKEN = "test-api-token"


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "api_bearer_token": API_TOKEN,
        "payment_provider": "fake",
        "reconciliation_enabled": False,
        "db_host": "",
        "notification_url": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)
