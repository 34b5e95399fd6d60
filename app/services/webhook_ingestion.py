from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from app.domain.errors import ValidationError
from app.domain.models import PaymentNotification, utcnow
from app.domain.statuses import PaymentStatus
from app.providers.base import InboundWebhook, WebhookEvent
from app.repositories.stores import PaymentStore

from .notifications import NotificationService
from .payment_router import PaymentRouter

logger = logging.getLogger(__name__)


@dataclass
class WebhookAck:
    received: bool = True
    success: bool = True


class WebhookIngestionService:
    """Turns a gateway callback into a guarded status transition."""

    def __init__(self, store: PaymentStore, router: PaymentRouter, notifications: NotificationService):
        self.store = store
        self.router = router
        self.notifications = notifications

    @staticmethod
    def parse_body(body: bytes) -> Dict[str, Any]:
        try:
            payload = json.loads(body or b"{}")
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValidationError("Webhook body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")
        return payload

    async def ingest(
        self,
        provider_type: str,
        body: bytes,
        headers: Mapping[str, str],
        query: Mapping[str, str] | None = None,
    ) -> WebhookAck:
        webhook = InboundWebhook(
            payload=self.parse_body(body),
            body=body,
            headers=dict(headers),
            query=dict(query or {}),
        )
        event = await self.router.handle_webhook(webhook, provider_type)
        logger.info(
            "webhook received",
            extra={
                "provider": provider_type,
                "transaction_id": event.transaction_id,
                "status": event.status.value,
                "event": event.event_type,
            },
        )
        if not event.transaction_id:
            logger.warning("webhook without transaction id", extra={"provider": provider_type})
            return WebhookAck()

        payment = self.store.find_by_transaction_id(event.transaction_id)
        if payment is None:
            logger.warning(
                "webhook for unknown transaction",
                extra={"provider": provider_type, "transaction_id": event.transaction_id},
            )
            return WebhookAck()

        if event.status is PaymentStatus.PENDING:
            return WebhookAck()
        if payment.status is not PaymentStatus.PENDING:
            logger.info(
                "webhook ignored, payment already terminal",
                extra={"payment_id": payment.id, "status": payment.status.value, "outcome": event.status.value},
            )
            return WebhookAck()

        raw = dict(payment.raw_response or {})
        raw["webhook"] = _webhook_record(event)
        try:
            applied = self.store.update(
                payment.id,
                {"status": event.status, "raw_response": raw},
                expected_status=PaymentStatus.PENDING,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "webhook store update error",
                extra={"payment_id": payment.id, "transaction_id": event.transaction_id, "event": str(exc)},
            )
            return WebhookAck(success=False)

        if not applied:
            logger.info(
                "payment already resolved elsewhere",
                extra={"payment_id": payment.id, "transaction_id": event.transaction_id},
            )
            return WebhookAck()

        logger.info(
            "payment updated from webhook",
            extra={
                "payment_id": payment.id,
                "transaction_id": event.transaction_id,
                "previous_status": payment.status.value,
                "status": event.status.value,
                "provider": provider_type,
            },
        )
        customer = event.customer_info
        self.notifications.notify(
            PaymentNotification(
                payment_id=payment.id,
                transaction_id=payment.transaction_id,
                status=event.status,
                previous_status=payment.status,
                amount=payment.amount,
                currency=payment.currency,
                source="webhook",
                provider=provider_type,
                customer_email=customer.email if customer else None,
                customer_name=customer.name if customer else None,
                customer_mobile=customer.mobile if customer else None,
            )
        )
        return WebhookAck()


def _webhook_record(event: WebhookEvent) -> Dict[str, Any]:
    return {
        "event_type": event.event_type,
        "status": event.status.value,
        "received_at": utcnow().isoformat(),
        "timestamp": event.timestamp,
        "data": event.raw_data,
    }
