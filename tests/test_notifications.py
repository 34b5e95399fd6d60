from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List

import httpx
import pytest

from app.domain.models import PaymentNotification
from app.domain.statuses import PaymentStatus
from app.logging import JsonFormatter
from app.services.notifications import (
    HttpNotificationSink,
    LoggingNotificationSink,
    NotificationService,
    build_notification_service,
)

from fakes import RecordingSink, make_settings


def notification() -> PaymentNotification:
    return PaymentNotification(
        payment_id="p-1",
        transaction_id="tx-1",
        status=PaymentStatus.PAID,
        previous_status=PaymentStatus.PENDING,
        amount=Decimal("7.250"),
        currency="KWD",
        source="webhook",
        provider="myfatoorah",
    )


class ExplodingSink:
    async def send(self, notification: PaymentNotification) -> None:
        raise RuntimeError("sink down")


@pytest.mark.asyncio
async def test_http_sink_posts_json():
    received: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    sink = HttpNotificationSink("https://hooks.test/payments", transport=httpx.MockTransport(handler))
    await sink.send(notification())
    await sink.aclose()

    body = received[0]
    assert body["status"] == "paid"
    assert body["previous_status"] == "pending"
    assert body["amount"] == "7.250"
    assert body["occurred_at"]


@pytest.mark.asyncio
async def test_sink_failure_never_reaches_caller(caplog: pytest.LogCaptureFixture):
    recorder = RecordingSink()
    service = NotificationService([ExplodingSink(), recorder])

    with caplog.at_level(logging.WARNING):
        service.notify(notification())
        await service.drain()

    assert len(recorder.sent) == 1
    assert "notification delivery error" in caplog.messages


@pytest.mark.asyncio
async def test_http_error_status_is_logged(caplog: pytest.LogCaptureFixture):
    sink = HttpNotificationSink(
        "https://hooks.test/payments",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    service = NotificationService([sink])
    with caplog.at_level(logging.WARNING):
        service.notify(notification())
        await service.aclose()
    assert "notification delivery error" in caplog.messages


def test_notify_without_running_loop_is_dropped():
    recorder = RecordingSink()
    NotificationService([recorder]).notify(notification())
    assert recorder.sent == []


def test_build_notification_service():
    assert [type(s) for s in build_notification_service(make_settings()).sinks] == [LoggingNotificationSink]
    service = build_notification_service(make_settings(notification_url="https://hooks.test/x"))
    assert [type(s) for s in service.sinks] == [LoggingNotificationSink, HttpNotificationSink]


def test_json_formatter_whitelists_extras():
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "payment reconciled", None, None)
    record.payment_id = "p-1"
    record.amount = Decimal("1.500")
    record.secret = "do-not-log"
    data = json.loads(JsonFormatter().format(record))
    assert data["message"] == "payment reconciled"
    assert data["payment_id"] == "p-1"
    assert data["amount"] == "1.500"
    assert "secret" not in data
