from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Protocol, Set

import httpx

from app.config import Settings
from app.domain.models import PaymentNotification

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, notification: PaymentNotification) -> None: ...


class LoggingNotificationSink:
    async def send(self, notification: PaymentNotification) -> None:
        logger.info(
            "payment outcome notification",
            extra={
                "payment_id": notification.payment_id,
                "transaction_id": notification.transaction_id,
                "status": notification.status.value,
                "previous_status": notification.previous_status.value,
                "provider": notification.provider,
                "event": notification.source,
            },
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class HttpNotificationSink:
    """POSTs the notification as JSON to a configured URL."""

    def __init__(self, url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.http = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def send(self, notification: PaymentNotification) -> None:
        body: Dict[str, Any] = {key: _jsonable(value) for key, value in asdict(notification).items()}
        resp = await self.http.post(self.url, json=body)
        resp.raise_for_status()

    async def aclose(self) -> None:
        await self.http.aclose()


class NotificationService:
    """Fire-and-forget fan-out of outcome changes.

    ``notify`` schedules delivery and returns immediately; sink failures are
    logged and never reach the caller.
    """

    def __init__(self, sinks: Iterable[NotificationSink]):
        self.sinks: List[NotificationSink] = list(sinks)
        self._tasks: Set[asyncio.Task] = set()

    def notify(self, notification: PaymentNotification) -> None:
        for sink in self.sinks:
            try:
                task = asyncio.get_running_loop().create_task(self._deliver(sink, notification))
            except RuntimeError:
                logger.warning(
                    "notification dropped, no running loop",
                    extra={"payment_id": notification.payment_id},
                )
                return
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, sink: NotificationSink, notification: PaymentNotification) -> None:
        try:
            await sink.send(notification)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "notification delivery error",
                extra={
                    "payment_id": notification.payment_id,
                    "transaction_id": notification.transaction_id,
                    "event": str(exc),
                },
            )

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        for sink in self.sinks:
            closer = getattr(sink, "aclose", None)
            if closer is not None:
                await closer()


def build_notification_service(settings: Settings) -> NotificationService:
    sinks: List[NotificationSink] = [LoggingNotificationSink()]
    if settings.notification_url:
        sinks.append(HttpNotificationSink(settings.notification_url, timeout=settings.provider_timeout_seconds))
    return NotificationService(sinks)
