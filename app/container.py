from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from app.config import Settings, settings as default_settings
from app.providers.factory import build_registry
from app.providers.registry import ProviderRegistry
from app.repositories.pg_store import PgPaymentStore
from app.repositories.stores import PaymentStore, build_store
from app.services.notifications import NotificationService, build_notification_service
from app.services.payment_router import PaymentRouter
from app.services.payments_service import PaymentsService
from app.services.reconciliation import ReconciliationEngine
from app.services.webhook_ingestion import WebhookIngestionService

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Explicitly owned application components, built once per app."""

    settings: Settings
    store: PaymentStore
    registry: ProviderRegistry
    router: PaymentRouter
    notifications: NotificationService
    reconciliation: ReconciliationEngine
    payments: PaymentsService
    webhooks: WebhookIngestionService

    async def startup(self) -> None:
        if self.settings.reconciliation_enabled:
            self.reconciliation.start()
        else:
            logger.info("reconciliation disabled", extra={"event": "config"})

    async def shutdown(self) -> None:
        self.reconciliation.stop()
        await self.router.aclose()
        await self.notifications.aclose()
        if isinstance(self.store, PgPaymentStore):
            self.store.close()


def build_container(
    cfg: Settings = default_settings,
    *,
    store: PaymentStore | None = None,
    registry: ProviderRegistry | None = None,
    notifications: NotificationService | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Container:
    store = store if store is not None else build_store(cfg)
    registry = registry if registry is not None else build_registry(cfg, transport=transport)
    notifications = notifications if notifications is not None else build_notification_service(cfg)
    router = PaymentRouter(registry)
    engine = ReconciliationEngine(store, router, registry, notifications, cfg)
    payments = PaymentsService(store, router, notifications, on_created=engine.register_new_payment)
    webhooks = WebhookIngestionService(store, router, notifications)
    return Container(
        settings=cfg,
        store=store,
        registry=registry,
        router=router,
        notifications=notifications,
        reconciliation=engine,
        payments=payments,
        webhooks=webhooks,
    )
