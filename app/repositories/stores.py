from __future__ import annotations

import logging
from typing import Union

from app.config import Settings
from app.db.client import Database

from .memory_store import InMemoryPaymentStore
from .pg_store import PgPaymentStore

logger = logging.getLogger(__name__)

PaymentStore = Union[InMemoryPaymentStore, PgPaymentStore]


def build_store(settings: Settings) -> PaymentStore:
    """PostgreSQL when configured, otherwise process memory."""
    if settings.db_enabled:
        store = PgPaymentStore(Database.from_settings(settings))
        store.ensure_schema()
        logger.info("payment store ready", extra={"event": "postgres"})
        return store
    logger.warning("db disabled, payments kept in memory", extra={"event": "memory"})
    return InMemoryPaymentStore()
