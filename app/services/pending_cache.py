from __future__ import annotations

import heapq
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from app.domain.models import TemporaryPayment, utcnow
from app.domain.statuses import PaymentStatus

logger = logging.getLogger(__name__)


class PendingPaymentCache:
    """Bounded in-process map of payments awaiting an outcome, keyed by payment id.

    Inserting past capacity evicts the oldest tenth of the entries by
    ``discovered_at``.
    """

    def __init__(self, capacity: int = 1000):
        self.capacity = max(1, capacity)
        self._entries: Dict[str, TemporaryPayment] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, payment_id: object) -> bool:
        return payment_id in self._entries

    def get(self, payment_id: str) -> Optional[TemporaryPayment]:
        return self._entries.get(payment_id)

    def entries(self) -> List[TemporaryPayment]:
        return list(self._entries.values())

    def add(self, entry: TemporaryPayment) -> int:
        """Insert or replace ``entry``; returns how many entries were evicted."""
        evicted = 0
        if entry.payment_id not in self._entries and len(self._entries) >= self.capacity:
            evicted = self._evict_oldest(max(1, self.capacity // 10))
        self._entries[entry.payment_id] = entry
        return evicted

    def remove(self, payment_id: str) -> bool:
        return self._entries.pop(payment_id, None) is not None

    def due(self, timeout: timedelta, now: datetime | None = None) -> List[TemporaryPayment]:
        """Pending entries discovered at least ``timeout`` ago."""
        cutoff = (now or utcnow()) - timeout
        return [
            entry
            for entry in self._entries.values()
            if entry.status is PaymentStatus.PENDING and entry.discovered_at <= cutoff
        ]

    def sweep(self, max_age: timedelta, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - max_age
        stale = [
            payment_id
            for payment_id, entry in self._entries.items()
            if entry.discovered_at < cutoff or entry.status is not PaymentStatus.PENDING
        ]
        for payment_id in stale:
            del self._entries[payment_id]
        return len(stale)

    def oldest(self) -> Optional[TemporaryPayment]:
        if not self._entries:
            return None
        return min(self._entries.values(), key=lambda entry: entry.discovered_at)

    def _evict_oldest(self, count: int) -> int:
        victims = heapq.nsmallest(count, self._entries.values(), key=lambda entry: entry.discovered_at)
        for entry in victims:
            del self._entries[entry.payment_id]
        logger.info("pending cache full, evicted oldest", extra={"evicted": len(victims), "cache_size": len(self._entries)})
        return len(victims)
