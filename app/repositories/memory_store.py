from __future__ import annotations

import copy
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.domain.models import Payment, utcnow
from app.domain.statuses import PaymentStatus

UPDATABLE_FIELDS = {"status", "raw_response", "payment_url", "provider", "payment_method"}


class InMemoryPaymentStore:
    """Simple in-memory payment repository."""

    def __init__(self) -> None:
        self.by_id: Dict[str, Payment] = {}
        self.by_transaction_id: Dict[str, str] = {}

    def create(self, payment: Payment) -> Payment:
        if payment.transaction_id in self.by_transaction_id:
            raise ValueError(f"Duplicate transaction_id {payment.transaction_id}")
        stored = copy.deepcopy(payment)
        self.by_id[stored.id] = stored
        self.by_transaction_id[stored.transaction_id] = stored.id
        return copy.deepcopy(stored)

    def find_by_id(self, payment_id: str) -> Optional[Payment]:
        payment = self.by_id.get(payment_id)
        return copy.deepcopy(payment) if payment else None

    def find_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        payment_id = self.by_transaction_id.get(transaction_id)
        if payment_id:
            return self.find_by_id(payment_id)
        return None

    def find_pending(self, older_than: datetime, limit: int) -> List[Payment]:
        pending = [
            p for p in self.by_id.values()
            if p.status is PaymentStatus.PENDING and p.created_at <= older_than
        ]
        pending.sort(key=lambda p: p.created_at)
        return [copy.deepcopy(p) for p in pending[:limit]]

    def update(
        self,
        payment_id: str,
        fields: Dict[str, Any],
        expected_status: PaymentStatus | None = None,
    ) -> bool:
        """Apply ``fields``; with ``expected_status`` the write is conditional."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported payment fields: {sorted(unknown)}")
        current = self.by_id.get(payment_id)
        if current is None:
            return False
        if expected_status is not None and current.status is not expected_status:
            return False
        self.by_id[payment_id] = replace(current, **copy.deepcopy(fields), updated_at=utcnow())
        return True

    def count_by_status(self, status: PaymentStatus, older_than: datetime | None = None) -> int:
        return sum(
            1
            for p in self.by_id.values()
            if p.status is status and (older_than is None or p.created_at <= older_than)
        )

    def find_oldest_pending(self) -> Optional[Payment]:
        pending = [p for p in self.by_id.values() if p.status is PaymentStatus.PENDING]
        if not pending:
            return None
        return copy.deepcopy(min(pending, key=lambda p: p.created_at))

    def list_all(self) -> List[Payment]:
        return [copy.deepcopy(p) for p in self.by_id.values()]
