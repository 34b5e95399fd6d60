from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from .statuses import PaymentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC copy of ``value``; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class Payment:
    """Durable payment record."""

    amount: Decimal
    currency: str
    transaction_id: str
    payment_method: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))
    status: PaymentStatus = PaymentStatus.PENDING
    provider: str | None = None
    payment_url: str | None = None
    reference_id: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class TemporaryPayment:
    """In-process record of a payment this process has seen but not resolved.

    ``discovered_at`` may precede the store's ``created_at`` when the
    registration hook fires before the row is committed.
    """

    payment_id: str
    transaction_id: str
    discovered_at: datetime = field(default_factory=utcnow)
    status: PaymentStatus = PaymentStatus.PENDING


@dataclass
class PaymentNotification:
    """Outcome change handed to the notification sink."""

    payment_id: str
    transaction_id: str
    status: PaymentStatus
    previous_status: PaymentStatus
    amount: Decimal
    currency: str
    source: str
    provider: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    customer_mobile: str | None = None
    occurred_at: datetime = field(default_factory=utcnow)
