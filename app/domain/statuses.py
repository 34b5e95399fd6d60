from __future__ import annotations

from enum import Enum
from typing import Any, Iterable


class PaymentStatus(str, Enum):
    """Canonical outcome of a payment."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING

    @classmethod
    def parse(cls, value: Any) -> "PaymentStatus":
        """Read a persisted status, tolerating casing differences."""
        text = str(value or "").strip().lower()
        if text in {"canceled", "cancelled"}:
            return cls.FAILED
        return cls(text)


class TxStatus(str, Enum):
    """Normalized status of a single payment attempt."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    INPROGRESS = "INPROGRESS"
    AUTHORIZE = "AUTHORIZE"
    UNKNOWN = "UNKNOWN"


class InvoiceStatus(str, Enum):
    """Normalized invoice/order-level status."""

    PENDING = "PENDING"
    PAID = "PAID"
    CANCELED = "CANCELED"
    OTHER = "OTHER"


PAID_TX_KEYWORDS = frozenset({"SUCCESS", "SUCCSS", "CAPTURED", "PAID", "APPROVED"})
FAILED_TX_KEYWORDS = frozenset({"FAILED", "DECLINED", "VOID", "CANCELED", "CANCELLED"})

# Numeric invoice codes reported by the invoice gateway
INVOICE_CODE_TABLE: dict[int, InvoiceStatus] = {
    0: InvoiceStatus.PENDING,
    1: InvoiceStatus.CANCELED,
    2: InvoiceStatus.PAID,
    3: InvoiceStatus.PENDING,
    4: InvoiceStatus.PAID,
    5: InvoiceStatus.CANCELED,
}


def normalize_tx_status(value: Any) -> TxStatus:
    if value is None:
        return TxStatus.UNKNOWN
    text = str(value).strip().upper()
    if text in PAID_TX_KEYWORDS:
        return TxStatus.SUCCESS
    if text in FAILED_TX_KEYWORDS:
        return TxStatus.FAILED
    if text == "INPROGRESS":
        return TxStatus.INPROGRESS
    if text in {"AUTHORIZE", "AUTHORIZED", "AUTHORISED"}:
        return TxStatus.AUTHORIZE
    return TxStatus.UNKNOWN


def normalize_invoice_status(value: Any) -> InvoiceStatus:
    if value is None or isinstance(value, bool):
        return InvoiceStatus.OTHER
    if isinstance(value, str):
        text = value.strip().upper()
        if text == "PAID":
            return InvoiceStatus.PAID
        if text == "PENDING":
            return InvoiceStatus.PENDING
        if text in {"CANCELED", "CANCELLED"}:
            return InvoiceStatus.CANCELED
        return InvoiceStatus.OTHER
    if isinstance(value, (int, float)):
        if float(value).is_integer():
            return INVOICE_CODE_TABLE.get(int(value), InvoiceStatus.OTHER)
        return InvoiceStatus.OTHER
    return InvoiceStatus.OTHER


def derive_outcome(invoice_status: Any, attempt_statuses: Iterable[Any] = ()) -> PaymentStatus:
    """Collapse invoice and attempt statuses into one canonical outcome.

    Precedence, first match wins:

    1. any successful attempt -> ``paid`` (retries are expected, so earlier
       failures do not matter);
    2. at least one attempt and every attempt failed/canceled -> ``failed``,
       even when the invoice itself reports paid;
    3. the invoice-level status table;
    4. ``pending``.
    """
    attempts = [normalize_tx_status(status) for status in attempt_statuses]

    if any(tx is TxStatus.SUCCESS for tx in attempts):
        return PaymentStatus.PAID

    if attempts and all(tx in (TxStatus.FAILED, TxStatus.CANCELED) for tx in attempts):
        return PaymentStatus.FAILED

    invoice = normalize_invoice_status(invoice_status)
    if invoice is InvoiceStatus.PAID:
        return PaymentStatus.PAID
    if invoice is InvoiceStatus.CANCELED:
        return PaymentStatus.FAILED

    return PaymentStatus.PENDING
