from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from psycopg2 import sql
from psycopg2.extras import Json

from app.db.client import Database
from app.domain.models import Payment
from app.domain.statuses import PaymentStatus

MONEY_QUANT = Decimal("0.001")

PAYMENT_COLUMNS = (
    "id",
    "transaction_id",
    "amount",
    "currency",
    "payment_method",
    "status",
    "provider",
    "payment_url",
    "reference_id",
    "raw_response",
    "created_at",
    "updated_at",
)

UPDATABLE_FIELDS = {"status", "raw_response", "payment_url", "provider", "payment_method"}

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS payment (
    id TEXT PRIMARY KEY,
    transaction_id TEXT NOT NULL UNIQUE,
    amount NUMERIC(18, 3) NOT NULL,
    currency VARCHAR(3) NOT NULL,
    payment_method TEXT NOT NULL DEFAULT '',
    status VARCHAR(16) NOT NULL DEFAULT 'pending',
    provider VARCHAR(32),
    payment_url TEXT,
    reference_id TEXT,
    raw_response JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS payment_status_created_idx ON payment (status, created_at);
"""


class PgPaymentStore:
    """PostgreSQL-backed store for payments using raw psycopg2.

    ``update`` with ``expected_status`` is a compare-and-set on the status
    column, which is what keeps webhook and reconciliation writers from
    overwriting each other.
    """

    def __init__(self, db: Database):
        self.db = db

    def close(self) -> None:
        self.db.close()

    @staticmethod
    def _normalize_amount(value: Any | None) -> Decimal | None:
        if value is None:
            return None
        if isinstance(value, Decimal):
            amount = value
        else:
            try:
                amount = Decimal(str(value))
            except (InvalidOperation, TypeError, ValueError) as exc:
                raise ValueError("Invalid monetary amount") from exc
        return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)

    def _hydrate_payment(self, row: tuple) -> Payment:
        data = dict(zip(PAYMENT_COLUMNS, row))
        amount = self._normalize_amount(data["amount"])
        if amount is None:
            raise ValueError("Persisted payment amount cannot be NULL")
        raw = data.get("raw_response") or {}
        return Payment(
            id=str(data["id"]),
            transaction_id=str(data["transaction_id"]),
            amount=amount,
            currency=str(data["currency"]),
            payment_method=str(data.get("payment_method") or ""),
            status=PaymentStatus.parse(data["status"]),
            provider=str(data["provider"]) if data.get("provider") else None,
            payment_url=data.get("payment_url"),
            reference_id=data.get("reference_id"),
            raw_response=dict(raw) if isinstance(raw, dict) else {"value": raw},
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )

    def _select(self) -> sql.Composed:
        return sql.SQL("SELECT {} FROM payment").format(
            sql.SQL(", ").join(sql.Identifier(col) for col in PAYMENT_COLUMNS)
        )

    def ensure_schema(self) -> None:
        with self.db.connection() as conn:
            if conn is None:
                return
            with conn.cursor() as cur:
                if self.db.schema:
                    # search_path already points here; the schema must exist before the table.
                    cur.execute(sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(self.db.schema)))
                cur.execute(SCHEMA_DDL)

    def create(self, payment: Payment) -> Payment:
        amount = self._normalize_amount(payment.amount)
        if amount is None:
            raise ValueError("payment.amount required")
        with self.db.connection() as conn:
            if conn is None:
                return payment
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO payment (
                        id, transaction_id, amount, currency, payment_method, status,
                        provider, payment_url, reference_id, raw_response, created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING created_at, updated_at
                    """,
                    (
                        payment.id,
                        payment.transaction_id,
                        amount,
                        payment.currency,
                        payment.payment_method,
                        payment.status.value,
                        payment.provider,
                        payment.payment_url,
                        payment.reference_id,
                        Json(payment.raw_response or {}),
                        payment.created_at,
                        payment.updated_at,
                    ),
                )
                row = cur.fetchone()
                if row:
                    payment.created_at, payment.updated_at = row[0], row[1]
        return payment

    def _fetch_one(self, where: sql.Composable, params: tuple) -> Optional[Payment]:
        with self.db.connection() as conn:
            if conn is None:
                return None
            with conn.cursor() as cur:
                cur.execute(sql.SQL("{} WHERE {} LIMIT 1").format(self._select(), where), params)
                row = cur.fetchone()
        return self._hydrate_payment(row) if row else None

    def find_by_id(self, payment_id: str) -> Optional[Payment]:
        return self._fetch_one(sql.SQL("id = %s"), (payment_id,))

    def find_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        return self._fetch_one(sql.SQL("transaction_id = %s"), (transaction_id,))

    def find_pending(self, older_than: datetime, limit: int) -> List[Payment]:
        with self.db.connection() as conn:
            if conn is None:
                return []
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL("{} WHERE status = %s AND created_at <= %s ORDER BY created_at ASC LIMIT %s").format(
                        self._select()
                    ),
                    (PaymentStatus.PENDING.value, older_than, limit),
                )
                rows = cur.fetchall()
        return [self._hydrate_payment(row) for row in rows]

    def update(
        self,
        payment_id: str,
        fields: Dict[str, Any],
        expected_status: PaymentStatus | None = None,
    ) -> bool:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported payment fields: {sorted(unknown)}")
        assignments = []
        params: List[Any] = []
        for name, value in fields.items():
            if name == "status":
                value = PaymentStatus(value).value
            elif name == "raw_response":
                value = Json(value or {})
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(name)))
            params.append(value)
        assignments.append(sql.SQL("updated_at = NOW()"))
        query = sql.SQL("UPDATE payment SET {} WHERE id = %s").format(sql.SQL(", ").join(assignments))
        params.append(payment_id)
        if expected_status is not None:
            query = sql.SQL("{} AND status = %s").format(query)
            params.append(expected_status.value)
        with self.db.connection() as conn:
            if conn is None:
                return False
            with conn.cursor() as cur:
                cur.execute(query, tuple(params))
                return cur.rowcount == 1

    def count_by_status(self, status: PaymentStatus, older_than: datetime | None = None) -> int:
        query = "SELECT COUNT(*) FROM payment WHERE status = %s"
        params: List[Any] = [status.value]
        if older_than is not None:
            query += " AND created_at <= %s"
            params.append(older_than)
        with self.db.connection() as conn:
            if conn is None:
                return 0
            with conn.cursor() as cur:
                cur.execute(query, tuple(params))
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def find_oldest_pending(self) -> Optional[Payment]:
        with self.db.connection() as conn:
            if conn is None:
                return None
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL("{} WHERE status = %s ORDER BY created_at ASC LIMIT 1").format(self._select()),
                    (PaymentStatus.PENDING.value,),
                )
                row = cur.fetchone()
        return self._hydrate_payment(row) if row else None
