from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal
from typing import Any, List, Optional

import pytest
from psycopg2 import sql

from app.db.client import Database
from app.domain.models import Payment, utcnow
from app.domain.statuses import PaymentStatus
from app.repositories.memory_store import InMemoryPaymentStore
from app.repositories.pg_store import PgPaymentStore
from app.repositories.stores import build_store

from fakes import make_settings


def payment(transaction_id: str, minutes_ago: int = 0) -> Payment:
    created = utcnow() - timedelta(minutes=minutes_ago)
    return Payment(amount=Decimal("3"), currency="KWD", transaction_id=transaction_id, created_at=created)


def test_memory_store_guarded_update():
    store = InMemoryPaymentStore()
    saved = store.create(payment("t1"))

    assert store.update(saved.id, {"status": PaymentStatus.PAID}, expected_status=PaymentStatus.PENDING)
    assert not store.update(saved.id, {"status": PaymentStatus.FAILED}, expected_status=PaymentStatus.PENDING)
    assert store.find_by_transaction_id("t1").status is PaymentStatus.PAID
    assert not store.update("missing", {"status": PaymentStatus.PAID})
    with pytest.raises(ValueError):
        store.update(saved.id, {"amount": Decimal("1")})


def test_memory_store_rejects_duplicate_transaction():
    store = InMemoryPaymentStore()
    store.create(payment("t1"))
    with pytest.raises(ValueError):
        store.create(payment("t1"))


def test_memory_store_returns_copies():
    store = InMemoryPaymentStore()
    saved = store.create(payment("t1"))
    saved.raw_response["mutated"] = True
    assert store.find_by_id(saved.id).raw_response == {}


def test_memory_store_pending_queries():
    store = InMemoryPaymentStore()
    old = store.create(payment("t-old", minutes_ago=60))
    mid = store.create(payment("t-mid", minutes_ago=30))
    store.create(payment("t-new", minutes_ago=1))
    paid = store.create(payment("t-paid", minutes_ago=90))
    store.update(paid.id, {"status": PaymentStatus.PAID})

    cutoff = utcnow() - timedelta(minutes=15)
    assert [p.id for p in store.find_pending(cutoff, 10)] == [old.id, mid.id]
    assert [p.id for p in store.find_pending(cutoff, 1)] == [old.id]
    assert store.count_by_status(PaymentStatus.PENDING) == 3
    assert store.count_by_status(PaymentStatus.PENDING, older_than=cutoff) == 2
    assert store.find_oldest_pending().id == old.id


class FakeCursor:
    def __init__(self, rowcount: int = 1, row: Optional[tuple] = None) -> None:
        self.rowcount = rowcount
        self.row = row
        self.executed: List[tuple[Any, tuple]] = []

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def execute(self, query: Any, params: tuple = ()) -> None:
        self.executed.append((query, params))

    def fetchone(self) -> Optional[tuple]:
        return self.row


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor

    def cursor(self) -> FakeCursor:
        return self._cursor


class FakeDatabase:
    def __init__(self, conn: Optional[FakeConnection], schema: str = "") -> None:
        self.conn = conn
        self.schema = schema
        self.closed = False

    @contextmanager
    def connection(self):
        yield self.conn

    def close(self) -> None:
        self.closed = True


def test_pg_update_is_conditional_on_status():
    cursor = FakeCursor(rowcount=0)

    store = PgPaymentStore(FakeDatabase(FakeConnection(cursor)))
    applied = store.update("p-1", {"status": PaymentStatus.FAILED}, expected_status=PaymentStatus.PENDING)

    assert applied is False
    _, params = cursor.executed[0]
    assert params == ("failed", "p-1", "pending")


def test_pg_ensure_schema_creates_schema_before_table():
    cursor = FakeCursor()

    PgPaymentStore(FakeDatabase(FakeConnection(cursor), schema="payments")).ensure_schema()

    schema_stmt, table_stmt = (query for query, _ in cursor.executed)
    assert schema_stmt == sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier("payments"))
    assert "CREATE TABLE IF NOT EXISTS payment" in table_stmt


def test_pg_ensure_schema_without_schema_only_creates_table():
    cursor = FakeCursor()

    PgPaymentStore(FakeDatabase(FakeConnection(cursor))).ensure_schema()

    assert len(cursor.executed) == 1
    assert "CREATE TABLE IF NOT EXISTS payment" in cursor.executed[0][0]


def test_pg_update_rejects_unknown_fields():
    with pytest.raises(ValueError):
        PgPaymentStore(FakeDatabase(None)).update("p-1", {"amount": 1})


def test_pg_hydrates_rows():
    now = utcnow()
    row = ("p-1", "tx-1", Decimal("2.5"), "KWD", "", "PAID", "stripe", None, "ref", {"a": 1}, now, now)

    found = PgPaymentStore(FakeDatabase(FakeConnection(FakeCursor(row=row)))).find_by_transaction_id("tx-1")

    assert found.status is PaymentStatus.PAID
    assert found.amount == Decimal("2.500")
    assert found.provider == "stripe"
    assert found.raw_response == {"a": 1}


def test_pg_store_without_database():
    db = FakeDatabase(None)
    store = PgPaymentStore(db)
    assert store.find_by_id("p-1") is None
    assert store.update("p-1", {"status": PaymentStatus.PAID}) is False
    assert store.count_by_status(PaymentStatus.PENDING) == 0
    store.close()
    assert db.closed


def test_build_store_defaults_to_memory():
    assert isinstance(build_store(make_settings()), InMemoryPaymentStore)


def test_database_without_dsn_yields_no_connection():
    db = Database.from_settings(make_settings())
    assert not db.enabled
    with db.connection() as conn:
        assert conn is None
    db.close()
