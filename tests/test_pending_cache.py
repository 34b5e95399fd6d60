from __future__ import annotations

from datetime import timedelta

from app.domain.models import TemporaryPayment, utcnow
from app.domain.statuses import PaymentStatus
from app.services.pending_cache import PendingPaymentCache


def entry(n: int, minutes_ago: int) -> TemporaryPayment:
    return TemporaryPayment(
        payment_id=f"p{n}",
        transaction_id=f"t{n}",
        discovered_at=utcnow() - timedelta(minutes=minutes_ago),
    )


def test_overflow_evicts_oldest_tenth():
    cache = PendingPaymentCache(capacity=20)
    for n in range(20):
        cache.add(entry(n, minutes_ago=100 - n))
    evicted = cache.add(entry(99, minutes_ago=0))
    assert evicted == 2
    assert len(cache) == 19
    assert "p0" not in cache and "p1" not in cache
    assert "p99" in cache


def test_small_capacity_evicts_at_least_one():
    cache = PendingPaymentCache(capacity=1)
    cache.add(entry(1, minutes_ago=5))
    assert cache.add(entry(2, minutes_ago=1)) == 1
    assert [e.payment_id for e in cache.entries()] == ["p2"]


def test_replacing_existing_entry_does_not_evict():
    cache = PendingPaymentCache(capacity=2)
    cache.add(entry(1, 5))
    cache.add(entry(2, 5))
    assert cache.add(entry(1, 0)) == 0
    assert len(cache) == 2


def test_due_and_sweep():
    cache = PendingPaymentCache()
    now = utcnow()
    cache.add(entry(1, minutes_ago=40))
    cache.add(entry(2, minutes_ago=20))
    cache.add(entry(3, minutes_ago=1))
    resolved = entry(4, minutes_ago=1)
    resolved.status = PaymentStatus.PAID
    cache.add(resolved)

    due = {e.payment_id for e in cache.due(timedelta(minutes=15), now=now)}
    assert due == {"p1", "p2"}

    removed = cache.sweep(timedelta(minutes=30), now=now)
    assert removed == 2
    assert {e.payment_id for e in cache.entries()} == {"p2", "p3"}
    assert cache.oldest().payment_id == "p2"


def test_remove():
    cache = PendingPaymentCache()
    cache.add(entry(1, 0))
    assert cache.remove("p1")
    assert not cache.remove("p1")
    assert cache.oldest() is None
