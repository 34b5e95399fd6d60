from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import Settings
from app.domain.enums import ReferenceTime
from app.domain.models import Payment, PaymentNotification, TemporaryPayment, as_utc, utcnow
from app.domain.statuses import PaymentStatus
from app.providers.registry import ProviderRegistry
from app.repositories.stores import PaymentStore

from .notifications import NotificationService
from .payment_router import PaymentRouter
from .pending_cache import PendingPaymentCache
from .provider_detection import detect_provider

logger = logging.getLogger(__name__)

REASON_NO_PROVIDER = "cannot determine provider"
REASON_CHECK_ERROR = "provider check error"
REASON_TIMEOUT = "timeout exceeded"


@dataclass
class Candidate:
    payment: Payment
    reference: ReferenceTime
    reference_at: datetime


@dataclass
class ItemResult:
    updated: bool = False
    marked_failed: bool = False
    new_status: Optional[PaymentStatus] = None


@dataclass
class ReconciliationSummary:
    processed: int = 0
    updated: int = 0
    failed: int = 0
    errors: int = 0
    skipped: bool = False
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None


@dataclass
class ManualReconciliationResult:
    success: bool
    updated: bool
    message: str
    new_status: Optional[PaymentStatus] = None


@dataclass
class PendingStats:
    total_pending: int
    pending_over_timeout: int
    oldest_pending_minutes: int
    cache_size: int
    timeout_minutes: int
    oldest_pending_at: Optional[datetime] = None


class ReconciliationEngine:
    """Drives pending payments to a terminal state.

    Each pass re-queries the gateway for every candidate and forces ``failed``
    once the timeout window has elapsed. Passes never overlap: a pass that
    finds another one running returns immediately with ``skipped=True``.
    The engine owns the pending cache and the scheduler that drives it.
    """

    def __init__(
        self,
        store: PaymentStore,
        router: PaymentRouter,
        registry: ProviderRegistry,
        notifications: NotificationService,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.router = router
        self.registry = registry
        self.notifications = notifications
        self.settings = settings
        self.clock = clock
        self.timeout = timedelta(minutes=settings.reconciliation_timeout_minutes)
        self.batch_size = settings.reconciliation_batch_size
        self.call_timeout = settings.provider_timeout_seconds
        self.cache = PendingPaymentCache(settings.cache_max_entries)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._run_lock = asyncio.Lock()
        self.last_summary: Optional[ReconciliationSummary] = None

    # Lifecycle

    def start(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            return
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(minutes=self.settings.reconciliation_interval_minutes),
            id="payment_reconciliation",
            name="Reconcile Pending Payments",
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.sweep_cache,
            trigger=IntervalTrigger(minutes=self.settings.cache_sweep_interval_minutes),
            id="pending_cache_sweep",
            name="Sweep Pending Payment Cache",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self.scheduler = scheduler
        logger.info(
            "reconciliation scheduler started",
            extra={"event": "start", "minutes_elapsed": self.settings.reconciliation_interval_minutes},
        )

    def stop(self) -> None:
        if self.scheduler is None:
            return
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("reconciliation scheduler stopped", extra={"event": "stop"})

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    # Registration hook

    def register_new_payment(
        self,
        payment_id: str,
        transaction_id: str,
        discovered_at: datetime | None = None,
    ) -> TemporaryPayment:
        entry = TemporaryPayment(
            payment_id=payment_id,
            transaction_id=transaction_id,
            discovered_at=as_utc(discovered_at) if discovered_at else self.clock(),
        )
        evicted = self.cache.add(entry)
        logger.debug(
            "payment registered for reconciliation",
            extra={
                "payment_id": payment_id,
                "transaction_id": transaction_id,
                "cache_size": len(self.cache),
                "evicted": evicted,
            },
        )
        return entry

    async def sweep_cache(self) -> int:
        if self._run_lock.locked():
            logger.info("reconciliation running, cache sweep skipped", extra={"event": "skip"})
            return 0
        removed = self.cache.sweep(self.timeout * 2, now=self.clock())
        if removed:
            logger.info("pending cache swept", extra={"evicted": removed, "cache_size": len(self.cache)})
        return removed

    # Runs

    async def run_once(self) -> ReconciliationSummary:
        if self._run_lock.locked():
            logger.info("reconciliation already running, skipping", extra={"event": "skip"})
            return ReconciliationSummary(skipped=True, finished_at=self.clock())
        async with self._run_lock:
            summary = await self.reconcile_pending_payments()
        self.last_summary = summary
        return summary

    async def reconcile_pending_payments(self) -> ReconciliationSummary:
        summary = ReconciliationSummary(started_at=self.clock())
        candidates = self._collect_candidates(summary.started_at)
        summary.processed = len(candidates)
        if not candidates:
            summary.finished_at = self.clock()
            return summary

        logger.info("reconciling pending payments", extra={"processed": len(candidates)})
        for candidate in candidates:
            try:
                result = await self._reconcile_candidate(candidate)
            except Exception as exc:  # noqa: BLE001
                summary.errors += 1
                logger.warning(
                    "reconciliation item error",
                    extra={
                        "payment_id": candidate.payment.id,
                        "transaction_id": candidate.payment.transaction_id,
                        "event": str(exc),
                    },
                )
                continue
            if result.updated:
                summary.updated += 1
            if result.marked_failed:
                summary.failed += 1

        summary.finished_at = self.clock()
        logger.info(
            "reconciliation completed",
            extra={
                "processed": summary.processed,
                "updated": summary.updated,
                "failed": summary.failed,
                "errors": summary.errors,
            },
        )
        return summary

    def _collect_candidates(self, now: datetime) -> List[Candidate]:
        candidates: List[Candidate] = []
        for entry in self.cache.due(self.timeout, now=now):
            payment = self.store.find_by_id(entry.payment_id)
            if payment is None:
                # Row not committed yet; the sweep drops it if it never shows up.
                continue
            if payment.status is not PaymentStatus.PENDING:
                self.cache.remove(entry.payment_id)
                continue
            candidates.append(Candidate(payment, ReferenceTime.DISCOVERED_AT, entry.discovered_at))

        for payment in self.store.find_pending(now - self.timeout, self.batch_size):
            if payment.id in self.cache:
                continue
            candidates.append(Candidate(payment, ReferenceTime.CREATED_AT, payment.created_at))
        return candidates

    async def _reconcile_candidate(self, candidate: Candidate) -> ItemResult:
        payment = candidate.payment
        provider = detect_provider(payment, self.registry)

        if provider is None:
            elapsed, exceeded = self._elapsed(candidate)
            logger.warning(
                "cannot determine provider for payment",
                extra={"payment_id": payment.id, "transaction_id": payment.transaction_id},
            )
            if not exceeded:
                return ItemResult()
            return self._transition(
                candidate,
                PaymentStatus.FAILED,
                elapsed,
                reason=REASON_NO_PROVIDER,
            )

        try:
            status = await asyncio.wait_for(
                self.router.get_status(payment.transaction_id, provider),
                timeout=self.call_timeout,
            )
        except Exception as exc:
            elapsed, exceeded = self._elapsed(candidate)
            if not exceeded:
                raise
            message = str(exc) or exc.__class__.__name__
            logger.warning(
                "provider check failed after timeout",
                extra={"payment_id": payment.id, "provider": provider, "event": message},
            )
            return self._transition(
                candidate,
                PaymentStatus.FAILED,
                elapsed,
                reason=REASON_CHECK_ERROR,
                error=message,
            )

        elapsed, exceeded = self._elapsed(candidate)
        if status.outcome is not PaymentStatus.PENDING:
            return self._transition(candidate, status.outcome, elapsed, provider=provider)
        if exceeded:
            return self._transition(
                candidate,
                PaymentStatus.FAILED,
                elapsed,
                reason=REASON_TIMEOUT,
                last_checked_status=status.outcome,
                provider=provider,
            )
        logger.debug(
            "payment still pending",
            extra={"payment_id": payment.id, "provider": provider, "minutes_elapsed": elapsed},
        )
        return ItemResult()

    def _elapsed(self, candidate: Candidate) -> tuple[int, bool]:
        delta = self.clock() - candidate.reference_at
        return int(delta.total_seconds() // 60), delta >= self.timeout

    def _transition(
        self,
        candidate: Candidate,
        new_status: PaymentStatus,
        minutes_elapsed: int,
        *,
        reason: str | None = None,
        error: str | None = None,
        last_checked_status: PaymentStatus | None = None,
        provider: str | None = None,
    ) -> ItemResult:
        payment = candidate.payment
        entry: Dict[str, Any] = {
            "timestamp": self.clock().isoformat(),
            "minutes_elapsed": minutes_elapsed,
            "previous_status": payment.status.value,
            "new_status": new_status.value,
            "reference_time": candidate.reference.value,
        }
        if reason:
            entry["reason"] = reason
        if last_checked_status is not None:
            entry["last_checked_status"] = last_checked_status.value
        if error:
            entry["error"] = error

        raw = dict(payment.raw_response or {})
        raw["reconciliation"] = _audit_trail(raw.get("reconciliation")) + [entry]
        fields: Dict[str, Any] = {"status": new_status, "raw_response": raw}
        if provider and not payment.provider:
            fields["provider"] = provider

        applied = self.store.update(payment.id, fields, expected_status=PaymentStatus.PENDING)
        self.cache.remove(payment.id)
        if not applied:
            logger.info(
                "payment already resolved elsewhere",
                extra={"payment_id": payment.id, "transaction_id": payment.transaction_id},
            )
            return ItemResult()

        logger.info(
            "payment reconciled",
            extra={
                "payment_id": payment.id,
                "transaction_id": payment.transaction_id,
                "previous_status": payment.status.value,
                "status": new_status.value,
                "reason": reason,
                "minutes_elapsed": minutes_elapsed,
                "reference_time": candidate.reference.value,
            },
        )
        self.notifications.notify(
            PaymentNotification(
                payment_id=payment.id,
                transaction_id=payment.transaction_id,
                status=new_status,
                previous_status=payment.status,
                amount=payment.amount,
                currency=payment.currency,
                source="reconciliation",
                provider=provider or payment.provider,
            )
        )
        return ItemResult(
            updated=True,
            marked_failed=new_status is PaymentStatus.FAILED,
            new_status=new_status,
        )

    # Operational helpers

    async def reconcile_payment_by_id(self, payment_id: str) -> ManualReconciliationResult:
        payment = self.store.find_by_id(payment_id)
        if payment is None:
            return ManualReconciliationResult(False, False, f"Payment {payment_id} not found")
        if payment.status is not PaymentStatus.PENDING:
            return ManualReconciliationResult(
                True,
                False,
                f"Payment {payment_id} is not pending (current status: {payment.status.value})",
            )
        cached = self.cache.get(payment_id)
        if cached is not None:
            candidate = Candidate(payment, ReferenceTime.DISCOVERED_AT, cached.discovered_at)
        else:
            candidate = Candidate(payment, ReferenceTime.CREATED_AT, payment.created_at)
        try:
            result = await self._reconcile_candidate(candidate)
        except Exception as exc:  # noqa: BLE001
            return ManualReconciliationResult(
                False,
                False,
                f"Failed to reconcile payment {payment_id}: {exc}",
            )
        if result.updated and result.new_status is not None:
            return ManualReconciliationResult(
                True,
                True,
                f"Payment {payment_id} updated to {result.new_status.value}",
                new_status=result.new_status,
            )
        return ManualReconciliationResult(True, False, f"Payment {payment_id} still pending")

    def get_pending_stats(self) -> PendingStats:
        now = self.clock()
        total = self.store.count_by_status(PaymentStatus.PENDING)
        over = self.store.count_by_status(PaymentStatus.PENDING, older_than=now - self.timeout)
        oldest = self.store.find_oldest_pending()
        oldest_minutes = int((now - oldest.created_at).total_seconds() // 60) if oldest else 0
        return PendingStats(
            total_pending=total,
            pending_over_timeout=over,
            oldest_pending_minutes=max(oldest_minutes, 0),
            cache_size=len(self.cache),
            timeout_minutes=self.settings.reconciliation_timeout_minutes,
            oldest_pending_at=oldest.created_at if oldest else None,
        )

    def get_cache_stats(self) -> Dict[str, Any]:
        now = self.clock()
        oldest = self.cache.oldest()
        return {
            "size": len(self.cache),
            "capacity": self.cache.capacity,
            "due": len(self.cache.due(self.timeout, now=now)),
            "oldest_discovered_at": oldest.discovered_at if oldest else None,
        }


def _audit_trail(existing: Any) -> List[Dict[str, Any]]:
    if isinstance(existing, list):
        return list(existing)
    if isinstance(existing, dict):
        return [existing]
    return []
