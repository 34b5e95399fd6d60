from __future__ import annotations

import logging
import os
import platform
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends

from app.container import Container
from app.domain.statuses import PaymentStatus
from app.utils.security import verify_bearer_token

from .deps import get_container

router = APIRouter()
logger = logging.getLogger(__name__)

SERVICE_STARTED_AT = datetime.now(timezone.utc)


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check endpoint for load balancers."""
    return {"status": "ok"}


def _collect_payment_metrics(container: Container) -> dict[str, Any]:
    metrics: dict[str, Any] = {"status_counts": {}, "cache": {}}
    try:
        for status in PaymentStatus:
            metrics["status_counts"][status.value] = container.store.count_by_status(status)
        cache = container.reconciliation.get_cache_stats()
        oldest = cache.get("oldest_discovered_at")
        metrics["cache"] = {**cache, "oldest_discovered_at": oldest.isoformat() if oldest else None}
    except Exception as exc:  # noqa: BLE001
        logger.info("health metrics collection failed", extra={"event": str(exc)})
    return metrics


@router.get("/health/metrics", dependencies=[Depends(verify_bearer_token)])
async def health_metrics(container: Container = Depends(get_container)) -> dict[str, Any]:
    """Detailed service health endpoint with lightweight operational metrics."""

    captured_at = datetime.now(timezone.utc)
    uptime_seconds = int((captured_at - SERVICE_STARTED_AT).total_seconds())
    last = container.reconciliation.last_summary
    return {
        "status": "ok" if container.registry.get_registered_providers() else "degraded",
        "timestamp": captured_at.isoformat(),
        "uptime_seconds": uptime_seconds,
        "service": {
            "active_provider": container.registry.active_provider_name(),
            "registered_providers": container.registry.get_registered_providers(),
            "host": platform.node(),
            "pid": os.getpid(),
        },
        "database": {
            "enabled": container.settings.db_enabled,
            "schema": container.settings.db_schema or None,
        },
        "reconciliation": {
            "scheduler_running": container.reconciliation.running,
            "timeout_minutes": container.settings.reconciliation_timeout_minutes,
            "last_run_finished_at": last.finished_at.isoformat() if last and last.finished_at else None,
        },
        "payments": _collect_payment_metrics(container),
    }
