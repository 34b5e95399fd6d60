from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

# Only these ``extra=`` keys reach the output; anything else (tokens, card
# data, raw gateway payloads) is dropped.
LOG_FIELDS = (
    "payment_id",
    "transaction_id",
    "provider",
    "status",
    "outcome",
    "previous_status",
    "reason",
    "minutes_elapsed",
    "reference_time",
    "response_code",
    "response_time_ms",
    "event",
    "endpoint",
    "method",
    "currency",
    "amount",
    "processed",
    "updated",
    "failed",
    "errors",
    "cache_size",
    "evicted",
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(
            {field: _jsonable(getattr(record, field)) for field in LOG_FIELDS if hasattr(record, field)}
        )
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def setup_logging(level: str | int = logging.INFO) -> None:
    """Route the root logger through ``JsonFormatter``."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler])
