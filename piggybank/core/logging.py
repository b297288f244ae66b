from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from piggybank.core.config import settings

SERVICE_NAME = "piggybank-api"

# Attributes copied from ``extra=`` into the JSON line when present.
CONTEXT_FIELDS = (
    "request_id",
    "group_id",
    "user_id",
    "child_id",
    "open_request_id",
    "amount",
    "transaction_type",
    "operation",
    "attempt",
    "route",
    "method",
    "status_code",
    "execution_time_ms",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": SERVICE_NAME,
            "environment": settings.app_env,
        }
        if settings.git_sha:
            payload["git_sha"] = settings.git_sha

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, default=str)


def setup_json_logging(level: str | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel((level or settings.log_level).upper())
