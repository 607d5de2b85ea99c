from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from bizflow.context import get_correlation_id


SERVICE_NAME = "bizflow-api"
MAX_ERROR_LENGTH = 500

_BASE_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"args", "msg", "message"}

# Only these `extra=` keys reach the JSON output.
_HTTP_FIELDS = {"method", "path", "status_code", "duration_ms"}
_EVENT_FIELDS = {"event_id", "event_name", "event_depth", "max_depth", "handler", "handler_module"}
_WORKFLOW_FIELDS = {"workflow_name", "execution_id", "step_number", "step_name", "step_type"}
_ANOMALY_FIELDS = {"confidence", "threshold"}
_KNOWN_FIELDS = frozenset(
    {"tenant_id", "status", "reason", "error"} | _HTTP_FIELDS | _EVENT_FIELDS | _WORKFLOW_FIELDS | _ANOMALY_FIELDS
)

_default_record_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    """Route every logger through one stdout handler emitting JSON lines.

    Records pick up the bound correlation id when they are created, so it is
    present for any handler, not only this one. Safe to call more than once.
    """
    root_logger = logging.getLogger()
    if getattr(root_logger, "_bizflow_configured", False):
        return

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved_level)
    handler.setFormatter(JsonLogFormatter())

    root_logger.handlers.clear()
    root_logger.setLevel(resolved_level)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    root_logger._bizflow_configured = True  # type: ignore[attr-defined]
