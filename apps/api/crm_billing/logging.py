from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from crm_billing.context import get_correlation_id, get_job_name

_RESERVED = frozenset(logging.makeLogRecord({}).__dict__) | {"args", "msg", "message", "correlation_id", "job_name"}
_ERROR_LIMIT = 500

# Only these extras reach the output; anything else passed via ``extra=`` is dropped.
_EMITTED_FIELDS = frozenset(
    {
        # http
        "method",
        "path",
        "status_code",
        "duration_ms",
        # jobs and sweeps
        "status",
        "error",
        "sent_count",
        "failed_count",
        "skipped_count",
        "renewals_expired",
        "renewals_expiring",
        "invoices_overdue",
        "customers_checked",
        "created",
        "existing",
        # billing records
        "customer_id",
        "renewal_id",
        "invoice_id",
        "invoice_number",
        "reminder_id",
        "days_until_expiry",
        "attempt",
        # notifier
        "destination",
        "message_length",
    }
)


def _bind_context(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if not getattr(record, "job_name", None):
        record.job_name = get_job_name()
    return record


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _bind_context(record)
        return True


_base_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    # job_name is left to the filter; callers pass it through ``extra``.
    record = _base_factory(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: fixed envelope keys plus whitelisted ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key in _EMITTED_FIELDS and key not in _RESERVED and value is not None
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_ERROR_LIMIT]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "job_name": getattr(record, "job_name", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_crm_billing_configured", False):
        return

    if level is None:
        from crm_billing.core.config import get_settings

        level = get_settings().log_level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(resolved)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    root_logger._crm_billing_configured = True  # type: ignore[attr-defined]
