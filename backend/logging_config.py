"""
Customer Core - Structured Logging

JSON log lines for production, a readable single-line format for local
runs, and the audit trail for customer lifecycle events.

Request-scoped fields (request_id, actor) live in context variables so
concurrent requests on one event loop never see each other's values.
"""

import contextvars
import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional


_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_actor_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("actor", default=None)

# Never written to audit events
PII_FIELDS = frozenset({
    "tax_id", "document_number", "email", "phone",
    "first_name", "middle_name", "last_name", "full_name", "date_of_birth",
})

# Attributes every LogRecord carries; anything else came in through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(request_id)s] %(message)s"

audit_logger = logging.getLogger("customers.audit")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with extras nested under "extra"."""

    def __init__(self, service_name: str = "customer-core"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "environment": self.environment,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        exc_type, exc_value, exc_tb = record.exc_info or (None, None, None)
        if exc_type is not None:
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


class RequestContextFilter(logging.Filter):
    """Stamp the current request id and actor onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_var.get()
        record.actor = _actor_var.get()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "customer-core"
) -> logging.Logger:
    """
    Route all logging through one stdout handler.

    Args:
        level: Root log level name
        json_format: JSON lines (production) instead of the text format
        service_name: Value of the "service" field in JSON lines

    Returns:
        The root logger
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter(service_name) if json_format else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def set_request_context(request_id: Optional[str] = None, actor: Optional[str] = None):
    _request_id_var.set(request_id)
    _actor_var.set(actor)


def clear_request_context():
    _request_id_var.set(None)
    _actor_var.set(None)


def get_request_id() -> Optional[str]:
    return _request_id_var.get()


def log_customer_event(event: str, customer_id: Any = None, **fields: Any) -> Dict[str, Any]:
    """
    Write one audit event for a customer lifecycle change.

    PII keys are dropped before logging, whatever the caller passed.

    Returns:
        The event payload as logged
    """
    event = getattr(event, "value", event)
    payload: Dict[str, Any] = {
        "event": event,
        "customer_id": str(customer_id) if customer_id is not None else None,
    }
    for key, value in fields.items():
        if key in PII_FIELDS:
            continue
        payload[key] = getattr(value, "value", value)

    audit_logger.info(f"Customer event: {event}", extra={"audit": payload})
    return payload
