"""
Customer Core - Sentry Integration

Error reporting for the customer API. Customer PII and key material are
scrubbed from every event before it leaves the process: the SDK's own
PII collection is off and `filter_sensitive_data` runs as `before_send`.
"""

import logging
import os
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from logging_config import PII_FIELDS

logger = logging.getLogger(__name__)

# Substrings matched against lower-cased keys
SECRET_KEY_PARTS = ("password", "secret", "token", "authorization", "cookie", "encryption_key", "ssn")
SENSITIVE_KEYS = frozenset(PII_FIELDS) | frozenset(SECRET_KEY_PARTS)

REDACTED = "[REDACTED]"

# Client disconnects are not service faults
_IGNORED_ERRORS = ["ConnectionResetError", "BrokenPipeError"]


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    return name in SENSITIVE_KEYS or any(part in name for part in SECRET_KEY_PARTS)


def redact_dict(data: Any) -> Any:
    """Replace values under sensitive keys, recursing into dicts and lists."""
    if isinstance(data, list):
        return [redact_dict(item) for item in data]
    if not isinstance(data, dict):
        return data
    return {
        key: REDACTED if _is_sensitive(key) else redact_dict(value)
        for key, value in data.items()
    }


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """before_send hook: scrub request payloads, extras and contexts."""
    request = event.get("request")
    if isinstance(request, dict):
        for section in ("headers", "data", "cookies", "query_string"):
            if isinstance(request.get(section), dict):
                request[section] = redact_dict(request[section])

    for section in ("extra", "contexts"):
        if section in event:
            event[section] = redact_dict(event[section])

    return event


def init_sentry(
    dsn: Optional[str],
    environment: str = "development",
    release: Optional[str] = None,
    traces_sample_rate: float = 0.0,
) -> bool:
    """
    Start error reporting when a DSN is configured.

    Returns:
        True if the SDK was initialized
    """
    if not dsn:
        logger.info("SENTRY_DSN not set - error reporting disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release or os.environ.get("GIT_SHA"),
            traces_sample_rate=traces_sample_rate,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            send_default_pii=False,
            before_send=filter_sensitive_data,
            ignore_errors=_IGNORED_ERRORS,
        )
    except Exception as e:
        logger.error(f"Sentry initialization failed: {e}")
        return False

    logger.info(f"Sentry error reporting enabled ({environment})")
    return True


def capture_exception(exception: Exception, **context: Any) -> Optional[str]:
    """
    Report an internal failure with request context attached as extras.

    Returns:
        The Sentry event id, or None when reporting is disabled
    """
    if not sentry_sdk.is_initialized():
        return None

    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)
