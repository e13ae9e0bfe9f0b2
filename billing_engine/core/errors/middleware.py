"""
Exception handler for BillingEngineError.

Looks the code up in the registry and renders::

    {"error": {"code", "title", "message", "retryable",
               "user_action_required", "remediation"}}

Codes missing from the registry are logged and rendered as BIL-SYS-001.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from billing_engine.core.errors import BillingEngineError
from billing_engine.core.errors.registry import FALLBACK_CODE, ErrorEntry, error_registry

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Used if the registry itself failed to load
_LAST_RESORT = ErrorEntry(
    code=FALLBACK_CODE,
    domain="SYS",
    title="Internal error",
    severity="ERROR",
    retryable=False,
    user_action_required=False,
    http_status=500,
    safe_message="An unexpected error occurred.",
)


def _error_body(entry: ErrorEntry) -> dict:
    return {
        "error": {
            "code": entry.code,
            "title": entry.title,
            "message": entry.safe_message,
            "retryable": entry.retryable,
            "user_action_required": entry.user_action_required,
            "remediation": entry.remediation,
        }
    }


async def billing_error_handler(request: Request, exc: BillingEngineError) -> JSONResponse:
    """Convert BillingEngineError into a structured JSON response."""
    entry = error_registry.get(exc.code)

    if entry is None:
        logger.error("unregistered_error_code", extra=exc.log_fields())
        entry = error_registry.get(FALLBACK_CODE) or _LAST_RESORT
    else:
        logger.log(
            _LOG_LEVELS.get(entry.severity, logging.ERROR),
            entry.title,
            extra={**exc.log_fields(), "error.retryable": entry.retryable},
        )

    return JSONResponse(status_code=entry.http_status, content=_error_body(entry))
