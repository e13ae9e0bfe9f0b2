"""
Structured Logging
==================

PURPOSE:
    One JSON line per log event, on stderr and in a rotating file under
    ``settings.log_dir``. Modules keep using ``logging.getLogger(__name__)``;
    records are rendered through structlog processors.

NOTES:
    - Every line carries ``service``/``version`` plus whichever of
      ``request_id``, ``correlation_id`` and ``organization_id`` are bound
      in the current context.
    - ``extra={...}`` fields on stdlib calls become top-level JSON keys.
    - Entitlement decisions log the organization explicitly; the context var
      is a convenience for everything logged further down the call.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Dict, Iterator, List

import structlog

from billing_engine import __version__

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
organization_id_var: ContextVar[str | None] = ContextVar("organization_id", default=None)

_CONTEXT_FIELDS: Dict[str, ContextVar] = {
    "request_id": request_id_var,
    "correlation_id": correlation_id_var,
    "organization_id": organization_id_var,
}

APP_VERSION = __version__
SERVICE_NAME = "billing-engine"

# Chatty libraries capped at WARNING
QUIET_LOGGERS = ("httpcore", "httpx", "asyncio", "sqlalchemy.engine", "uvicorn.access")

_started_at = time.monotonic()


def get_uptime_s() -> float:
    return time.monotonic() - _started_at


@contextmanager
def organization_log_context(organization_id: str) -> Iterator[None]:
    """Bind ``organization_id`` for every log line emitted inside the block."""
    token = organization_id_var.set(organization_id)
    try:
        yield
    finally:
        organization_id_var.reset(token)


def _add_service_fields(logger_name: str, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", APP_VERSION)
    for key, var in _CONTEXT_FIELDS.items():
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def _lowercase_level(logger_name: str, method_name: str, event_dict: dict) -> dict:
    level = event_dict.get("level")
    if isinstance(level, str):
        event_dict["level"] = level.lower()
    return event_dict


def _processors() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        _lowercase_level,
        structlog.stdlib.add_logger_name,
        _add_service_fields,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _file_handler(log_dir: str, log_file: str, max_bytes: int, backup_count: int):
    try:
        os.makedirs(log_dir, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, log_file),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # Read-only filesystem: stderr only
        sys.stderr.write(f"billing-engine: file logging disabled ({e})\n")
        return None


def setup_logging(
    log_dir: str = "logs",
    log_file: str = "billing-engine.jsonl",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_level: int = logging.INFO,
) -> None:
    """Route stdlib and structlog loggers to JSON lines. Call once at startup."""
    shared = _processors()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *shared],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    handlers = [logging.StreamHandler(sys.stderr)]
    file_handler = _file_handler(log_dir, log_file, max_bytes, backup_count)
    if file_handler is not None:
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
