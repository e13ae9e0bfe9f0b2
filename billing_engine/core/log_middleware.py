"""
Request logging middleware.

Binds request/correlation ids for the duration of a request, echoes them in
response headers, and writes one ``request_completed`` line per billing call.
Health checks are not logged.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from billing_engine.core.structured_logging import correlation_id_var, request_id_var

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
CORRELATION_ID_HEADER = "x-correlation-id"
UNLOGGED_PATH_PREFIXES = ("/api/health",)


def _billing_outcome(status_code: Optional[int]) -> Optional[str]:
    # 402 and 303 are the engine's two lock responses
    if status_code == 402:
        return "usage_locked"
    if status_code == 303:
        return "workspace_redirect"
    return None


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Inject request_id / correlation_id into contextvars for every request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        corr_id = request.headers.get(CORRELATION_ID_HEADER) or req_id

        rid_token = request_id_var.set(req_id)
        cid_token = correlation_id_var.set(corr_id)
        start = time.perf_counter()
        status_code = None
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            if not request.url.path.startswith(UNLOGGED_PATH_PREFIXES):
                logger.info(
                    "request_completed",
                    extra={
                        "http.method": request.method,
                        "http.path": request.url.path,
                        "http.status_code": status_code,
                        # path_params is filled in by routing on the shared scope
                        "organization_id": request.path_params.get("organization_id"),
                        "billing.outcome": _billing_outcome(status_code),
                        "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                    },
                )
            request_id_var.reset(rid_token)
            correlation_id_var.reset(cid_token)

        response.headers[REQUEST_ID_HEADER] = req_id
        response.headers[CORRELATION_ID_HEADER] = corr_id
        return response
