"""
Health check endpoints.

- GET /api/health       - cheap: process alive, version, uptime
- GET /api/health/deep  - bounded database check (2s timeout)
"""
import asyncio
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import inspect, text

from billing_engine.core.database import get_engine
from billing_engine.core.structured_logging import APP_VERSION, SERVICE_NAME, get_uptime_s
from billing_engine.models.billing import OrganizationBillingAccount, OrganizationCreditLedgerEntry

logger = logging.getLogger(__name__)

router = APIRouter()

COMPONENT_TIMEOUT = 2.0  # seconds


@router.get("/health")
async def health_check():
    """Cheap health check - no I/O."""
    return {
        "status": "ok",
        "version": APP_VERSION,
        "service": SERVICE_NAME,
        "uptime_s": round(get_uptime_s(), 1),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _check_database() -> dict:
    start = time.monotonic()
    engine = get_engine()
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    tables = set(inspect(engine).get_table_names())
    missing = [
        name
        for name in (OrganizationBillingAccount.__tablename__, OrganizationCreditLedgerEntry.__tablename__)
        if name not in tables
    ]
    return {
        # Missing tables are served by the permissive fallback, so degraded, not down.
        "status": "degraded" if missing else "ok",
        "latency_ms": round((time.monotonic() - start) * 1000, 1),
        "missing_tables": missing,
    }


@router.get("/health/deep")
async def deep_health_check():
    """Database reachability and billing table presence."""
    try:
        database = await asyncio.wait_for(asyncio.to_thread(_check_database), timeout=COMPONENT_TIMEOUT)
    except asyncio.TimeoutError:
        database = {"status": "down", "error": f"timeout after {COMPONENT_TIMEOUT}s"}
    except Exception as e:
        logger.warning("Deep health database check failed: %s", e)
        database = {"status": "down", "error": str(e)}

    return {
        "status": database["status"],
        "version": APP_VERSION,
        "components": {"database": database},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
