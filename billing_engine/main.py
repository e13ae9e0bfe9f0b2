"""
Billing Engine API
==================

FastAPI application exposing the billing entitlement engine: snapshots,
entitlements, the workspace gate, ledger and usage views, and the mock
checkout actions.

Run with:
    uvicorn billing_engine.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from billing_engine import __version__
from billing_engine.config import settings
from billing_engine.core.database import close_db, init_db
from billing_engine.core.errors import BillingEngineError
from billing_engine.core.errors.middleware import billing_error_handler
from billing_engine.core.errors.registry import error_registry
from billing_engine.core.log_middleware import CorrelationMiddleware
from billing_engine.core.structured_logging import setup_logging
from billing_engine.routers import billing, health
from billing_engine.services.entitlements import UsageLockedError
from billing_engine.services.workspace_access import WorkspaceLockedRedirect

# Initialize structured logging before any logger calls
setup_logging(log_dir=settings.log_dir)

logger = logging.getLogger(__name__)

API_TITLE = "Billing Entitlement Engine"
API_DESCRIPTION = """
Decides, for any organization at any instant, whether paid AI usage is
permitted, which credit pool is drawn from, what usage costs in credits, and
when a workspace must drop to billing-only mode.
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: load the error registry and database on startup."""
    logger.info("Starting %s v%s", API_TITLE, __version__)

    error_registry.load()
    init_db()

    yield

    close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(BillingEngineError, billing_error_handler)

    @app.exception_handler(UsageLockedError)
    async def _usage_locked_handler(request: Request, exc: UsageLockedError):
        return JSONResponse(
            status_code=402,
            content={
                "error": "usage_locked",
                "message": str(exc),
                "organization_id": exc.organization_id,
                "lock_reason": exc.lock_reason,
                "membership_state": exc.membership_state,
            },
        )

    @app.exception_handler(WorkspaceLockedRedirect)
    async def _workspace_locked_handler(request: Request, exc: WorkspaceLockedRedirect):
        return RedirectResponse(url=exc.location, status_code=303)

    # Catch-all handler so unhandled exceptions return JSON (not bare text)
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error"},
        )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(billing.router, prefix="/api/billing", tags=["billing"])

    @app.get("/")
    async def root():
        return {"name": API_TITLE, "version": __version__, "docs": "/docs"}

    return app


app = create_app()
