"""
Billing Engine Configuration
============================

PURPOSE:
    Pydantic-Settings based configuration for the billing entitlement engine.
    All settings can be overridden via environment variables (BILLING_ prefix).

NOTES:
    The engine only reads billing state. Balance-mutating writes go through
    the external checkout procedures at ``checkout_rpc_url``.
"""

import logging
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Runtime configuration for the billing engine service."""

    app_name: str = "billing-engine"
    debug: bool = False

    # Persistent store (organization_billing_accounts, organization_credit_ledger).
    # Empty → SQLite file under data_directory.
    database_url: Optional[str] = None
    data_directory: str = "/data"
    # Local/dev only: create billing tables from SQLModel metadata at startup.
    # In production the tables are owned by the external schema migrations.
    create_tables: bool = False

    # Workspace access gate
    default_locale: str = "tr"   # Default locale is served without a path prefix
    plans_path: str = "/settings/plans"

    # Ledger reader
    ledger_default_limit: int = 15
    ledger_max_limit: int = 100

    # Sidebar
    low_credit_warning_threshold_percent: float = 10.0

    # Usage summary (calendar month boundaries are computed in this zone)
    usage_timezone: str = "Europe/Istanbul"

    # External checkout procedures (PostgREST-style RPC endpoint)
    checkout_rpc_url: Optional[str] = None
    checkout_service_key: Optional[str] = None
    checkout_timeout_s: float = 10.0

    # Logging
    log_dir: str = "logs"

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    class Config:
        env_file = ".env"
        env_prefix = "BILLING_"

    def get_database_url(self) -> str:
        """Return the configured database URL, defaulting to a local SQLite file."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{Path(self.data_directory) / 'billing.db'}"


settings = Settings()
