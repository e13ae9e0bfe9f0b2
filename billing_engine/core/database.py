"""
Database
========

PURPOSE:
    Engine and sessions for the database holding the billing schema
    (accounts, credit ledger, price list, subscription records).

NOTES:
    - BILLING_DATABASE_URL selects the backend; unset means a SQLite file
      under BILLING_DATA_DIRECTORY. Production points at the Postgres
      database that owns the billing schema.
    - The engine never writes billing rows. ``init_db()`` only creates the
      tables for local development (BILLING_CREATE_TABLES=true).
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlmodel import Session, SQLModel, create_engine

from billing_engine.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def _sqlite_engine(url: str) -> Engine:
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=settings.debug, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        # Readers must not block on the dev writer
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


def get_engine() -> Engine:
    """The process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        url = settings.get_database_url()
        if url.startswith("sqlite"):
            _engine = _sqlite_engine(url)
        else:
            _engine = create_engine(url, echo=settings.debug, pool_size=5, max_overflow=5, pool_pre_ping=True)
        logger.info("Database engine created: %s", make_url(url).render_as_string(hide_password=True))
    return _engine


@contextmanager
def get_session_context() -> Iterator[Session]:
    """Short-lived session for store reads::

        with get_session_context() as session:
            session.exec(select(OrganizationBillingAccount))
    """
    with Session(get_engine()) as session:
        yield session


def init_db() -> None:
    """Create the billing tables when BILLING_CREATE_TABLES is set."""
    if not settings.create_tables:
        logger.info("Billing tables are managed externally; skipping create_all")
        return

    # Registers the tables on SQLModel.metadata
    import billing_engine.models.billing  # noqa: F401

    SQLModel.metadata.create_all(get_engine())
    logger.info("Billing tables initialized")


def close_db() -> None:
    """Dispose the engine at shutdown."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
        logger.info("Database connections closed")
