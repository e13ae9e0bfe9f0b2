"""
Pytest configuration for billing engine tests.
Points the engine at a temporary SQLite database before anything imports settings.
"""

import os
import tempfile

# Must be set before any billing_engine imports
_test_data_dir = tempfile.mkdtemp(prefix="billing_engine_test_")
os.environ.setdefault("BILLING_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("BILLING_DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")
os.environ.setdefault("BILLING_LOG_DIR", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("BILLING_CREATE_TABLES", "true")
os.environ.pop("BILLING_CHECKOUT_RPC_URL", None)

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlmodel import SQLModel, select

from billing_engine.core.database import get_engine, get_session_context
from billing_engine.models.billing import (  # noqa: F401
    OrganizationBillingAccount,
    OrganizationCreditLedgerEntry,
    OrganizationSubscriptionRecord,
    PlatformBillingSettings,
)

SQLModel.metadata.create_all(get_engine())

# Load error registry so BillingEngineError returns correct HTTP status codes
from billing_engine.core.errors.registry import error_registry

error_registry.load()


@pytest.fixture(autouse=True)
def _clean_billing_tables():
    """Each test starts from empty billing tables."""
    yield
    with get_session_context() as session:
        for model in (
            OrganizationCreditLedgerEntry,
            OrganizationBillingAccount,
            PlatformBillingSettings,
            OrganizationSubscriptionRecord,
        ):
            for row in session.exec(select(model)).all():
                session.delete(row)
        session.commit()


@pytest.fixture
def insert_account():
    """Insert an organization_billing_accounts row; keyword overrides win."""
    def _insert(organization_id: str = "org-1", **overrides) -> OrganizationBillingAccount:
        now = datetime.now(timezone.utc)
        values = dict(
            organization_id=organization_id,
            membership_state="trial_active",
            lock_reason="none",
            trial_started_at=now - timedelta(days=7),
            trial_ends_at=now + timedelta(days=7),
            trial_credit_limit=Decimal("120"),
            trial_credit_used=Decimal("20"),
            monthly_package_credit_limit=Decimal("0"),
            monthly_package_credit_used=Decimal("0"),
            topup_credit_balance=Decimal("0"),
        )
        values.update(overrides)
        account = OrganizationBillingAccount(**values)
        with get_session_context() as session:
            session.add(account)
            session.commit()
            session.refresh(account)
        return account

    return _insert


@pytest.fixture
def insert_ledger_entry():
    """Insert an organization_credit_ledger row."""
    counter = {"n": 0}

    def _insert(organization_id: str = "org-1", **overrides) -> OrganizationCreditLedgerEntry:
        counter["n"] += 1
        values = dict(
            id=f"led-{counter['n']:04d}",
            organization_id=organization_id,
            entry_type="usage_debit",
            credit_pool="trial_pool",
            credits_delta=Decimal("-1.5"),
            balance_after=Decimal("98.5"),
            reason="AI usage debit",
            entry_metadata={"category": "router"},
            created_at=datetime.now(timezone.utc),
        )
        values.update(overrides)
        entry = OrganizationCreditLedgerEntry(**values)
        with get_session_context() as session:
            session.add(entry)
            session.commit()
            session.refresh(entry)
        return entry

    return _insert


@pytest.fixture
def insert_row():
    """Insert and return any billing model instance."""
    def _insert(row):
        with get_session_context() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
        return row

    return _insert
