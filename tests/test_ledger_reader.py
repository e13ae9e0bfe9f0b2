"""
Credit ledger reader and billing store tests.

Limit clamping, newest-first ordering against a real SQLite store, numeric
coercion, and the missing-table / store-failure fallbacks.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlmodel import Session, create_engine

from billing_engine.services.billing_store import (
    BillingStore,
    BillingStoreError,
    BillingStoreUnavailable,
    is_missing_table_error,
)
from billing_engine.services.ledger_reader import (
    LedgerEntry,
    clamp_ledger_limit,
    get_organization_billing_ledger,
)


class FakeStore:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.limits = []

    def fetch_ledger(self, organization_id, limit):
        self.limits.append(limit)
        if self.error:
            raise self.error
        return self.rows[:limit]


class _PgError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def _failing_session_factory(exc):
    @contextmanager
    def _factory():
        session = MagicMock()
        session.exec.side_effect = exc
        yield session

    return _factory


class TestClampLedgerLimit:
    """Limit is floored into [1, 100]; junk falls back to 15."""

    @pytest.mark.parametrize(
        "limit, expected",
        [
            (None, 15),
            (15, 15),
            (0, 1),
            (-3, 1),
            (500, 100),
            (100, 100),
            (12.9, 12),
            (float("nan"), 15),
            (float("inf"), 15),
            ("abc", 15),
            ("20", 20),
        ],
    )
    def test_clamp(self, limit, expected):
        assert clamp_ledger_limit(limit) == expected

    def test_store_receives_clamped_limit(self):
        store = FakeStore()
        get_organization_billing_ledger("org-1", limit=1000, store=store)
        assert store.limits == [100]


class TestLedgerFallbacks:
    """Failures never reach the caller."""

    def test_missing_table_returns_empty_quietly(self, caplog):
        store = FakeStore(error=BillingStoreUnavailable("missing"))
        with caplog.at_level(logging.DEBUG):
            assert get_organization_billing_ledger("org-1", store=store) == []
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_store_error_returns_empty_and_logs(self, caplog):
        store = FakeStore(error=BillingStoreError("boom"))
        assert get_organization_billing_ledger("org-1", store=store) == []
        assert any(r.levelno == logging.ERROR for r in caplog.records)


class TestLedgerFromDatabase:
    """End-to-end against the SQLite test database."""

    def test_newest_first_and_limited(self, insert_ledger_entry):
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        for i in range(5):
            insert_ledger_entry(id=f"e{i}", created_at=base + timedelta(hours=i))
        insert_ledger_entry(organization_id="org-other", id="x1", created_at=base + timedelta(days=1))

        entries = get_organization_billing_ledger("org-1", limit=3)
        assert [e.id for e in entries] == ["e4", "e3", "e2"]

    def test_numeric_fields_are_floats(self, insert_ledger_entry):
        insert_ledger_entry(
            id="p1",
            entry_type="purchase_credit",
            credit_pool="topup_pool",
            credits_delta=Decimal("25"),
            balance_after=Decimal("105.5"),
            entry_metadata={"order_id": "ord-1"},
        )
        (entry,) = get_organization_billing_ledger("org-1")
        assert isinstance(entry, LedgerEntry)
        assert entry.credits_delta == 25.0
        assert entry.balance_after == 105.5
        assert isinstance(entry.credits_delta, float)
        assert entry.entry_type == "purchase_credit"
        assert entry.metadata == {"order_id": "ord-1"}

    def test_unknown_org_is_empty(self):
        assert get_organization_billing_ledger("nobody") == []


class TestBillingStoreErrors:
    """Missing-relation detection and error classification."""

    def test_missing_sqlite_table_is_unavailable(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        store = BillingStore(session_factory=lambda: Session(engine))
        with pytest.raises(BillingStoreUnavailable):
            store.fetch_account("org-1")
        with pytest.raises(BillingStoreUnavailable):
            store.fetch_ledger("org-1", 15)

    def test_missing_table_ledger_read_is_empty(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        store = BillingStore(session_factory=lambda: Session(engine))
        assert get_organization_billing_ledger("org-1", store=store) == []

    def test_other_failures_are_store_errors(self):
        exc = OperationalError("SELECT * FROM organization_billing_accounts", {}, Exception("connection refused"))
        store = BillingStore(session_factory=_failing_session_factory(exc))
        with pytest.raises(BillingStoreError) as info:
            store.fetch_account("org-1")
        assert not isinstance(info.value, BillingStoreUnavailable)

    def test_pgcode_42p01(self):
        exc = ProgrammingError("SELECT 1", {}, _PgError("undefined table", pgcode="42P01"))
        assert is_missing_table_error(exc) is True

    def test_postgres_relation_message(self):
        exc = ProgrammingError(
            "SELECT 1", {}, _PgError('relation "organization_credit_ledger" does not exist')
        )
        assert is_missing_table_error(exc) is True

    def test_statement_text_alone_is_not_missing_table(self):
        """The SQL statement always names the table; only the driver message counts."""
        exc = OperationalError("SELECT * FROM organization_credit_ledger", {}, Exception("disk I/O error"))
        assert is_missing_table_error(exc) is False

    def test_permission_denied_is_store_error(self):
        """42501 names the table but the table exists; it must not read as unprovisioned."""
        exc = ProgrammingError(
            "SELECT * FROM organization_billing_accounts",
            {},
            _PgError("permission denied for table organization_billing_accounts", pgcode="42501"),
        )
        assert is_missing_table_error(exc) is False

        store = BillingStore(session_factory=_failing_session_factory(exc))
        with pytest.raises(BillingStoreError) as info:
            store.fetch_account("org-1")
        assert not isinstance(info.value, BillingStoreUnavailable)

    def test_permission_denied_ledger_read_is_logged(self, caplog):
        exc = ProgrammingError(
            "SELECT 1", {}, _PgError("permission denied for table organization_credit_ledger", pgcode="42501")
        )
        store = BillingStore(session_factory=_failing_session_factory(exc))
        with caplog.at_level(logging.DEBUG):
            assert get_organization_billing_ledger("org-1", store=store) == []
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_table_name_without_missing_marker(self):
        exc = OperationalError("SELECT 1", {}, Exception("could not read organization_credit_ledger: I/O error"))
        assert is_missing_table_error(exc) is False

    def test_sqlstate_attribute(self):
        err = Exception("undefined table")
        err.sqlstate = "42P01"
        assert is_missing_table_error(ProgrammingError("SELECT 1", {}, err)) is True
