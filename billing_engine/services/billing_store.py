"""
Billing Store - read-only access to the billing tables
======================================================

PURPOSE:
    Thin data-access layer over the billing tables: accounts, the credit
    ledger, the platform price list and subscription records. The engine
    never writes any of them.

ERROR CLASSIFICATION:
    - Missing relation (SQLSTATE 42P01; without a SQLSTATE, "no such table"
      or a "does not exist" message naming a relation or billing table)
      → BillingStoreUnavailable.
      Expected on deployments where the billing schema isn't migrated yet;
      callers fall back silently.
    - Any other database failure → BillingStoreError. Callers log it and
      fall back to their safest default.

    No retries. One query per call (usage summary pages through the ledger).
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from billing_engine.core.database import get_session_context
from billing_engine.models.billing import (
    USAGE_DEBIT_ENTRY_TYPE,
    OrganizationBillingAccount,
    OrganizationCreditLedgerEntry,
    OrganizationSubscriptionRecord,
    PlatformBillingSettings,
)

logger = logging.getLogger(__name__)

__all__ = [
    "BillingStore",
    "BillingStoreError",
    "BillingStoreUnavailable",
    "is_missing_table_error",
    "billing_store",
]

BILLING_TABLES = (
    OrganizationBillingAccount.__tablename__,
    OrganizationCreditLedgerEntry.__tablename__,
    PlatformBillingSettings.__tablename__,
    OrganizationSubscriptionRecord.__tablename__,
)
_MISSING_RELATION_SQLSTATE = "42P01"
_SQLITE_MISSING_TABLE = "no such table"
_MISSING_RELATION_MARKER = "does not exist"

PRICING_SETTINGS_KEY = "default"
# Subscription records that still describe the current period
CURRENT_SUBSCRIPTION_STATUSES = ("active", "past_due")


class BillingStoreError(Exception):
    """A billing read failed for a reason other than a missing table."""


class BillingStoreUnavailable(BillingStoreError):
    """The billing tables are not present in the connected database."""


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, exc):
        if candidate is None:
            continue
        code = getattr(candidate, "pgcode", None) or getattr(candidate, "sqlstate", None)
        if code:
            return str(code)
    return None


def is_missing_table_error(exc: BaseException) -> bool:
    """True when ``exc`` reports a missing billing relation.

    A driver SQLSTATE is authoritative: only 42P01 counts, so a permission
    failure (42501) naming a billing table stays a genuine store error.
    """
    code = _sqlstate(exc)
    if code is not None:
        return code == _MISSING_RELATION_SQLSTATE

    # SQLAlchemy's own str() embeds the statement text, which always names
    # the table. Match on the driver's message instead.
    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).lower()
    if _SQLITE_MISSING_TABLE in message:
        return True
    if _MISSING_RELATION_MARKER not in message:
        return False
    return "relation" in message or any(table in message for table in BILLING_TABLES)


SessionFactory = Callable[[], AbstractContextManager]


class BillingStore:
    """Read-only queries against the billing tables."""

    def __init__(self, session_factory: Optional[SessionFactory] = None) -> None:
        self._session_factory = session_factory or get_session_context

    def _run(self, operation: str, fn: Callable[[Session], object]):
        try:
            with self._session_factory() as session:
                return fn(session)
        except SQLAlchemyError as exc:
            if is_missing_table_error(exc):
                raise BillingStoreUnavailable(f"{operation}: billing tables missing") from exc
            raise BillingStoreError(f"{operation}: {exc}") from exc

    def fetch_account(self, organization_id: str) -> Optional[OrganizationBillingAccount]:
        """The organization's billing row, or None when it doesn't exist."""
        def _query(session: Session):
            stmt = select(OrganizationBillingAccount).where(
                OrganizationBillingAccount.organization_id == organization_id
            )
            return session.exec(stmt).first()

        return self._run("fetch_account", _query)

    def fetch_ledger(self, organization_id: str, limit: int) -> List[OrganizationCreditLedgerEntry]:
        """Latest ``limit`` ledger entries, newest first."""
        def _query(session: Session):
            stmt = (
                select(OrganizationCreditLedgerEntry)
                .where(OrganizationCreditLedgerEntry.organization_id == organization_id)
                .order_by(OrganizationCreditLedgerEntry.created_at.desc())
                .limit(limit)
            )
            return list(session.exec(stmt).all())

        return self._run("fetch_ledger", _query)

    def fetch_usage_debits(
        self,
        organization_id: str,
        offset: int,
        limit: int,
    ) -> List[OrganizationCreditLedgerEntry]:
        """One page of ``usage_debit`` entries, oldest first."""
        def _query(session: Session):
            stmt = (
                select(OrganizationCreditLedgerEntry)
                .where(OrganizationCreditLedgerEntry.organization_id == organization_id)
                .where(OrganizationCreditLedgerEntry.entry_type == USAGE_DEBIT_ENTRY_TYPE)
                .order_by(OrganizationCreditLedgerEntry.created_at.asc())
                .offset(offset)
                .limit(limit)
            )
            return list(session.exec(stmt).all())

        return self._run("fetch_usage_debits", _query)

    def fetch_pricing_settings(self, key: str = PRICING_SETTINGS_KEY) -> Optional[PlatformBillingSettings]:
        """The platform price list row, or None when it hasn't been configured."""
        def _query(session: Session):
            stmt = select(PlatformBillingSettings).where(PlatformBillingSettings.key == key)
            return session.exec(stmt).first()

        return self._run("fetch_pricing_settings", _query)

    def fetch_current_subscription(self, organization_id: str) -> Optional[OrganizationSubscriptionRecord]:
        """Newest active or past_due subscription record for the organization."""
        def _query(session: Session):
            stmt = (
                select(OrganizationSubscriptionRecord)
                .where(OrganizationSubscriptionRecord.organization_id == organization_id)
                .where(OrganizationSubscriptionRecord.status.in_(CURRENT_SUBSCRIPTION_STATUSES))
                .order_by(OrganizationSubscriptionRecord.created_at.desc())
                .limit(1)
            )
            return session.exec(stmt).first()

        return self._run("fetch_current_subscription", _query)


# Module-level singleton
billing_store = BillingStore()
