"""
Request-scoped billing snapshot memoization.

A ``BillingRequestContext`` is created once per request and passed to the
entitlement guard and workspace gate, so a request that checks both reads the
account row only once. Nothing is cached across requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from billing_engine.services.billing_store import (
    BillingStore,
    BillingStoreError,
    BillingStoreUnavailable,
    billing_store,
)
from billing_engine.services.snapshot import BillingSnapshot, build_billing_snapshot

logger = logging.getLogger(__name__)

# Why a snapshot could not be built
FALLBACK_ACCOUNT_MISSING = "account_missing"
FALLBACK_STORE_UNAVAILABLE = "store_unavailable"
FALLBACK_STORE_ERROR = "store_error"


@dataclass(frozen=True)
class SnapshotLookup:
    snapshot: Optional[BillingSnapshot]
    fallback_reason: Optional[str] = None


class BillingRequestContext:
    """Per-request snapshot cache keyed by organization id."""

    def __init__(self, store: Optional[BillingStore] = None, now: Optional[datetime] = None) -> None:
        self.store = store or billing_store
        self.now = now
        self._lookups: Dict[str, SnapshotLookup] = {}

    def load_snapshot(self, organization_id: str) -> SnapshotLookup:
        cached = self._lookups.get(organization_id)
        if cached is not None:
            return cached

        lookup = self._fetch(organization_id)
        self._lookups[organization_id] = lookup
        return lookup

    def _fetch(self, organization_id: str) -> SnapshotLookup:
        try:
            account = self.store.fetch_account(organization_id)
        except BillingStoreUnavailable:
            logger.debug("Billing tables missing; allowing usage for %s", organization_id)
            return SnapshotLookup(snapshot=None, fallback_reason=FALLBACK_STORE_UNAVAILABLE)
        except BillingStoreError as e:
            logger.error("Failed to load billing account for %s: %s", organization_id, e)
            return SnapshotLookup(snapshot=None, fallback_reason=FALLBACK_STORE_ERROR)

        if account is None:
            return SnapshotLookup(snapshot=None, fallback_reason=FALLBACK_ACCOUNT_MISSING)

        return SnapshotLookup(snapshot=build_billing_snapshot(account, now=self.now))


def get_billing_context() -> BillingRequestContext:
    """FastAPI dependency: one context per request (FastAPI caches it within the request)."""
    return BillingRequestContext()
