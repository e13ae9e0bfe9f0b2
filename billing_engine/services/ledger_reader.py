"""
Credit ledger reader for audit display.

Newest-first, bounded, never raises: a missing table or a store failure
yields an empty list.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from billing_engine.config import settings
from billing_engine.services.billing_store import (
    BillingStore,
    BillingStoreError,
    BillingStoreUnavailable,
    billing_store,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    entry_type: str
    credit_pool: str
    credits_delta: float
    balance_after: float
    reason: Optional[str]
    metadata: Any
    created_at: Optional[datetime]


def clamp_ledger_limit(limit: Any) -> int:
    """Floor ``limit`` into [1, max]; None or non-numeric falls back to the default."""
    default = settings.ledger_default_limit
    if limit is None or isinstance(limit, bool):
        return default
    try:
        value = float(limit)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value):
        return default
    return max(1, min(settings.ledger_max_limit, math.floor(value)))


def _to_number(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_entry(row: Any) -> LedgerEntry:
    return LedgerEntry(
        id=str(row.id),
        entry_type=row.entry_type,
        credit_pool=row.credit_pool,
        credits_delta=_to_number(row.credits_delta),
        balance_after=_to_number(row.balance_after),
        reason=row.reason,
        metadata=row.entry_metadata,
        created_at=row.created_at,
    )


def get_organization_billing_ledger(
    organization_id: str,
    limit: Any = 15,
    store: Optional[BillingStore] = None,
) -> List[LedgerEntry]:
    """Latest ledger entries for an organization, newest first."""
    store = store or billing_store
    bounded = clamp_ledger_limit(limit)

    try:
        rows = store.fetch_ledger(organization_id, bounded)
    except BillingStoreUnavailable:
        logger.debug("Credit ledger table missing; returning empty ledger for %s", organization_id)
        return []
    except BillingStoreError as e:
        logger.error("Failed to load billing ledger for %s: %s", organization_id, e)
        return []

    return [_to_entry(row) for row in rows]
