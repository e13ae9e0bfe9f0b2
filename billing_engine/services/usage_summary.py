"""
Credit Usage Summary
====================

PURPOSE:
    Aggregates ``usage_debit`` ledger entries into monthly and all-time credit
    totals, per usage category and per product area, for the billing page.

NOTES:
    - Only negative deltas are usage; the credits counted are ``abs(delta)``.
    - "Monthly" means the current calendar month in ``settings.usage_timezone``
      (Europe/Istanbul by default), matched on each entry's created_at.
    - Category comes from ``metadata.category`` (missing → "unknown"); unseen
      categories are added as they appear.
    - Totals are rounded to one decimal at the end, not per row.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from billing_engine.config import settings
from billing_engine.services.billing_store import (
    BillingStore,
    BillingStoreError,
    BillingStoreUnavailable,
    billing_store,
)
from billing_engine.services.snapshot import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_USAGE_CATEGORIES = (
    "router",
    "rag",
    "fallback",
    "summary",
    "lead_extraction",
    "lead_reasoning",
    "embedding",
)
UNKNOWN_CATEGORY = "unknown"
USAGE_LEDGER_PAGE_SIZE = 1000

AI_REPLY_CATEGORIES = {"router", "rag", "fallback"}
DOCUMENT_PROCESSING_SOURCES = {
    "offering_profile_suggestion",
    "service_catalog_candidates",
    "required_intake_fields",
    "required_intake_followup",
}


@dataclass
class CreditUsageBreakdown:
    ai_replies: float = 0.0
    conversation_summary: float = 0.0
    lead_extraction: float = 0.0
    document_processing: float = 0.0

    def add(self, category: str, source: Optional[str], credits: float) -> None:
        if category in AI_REPLY_CATEGORIES:
            self.ai_replies += credits
        elif category == "summary":
            self.conversation_summary += credits
        elif category == "lead_extraction":
            if source in DOCUMENT_PROCESSING_SOURCES:
                self.document_processing += credits
            else:
                self.lead_extraction += credits
        elif category == "lead_reasoning":
            self.lead_extraction += credits

    def rounded(self) -> "CreditUsageBreakdown":
        return CreditUsageBreakdown(
            ai_replies=_round1(self.ai_replies),
            conversation_summary=_round1(self.conversation_summary),
            lead_extraction=_round1(self.lead_extraction),
            document_processing=_round1(self.document_processing),
        )


@dataclass
class CreditUsageTotals:
    credits: float = 0.0
    by_category: Dict[str, float] = field(default_factory=dict)
    breakdown: CreditUsageBreakdown = field(default_factory=CreditUsageBreakdown)
    count: int = 0

    def add(self, category: str, source: Optional[str], credits: float) -> None:
        self.by_category[category] = self.by_category.get(category, 0.0) + credits
        self.breakdown.add(category, source, credits)
        self.credits += credits
        self.count += 1

    def rounded(self) -> "CreditUsageTotals":
        return CreditUsageTotals(
            credits=_round1(self.credits),
            by_category={k: _round1(v) for k, v in self.by_category.items()},
            breakdown=self.breakdown.rounded(),
            count=self.count,
        )


@dataclass
class CreditUsageSummary:
    month: str
    timezone: str
    monthly: CreditUsageTotals
    total: CreditUsageTotals


_TENTH = Decimal("0.1")


def _round1(value: float) -> float:
    # Half-up on the decimal text; round() would send 0.25 to 0.2
    return float(Decimal(str(value)).quantize(_TENTH, rounding=ROUND_HALF_UP))


def _field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    if name == "metadata":
        return getattr(row, "entry_metadata", None)
    return getattr(row, name, None)


def _debit_credits(value: Any) -> float:
    try:
        delta = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(delta) or delta >= 0:
        return 0.0
    return abs(delta)


def _metadata_str(metadata: Any, key: str) -> Optional[str]:
    if not isinstance(metadata, Mapping):
        return None
    value = metadata.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _month_key(moment: datetime, tz: ZoneInfo) -> str:
    return moment.astimezone(tz).strftime("%Y-%m")


def build_credit_usage_summary(
    rows: Iterable[Any],
    now: Optional[datetime] = None,
    time_zone: Optional[str] = None,
    categories: Optional[Sequence[str]] = None,
) -> CreditUsageSummary:
    """Aggregate usage debit rows (mappings or ledger rows) into a summary."""
    time_zone = time_zone or settings.usage_timezone
    tz = ZoneInfo(time_zone)
    now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
    month = _month_key(now, tz)
    categories = DEFAULT_USAGE_CATEGORIES if categories is None else categories

    monthly = CreditUsageTotals(by_category={c: 0.0 for c in categories})
    total = CreditUsageTotals(by_category={c: 0.0 for c in categories})

    for row in rows:
        credits = _debit_credits(_field(row, "credits_delta"))
        if credits <= 0:
            continue

        created_at = parse_timestamp(_field(row, "created_at"))
        if created_at is None:
            continue

        metadata = _field(row, "metadata")
        category = _metadata_str(metadata, "category") or UNKNOWN_CATEGORY
        source = _metadata_str(metadata, "source")

        total.add(category, source, credits)
        if _month_key(created_at, tz) == month:
            monthly.add(category, source, credits)

    return CreditUsageSummary(
        month=month,
        timezone=time_zone,
        monthly=monthly.rounded(),
        total=total.rounded(),
    )


def _load_usage_debits(store: BillingStore, organization_id: str) -> List[Any]:
    rows: List[Any] = []
    offset = 0
    while True:
        page = store.fetch_usage_debits(organization_id, offset, USAGE_LEDGER_PAGE_SIZE)
        rows.extend(page)
        if len(page) < USAGE_LEDGER_PAGE_SIZE:
            return rows
        offset += USAGE_LEDGER_PAGE_SIZE


def get_org_credit_usage_summary(
    organization_id: str,
    store: Optional[BillingStore] = None,
    now: Optional[datetime] = None,
    time_zone: Optional[str] = None,
) -> CreditUsageSummary:
    """Summary for one organization; an empty summary when the ledger can't be read."""
    store = store or billing_store
    try:
        rows = _load_usage_debits(store, organization_id)
    except BillingStoreUnavailable:
        logger.debug("Credit ledger table missing; empty usage summary for %s", organization_id)
        rows = []
    except BillingStoreError as e:
        logger.error("Failed to load credit usage summary rows for %s: %s", organization_id, e)
        rows = []

    return build_credit_usage_summary(rows, now=now, time_zone=time_zone)
