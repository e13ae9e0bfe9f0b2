"""
Pricing Catalog
===============

PURPOSE:
    Plan tiers and top-up packs offered on the plans page, read from the
    ``platform_billing_settings`` row and projected into a PricingCatalog.

NOTES:
    - Stored prices and credit amounts go through ``to_non_negative_number``;
      a missing, zero or non-numeric value falls back to the built-in
      catalog's value for that slot. Top-up pack sizes are fixed.
    - No row, a missing table or a store failure yields FALLBACK_CATALOG.
      Store failures are logged; the plans page always renders.
    - Conversation ranges are a rough "how many AI conversations" hint:
      9-12% of the credit amount, at least 1.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, List, Mapping, Optional

from billing_engine.services.billing_store import (
    BillingStore,
    BillingStoreError,
    BillingStoreUnavailable,
    billing_store,
)
from billing_engine.services.credit_cost import to_non_negative_number

logger = logging.getLogger(__name__)

__all__ = [
    "ConversationRange",
    "CatalogPlanTier",
    "CatalogTopupPack",
    "PricingCatalog",
    "LocalizedMoney",
    "FALLBACK_CATALOG",
    "map_pricing_row",
    "get_billing_pricing_catalog",
    "resolve_billing_currency_by_locale",
    "resolve_localized_money_for_locale",
    "resolve_conversation_range_for_credits",
]

CURRENCY_TRY = "TRY"
CURRENCY_USD = "USD"


@dataclass(frozen=True)
class ConversationRange:
    min: int
    max: int


@dataclass(frozen=True)
class CatalogPlanTier:
    id: str
    credits: float
    price_try: float
    price_usd: float
    conversation_range: ConversationRange


@dataclass(frozen=True)
class CatalogTopupPack:
    id: str
    credits: float
    price_try: float
    price_usd: float
    conversation_range: ConversationRange


@dataclass(frozen=True)
class PricingCatalog:
    trial_credits: float
    plans: List[CatalogPlanTier]
    topups: List[CatalogTopupPack]


@dataclass(frozen=True)
class LocalizedMoney:
    currency: str
    amount: float


def resolve_conversation_range_for_credits(credits: Any) -> ConversationRange:
    safe = max(0, math.floor(to_non_negative_number(credits) + 0.5))
    return ConversationRange(
        min=max(1, math.floor(safe * 0.09)),
        max=max(1, math.floor(safe * 0.12)),
    )


def _plan(plan_id: str, credits: float, price_try: float, price_usd: float) -> CatalogPlanTier:
    return CatalogPlanTier(plan_id, credits, price_try, price_usd, resolve_conversation_range_for_credits(credits))


def _topup(pack_id: str, credits: float, price_try: float, price_usd: float) -> CatalogTopupPack:
    return CatalogTopupPack(pack_id, credits, price_try, price_usd, resolve_conversation_range_for_credits(credits))


FALLBACK_CATALOG = PricingCatalog(
    trial_credits=200,
    plans=[
        _plan("starter", 1000, 349, 9.99),
        _plan("growth", 2000, 649, 17.99),
        _plan("scale", 4000, 999, 26.99),
    ],
    topups=[
        _topup("topup_250", 250, 99, 2.99),
        _topup("topup_500", 500, 189, 5.49),
        _topup("topup_1000", 1000, 349, 9.99),
    ],
)


def _field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def _number_or(row: Any, name: str, fallback: float) -> float:
    return to_non_negative_number(_field(row, name)) or fallback


def map_pricing_row(row: Any) -> PricingCatalog:
    """Project a ``platform_billing_settings`` row (ORM row or mapping) into a catalog."""
    if row is None:
        return FALLBACK_CATALOG

    plans = []
    for fallback in FALLBACK_CATALOG.plans:
        credits = _number_or(row, f"{fallback.id}_plan_credits", fallback.credits)
        plans.append(
            _plan(
                fallback.id,
                credits,
                _number_or(row, f"{fallback.id}_plan_price_try", fallback.price_try),
                _number_or(row, f"{fallback.id}_plan_price_usd", fallback.price_usd),
            )
        )

    topups = [
        replace(
            fallback,
            price_try=_number_or(row, f"{fallback.id}_price_try", fallback.price_try),
            price_usd=_number_or(row, f"{fallback.id}_price_usd", fallback.price_usd),
        )
        for fallback in FALLBACK_CATALOG.topups
    ]

    return PricingCatalog(
        trial_credits=_number_or(row, "default_trial_credits", FALLBACK_CATALOG.trial_credits),
        plans=plans,
        topups=topups,
    )


def get_billing_pricing_catalog(store: Optional[BillingStore] = None) -> PricingCatalog:
    """Current catalog; the built-in one when the price list can't be read."""
    store = store or billing_store
    try:
        row = store.fetch_pricing_settings()
    except BillingStoreUnavailable:
        logger.debug("Pricing settings table missing; using fallback catalog")
        return FALLBACK_CATALOG
    except BillingStoreError as e:
        logger.error("Failed to load billing pricing catalog: %s", e)
        return FALLBACK_CATALOG

    return map_pricing_row(row)


def resolve_billing_currency_by_locale(locale: Optional[str]) -> str:
    return CURRENCY_TRY if (locale or "").startswith("tr") else CURRENCY_USD


def resolve_localized_money_for_locale(locale: Optional[str], price_try: float, price_usd: float) -> LocalizedMoney:
    currency = resolve_billing_currency_by_locale(locale)
    return LocalizedMoney(currency=currency, amount=price_try if currency == CURRENCY_TRY else price_usd)
