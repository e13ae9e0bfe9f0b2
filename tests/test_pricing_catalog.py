"""
Pricing Catalog Tests
=====================

Row mapping with per-slot fallback, conversation ranges, locale currency,
and the store fallbacks.
"""

import logging
from decimal import Decimal

import pytest

from billing_engine.models.billing import PlatformBillingSettings
from billing_engine.services.billing_store import BillingStore, BillingStoreError, BillingStoreUnavailable
from billing_engine.services.pricing_catalog import (
    FALLBACK_CATALOG,
    ConversationRange,
    get_billing_pricing_catalog,
    map_pricing_row,
    resolve_billing_currency_by_locale,
    resolve_conversation_range_for_credits,
    resolve_localized_money_for_locale,
)


class FakeStore:
    def __init__(self, row=None, error=None):
        self.row = row
        self.error = error

    def fetch_pricing_settings(self):
        if self.error:
            raise self.error
        return self.row


def _by_id(items):
    return {item.id: item for item in items}


class TestFallbackCatalog:
    def test_plans(self):
        plans = _by_id(FALLBACK_CATALOG.plans)
        assert list(plans) == ["starter", "growth", "scale"]
        assert (plans["starter"].credits, plans["starter"].price_try, plans["starter"].price_usd) == (1000, 349, 9.99)
        assert plans["starter"].conversation_range == ConversationRange(90, 120)
        assert plans["growth"].conversation_range == ConversationRange(180, 240)
        assert plans["scale"].conversation_range == ConversationRange(360, 480)

    def test_topups(self):
        topups = _by_id(FALLBACK_CATALOG.topups)
        assert [t.credits for t in topups.values()] == [250, 500, 1000]
        assert topups["topup_250"].conversation_range == ConversationRange(22, 30)
        assert topups["topup_500"].price_usd == 5.49

    def test_trial_credits(self):
        assert FALLBACK_CATALOG.trial_credits == 200


class TestMapPricingRow:
    def test_none_is_fallback(self):
        assert map_pricing_row(None) is FALLBACK_CATALOG

    def test_stored_values_win(self):
        catalog = map_pricing_row(
            {
                "default_trial_credits": 300,
                "starter_plan_credits": 1500,
                "starter_plan_price_try": "399",
                "starter_plan_price_usd": Decimal("11.49"),
                "topup_500_price_try": 199,
            }
        )
        starter = _by_id(catalog.plans)["starter"]
        assert catalog.trial_credits == 300
        assert (starter.credits, starter.price_try, starter.price_usd) == (1500, 399, 11.49)
        assert starter.conversation_range == ConversationRange(135, 180)
        assert _by_id(catalog.topups)["topup_500"].price_try == 199

    @pytest.mark.parametrize("value", ["abc", None, 0, -5, float("nan"), True])
    def test_unusable_value_falls_back_per_slot(self, value):
        catalog = map_pricing_row({"growth_plan_price_try": value, "growth_plan_price_usd": 20})
        growth = _by_id(catalog.plans)["growth"]
        assert growth.price_try == 649
        assert growth.price_usd == 20

    def test_topup_credits_are_fixed(self):
        catalog = map_pricing_row({"topup_250_credits": 999})
        assert _by_id(catalog.topups)["topup_250"].credits == 250

    def test_orm_row(self):
        row = PlatformBillingSettings(key="default", scale_plan_price_usd=Decimal("29.99"))
        scale = _by_id(map_pricing_row(row).plans)["scale"]
        assert scale.price_usd == 29.99
        assert scale.price_try == 999


class TestConversationRange:
    def test_minimum_of_one(self):
        assert resolve_conversation_range_for_credits(5) == ConversationRange(1, 1)

    def test_rounds_half_up(self):
        assert resolve_conversation_range_for_credits(16.5) == ConversationRange(1, 2)

    @pytest.mark.parametrize("value", [None, "abc", -10])
    def test_invalid_credits(self, value):
        assert resolve_conversation_range_for_credits(value) == ConversationRange(1, 1)


class TestLocaleCurrency:
    @pytest.mark.parametrize(
        "locale,currency",
        [("tr", "TRY"), ("tr-TR", "TRY"), ("en", "USD"), ("de", "USD"), (None, "USD"), ("", "USD")],
    )
    def test_currency(self, locale, currency):
        assert resolve_billing_currency_by_locale(locale) == currency

    def test_localized_money(self):
        assert resolve_localized_money_for_locale("tr", 349, 9.99).amount == 349
        money = resolve_localized_money_for_locale("en", 349, 9.99)
        assert (money.currency, money.amount) == ("USD", 9.99)


class TestGetBillingPricingCatalog:
    def test_no_row(self):
        assert get_billing_pricing_catalog(store=FakeStore()) is FALLBACK_CATALOG

    def test_missing_table_is_silent(self, caplog):
        with caplog.at_level(logging.ERROR):
            catalog = get_billing_pricing_catalog(store=FakeStore(error=BillingStoreUnavailable("missing")))
        assert catalog is FALLBACK_CATALOG
        assert not caplog.records

    def test_store_error_logged(self, caplog):
        with caplog.at_level(logging.ERROR):
            catalog = get_billing_pricing_catalog(store=FakeStore(error=BillingStoreError("boom")))
        assert catalog is FALLBACK_CATALOG
        assert any("pricing catalog" in r.getMessage() for r in caplog.records)

    def test_reads_settings_row(self, insert_row):
        insert_row(PlatformBillingSettings(key="default", starter_plan_price_try=Decimal("379.00")))
        catalog = get_billing_pricing_catalog(store=BillingStore())
        assert _by_id(catalog.plans)["starter"].price_try == 379

    def test_other_key_ignored(self, insert_row):
        insert_row(PlatformBillingSettings(key="staging", starter_plan_price_try=Decimal("1.00")))
        catalog = get_billing_pricing_catalog(store=BillingStore())
        assert _by_id(catalog.plans)["starter"].price_try == 349
