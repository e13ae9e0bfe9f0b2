"""
Credit pool policy predicates.
"""

from datetime import datetime, timedelta, timezone

import pytest

from billing_engine.models.billing import MembershipState
from billing_engine.services.credit_policy import (
    calculate_credit_progress,
    is_topup_allowed,
    is_usage_allowed,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _allowed(state, trial=0, ends=None, package=0, topup=0):
    return is_usage_allowed(state, trial, ends, NOW, package, topup)


class TestIsUsageAllowed:
    """Usage permission by membership state."""

    @pytest.mark.parametrize("state", ["admin_locked", "past_due", "canceled"])
    def test_blocked_states_never_allowed(self, state):
        """Blocked states deny usage even with every pool funded."""
        assert _allowed(state, trial=100, ends=NOW + timedelta(days=3), package=100, topup=100) is False

    def test_trial_with_credits_and_time(self):
        assert _allowed("trial_active", trial=10, ends=NOW + timedelta(days=1)) is True

    def test_trial_without_credits(self):
        assert _allowed("trial_active", trial=0, ends=NOW + timedelta(days=1)) is False

    def test_trial_without_end_date(self):
        assert _allowed("trial_active", trial=10, ends=None) is False

    def test_trial_after_end(self):
        assert _allowed("trial_active", trial=10, ends=NOW - timedelta(seconds=1)) is False

    def test_trial_at_exact_end_still_allowed(self):
        """The predicate itself is inclusive of the end instant."""
        assert _allowed("trial_active", trial=10, ends=NOW) is True

    def test_trial_exhausted(self):
        assert _allowed("trial_exhausted", trial=10, ends=NOW + timedelta(days=1)) is False

    def test_premium_with_package(self):
        assert _allowed("premium_active", package=1) is True

    def test_premium_with_topup_only(self):
        assert _allowed("premium_active", package=0, topup=0.5) is True

    def test_premium_empty(self):
        assert _allowed("premium_active", package=0, topup=0) is False

    def test_accepts_enum(self):
        assert _allowed(MembershipState.PREMIUM_ACTIVE, package=5) is True

    def test_unknown_state(self):
        assert _allowed("suspended", trial=10, package=10, topup=10) is False


class TestIsTopupAllowed:
    """Top-ups only for premium members with the package used up."""

    def test_premium_package_exhausted(self):
        assert is_topup_allowed("premium_active", 0) is True

    def test_premium_package_remaining(self):
        assert is_topup_allowed("premium_active", 12.4) is False

    @pytest.mark.parametrize("state", ["trial_active", "trial_exhausted", "past_due", "canceled", "admin_locked"])
    def test_non_premium(self, state):
        assert is_topup_allowed(state, 0) is False


class TestCalculateCreditProgress:
    """Consumed percentage, clamped."""

    def test_zero_limit(self):
        assert calculate_credit_progress(0, 50) == 0

    def test_negative_limit(self):
        assert calculate_credit_progress(-10, 5) == 0

    def test_half(self):
        assert calculate_credit_progress(100, 50) == 50

    def test_over_limit_clamped(self):
        assert calculate_credit_progress(100, 150) == 100

    def test_negative_used_clamped(self):
        assert calculate_credit_progress(100, -5) == 0

    def test_always_in_range(self):
        for limit in (0, 1, 7.5, 100):
            for used in (-10, 0, 3, 7.5, 200):
                assert 0 <= calculate_credit_progress(limit, used) <= 100
