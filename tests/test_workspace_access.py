"""
Workspace access gate and navigation lock tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from billing_engine.services.request_context import BillingRequestContext
from billing_engine.services.snapshot import build_billing_snapshot
from billing_engine.services.workspace_access import (
    NavItem,
    WorkspaceLockedRedirect,
    enforce_workspace_access_or_redirect,
    is_billing_only_path,
    resolve_billing_locked_nav_item,
    resolve_workspace_access_state,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def account(**overrides):
    row = {
        "organization_id": "org-1",
        "membership_state": "trial_active",
        "lock_reason": "none",
        "trial_started_at": NOW - timedelta(days=14),
        "trial_ends_at": NOW - timedelta(days=1),
        "trial_credit_limit": 120,
        "trial_credit_used": 20,
        "monthly_package_credit_limit": 0,
        "monthly_package_credit_used": 0,
        "topup_credit_balance": 0,
    }
    row.update(overrides)
    return row


class FakeStore:
    def __init__(self, row=None):
        self.row = row
        self.calls = 0

    def fetch_account(self, organization_id):
        self.calls += 1
        return self.row


def _context(row):
    store = FakeStore(row)
    return BillingRequestContext(store=store, now=NOW), store


class TestIsBillingOnlyPath:
    """Whitelisted billing pages."""

    @pytest.mark.parametrize(
        "path",
        ["/settings/plans", "/settings/billing", "/settings/plans/history", "settings/billing", "/settings/billing/"],
    )
    def test_allowed(self, path):
        assert is_billing_only_path(path) is True

    @pytest.mark.parametrize(
        "path",
        ["/inbox", "/settings", "/settings/plansx", "/settings/general", "", None, "/en/settings/plans"],
    )
    def test_not_allowed(self, path):
        assert is_billing_only_path(path) is False


class TestResolveWorkspaceAccessState:
    def test_no_snapshot_is_full(self):
        state = resolve_workspace_access_state(None)
        assert state.is_locked is False
        assert state.mode == "full"

    def test_allowed_snapshot_is_full(self):
        snap = build_billing_snapshot(account(trial_ends_at=NOW + timedelta(days=1)), now=NOW)
        assert resolve_workspace_access_state(snap).mode == "full"

    def test_locked_snapshot_is_billing_only(self):
        snap = build_billing_snapshot(account(), now=NOW)
        state = resolve_workspace_access_state(snap)
        assert state.is_locked is True
        assert state.mode == "billing_only"


class TestEnforceWorkspaceAccess:
    """Redirect decisions."""

    def test_no_organization_is_noop(self):
        context, store = _context(account())
        enforce_workspace_access_or_redirect(None, "tr", "/inbox", context=context)
        assert store.calls == 0

    def test_bypass_is_noop(self):
        context, store = _context(account())
        enforce_workspace_access_or_redirect("org-1", "tr", "/inbox", bypass_lock=True, context=context)
        assert store.calls == 0

    def test_billing_path_skips_lookup(self):
        context, store = _context(account())
        enforce_workspace_access_or_redirect("org-1", "tr", "/settings/billing", context=context)
        assert store.calls == 0

    def test_locked_default_locale_redirect(self):
        context, _ = _context(account())
        with pytest.raises(WorkspaceLockedRedirect) as info:
            enforce_workspace_access_or_redirect("org-1", "tr", "/inbox", context=context)
        assert info.value.location == "/settings/plans?locked=1&reason=trial_time_expired"
        assert info.value.lock_reason == "trial_time_expired"

    def test_locked_other_locale_prefixed(self):
        context, _ = _context(account(membership_state="past_due"))
        with pytest.raises(WorkspaceLockedRedirect) as info:
            enforce_workspace_access_or_redirect("org-1", "en", "/leads", context=context)
        assert info.value.location == "/en/settings/plans?locked=1&reason=past_due"

    def test_reason_omitted_when_none(self):
        context, _ = _context(account(membership_state="suspended", lock_reason="none"))
        with pytest.raises(WorkspaceLockedRedirect) as info:
            enforce_workspace_access_or_redirect("org-1", "tr", "/inbox", context=context)
        assert info.value.location == "/settings/plans?locked=1"

    def test_unlocked_is_noop(self):
        context, store = _context(account(trial_ends_at=NOW + timedelta(days=3)))
        enforce_workspace_access_or_redirect("org-1", "tr", "/inbox", context=context)
        assert store.calls == 1

    def test_missing_account_is_noop(self):
        context, _ = _context(None)
        enforce_workspace_access_or_redirect("org-1", "tr", "/inbox", context=context)


class TestResolveBillingLockedNavItem:
    """Sidebar entry state."""

    def test_item_without_href(self):
        state = resolve_billing_locked_nav_item(NavItem(id="group"), workspace_locked=True)
        assert state.href is None
        assert state.is_locked is False

    def test_locked_settings_redirects_to_plans(self):
        state = resolve_billing_locked_nav_item(NavItem(id="settings", href="/settings/general"), True)
        assert state.href == "/settings/plans"
        assert state.is_locked is False

    def test_locked_other_item(self):
        state = resolve_billing_locked_nav_item(NavItem(id="inbox", href="/inbox"), True)
        assert state.href == "/inbox"
        assert state.is_locked is True

    def test_locked_billing_item_stays_open(self):
        state = resolve_billing_locked_nav_item(NavItem(id="billing", href="/settings/billing"), True)
        assert state.is_locked is False

    def test_unlocked_settings_unchanged(self):
        state = resolve_billing_locked_nav_item(NavItem(id="settings", href="/settings/general"), False)
        assert state.href == "/settings/general"
        assert state.is_locked is False
