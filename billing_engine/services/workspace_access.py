"""
Workspace Access Gate
=====================

PURPOSE:
    Degrades a locked organization's workspace to billing-only mode: every
    page except the plans and billing settings redirects to the plans page.

REDIRECT:
    ``enforce_workspace_access_or_redirect()`` raises WorkspaceLockedRedirect;
    the application turns it into a 303. Location format:

        [/<locale>]/settings/plans?locked=1[&reason=<lock_reason>]

    The default locale (``settings.default_locale``) carries no prefix.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from billing_engine.config import settings
from billing_engine.models.billing import LockReason
from billing_engine.services.request_context import BillingRequestContext
from billing_engine.services.snapshot import BillingSnapshot

logger = logging.getLogger(__name__)

__all__ = [
    "BILLING_ONLY_ALLOWED_PATHS",
    "WorkspaceAccessState",
    "WorkspaceLockedRedirect",
    "NavItem",
    "NavItemState",
    "is_billing_only_path",
    "resolve_workspace_access_state",
    "enforce_workspace_access_or_redirect",
    "resolve_billing_locked_nav_item",
]

BILLING_ONLY_ALLOWED_PATHS = ("/settings/plans", "/settings/billing")
LOCKED_SETTINGS_REDIRECT_PATH = "/settings/plans"

MODE_FULL = "full"
MODE_BILLING_ONLY = "billing_only"


@dataclass(frozen=True)
class WorkspaceAccessState:
    is_locked: bool
    mode: str


class WorkspaceLockedRedirect(Exception):
    """Raised to send a locked workspace to the plans page."""

    def __init__(self, location: str, lock_reason: Optional[str] = None):
        self.location = location
        self.lock_reason = lock_reason
        super().__init__(f"Workspace locked, redirecting to {location}")


def _normalize_path(path: Optional[str]) -> str:
    if not path:
        return "/"
    return path if path.startswith("/") else f"/{path}"


def build_localized_path(locale: Optional[str], path: str) -> str:
    normalized = _normalize_path(path)
    if not locale or locale == settings.default_locale:
        return normalized
    return f"/{locale}{normalized}"


def is_billing_only_path(path: Optional[str]) -> bool:
    """True for the plans/billing pages and anything below them."""
    normalized = _normalize_path(path)
    return any(
        normalized == candidate or normalized.startswith(f"{candidate}/")
        for candidate in BILLING_ONLY_ALLOWED_PATHS
    )


def resolve_workspace_access_state(snapshot: Optional[BillingSnapshot]) -> WorkspaceAccessState:
    if snapshot is None or snapshot.is_usage_allowed:
        return WorkspaceAccessState(is_locked=False, mode=MODE_FULL)
    return WorkspaceAccessState(is_locked=True, mode=MODE_BILLING_ONLY)


def build_locked_redirect_location(locale: Optional[str], lock_reason: Optional[str]) -> str:
    params = {"locked": "1"}
    if lock_reason and lock_reason != LockReason.NONE.value:
        params["reason"] = lock_reason
    return f"{build_localized_path(locale, settings.plans_path)}?{urlencode(params)}"


def enforce_workspace_access_or_redirect(
    organization_id: Optional[str],
    locale: Optional[str],
    current_path: Optional[str],
    bypass_lock: bool = False,
    context: Optional[BillingRequestContext] = None,
) -> None:
    """Raise WorkspaceLockedRedirect when a locked workspace requests a non-billing page."""
    if not organization_id or bypass_lock:
        return
    if is_billing_only_path(current_path):
        return

    context = context or BillingRequestContext()
    snapshot = context.load_snapshot(organization_id).snapshot
    access = resolve_workspace_access_state(snapshot)
    if not access.is_locked:
        return

    lock_reason = snapshot.lock_reason if snapshot else None
    location = build_locked_redirect_location(locale, lock_reason)
    logger.info(
        "workspace_locked_redirect",
        extra={"organization_id": organization_id, "path": current_path, "lock_reason": lock_reason},
    )
    raise WorkspaceLockedRedirect(location, lock_reason=lock_reason)


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NavItem:
    id: str
    href: Optional[str] = None


@dataclass(frozen=True)
class NavItemState:
    href: Optional[str]
    is_locked: bool


def resolve_billing_locked_nav_item(item: NavItem, workspace_locked: bool) -> NavItemState:
    """Navigation entry state for a (possibly) locked workspace."""
    if not item.href:
        return NavItemState(href=item.href, is_locked=False)

    if workspace_locked and item.id == "settings":
        resolved_href = LOCKED_SETTINGS_REDIRECT_PATH
    else:
        resolved_href = item.href

    return NavItemState(
        href=resolved_href,
        is_locked=workspace_locked and not is_billing_only_path(resolved_href),
    )
