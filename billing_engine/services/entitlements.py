"""
Entitlement Resolver & Usage Guard
==================================

PURPOSE:
    Answers "may this organization perform billable AI work right now?" and
    provides the guard every billable code path goes through.

    1. **resolve_usage_entitlement()** - loads the account and projects it.
    2. **assert_usage_allowed()** - raises UsageLockedError when locked.
    3. **require_usage_allowed()** - FastAPI dependency factory wrapping (2).

FAIL-OPEN POLICY:
    When no snapshot can be built the entitlement is permissive. The
    ``fallback_reason`` says why:
      - account_missing   - no billing row yet (not logged)
      - store_unavailable - billing tables not migrated (debug log only)
      - store_error       - genuine store failure (logged as error)
    Only a real, locked snapshot ever blocks usage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Depends

from billing_engine.core.structured_logging import organization_log_context
from billing_engine.services.billing_store import BillingStore
from billing_engine.services.request_context import BillingRequestContext, get_billing_context
from billing_engine.services.snapshot import BillingSnapshot

logger = logging.getLogger(__name__)

__all__ = [
    "UsageEntitlement",
    "UsageLockedError",
    "resolve_usage_entitlement",
    "assert_usage_allowed",
    "require_usage_allowed",
]


@dataclass(frozen=True)
class UsageEntitlement:
    is_usage_allowed: bool
    lock_reason: Optional[str]
    membership_state: Optional[str]
    snapshot: Optional[BillingSnapshot]
    fallback_reason: Optional[str] = None


class UsageLockedError(Exception):
    """Raised when billable usage is attempted on a locked organization."""

    def __init__(
        self,
        organization_id: str,
        lock_reason: Optional[str] = None,
        membership_state: Optional[str] = None,
    ):
        self.organization_id = organization_id
        self.lock_reason = lock_reason
        self.membership_state = membership_state
        super().__init__(f"Billing usage is locked for organization {organization_id}")


def resolve_usage_entitlement(
    organization_id: str,
    store: Optional[BillingStore] = None,
    now: Optional[datetime] = None,
    context: Optional[BillingRequestContext] = None,
) -> UsageEntitlement:
    context = context or BillingRequestContext(store=store, now=now)
    lookup = context.load_snapshot(organization_id)

    if lookup.snapshot is None:
        return UsageEntitlement(
            is_usage_allowed=True,
            lock_reason=None,
            membership_state=None,
            snapshot=None,
            fallback_reason=lookup.fallback_reason,
        )

    snapshot = lookup.snapshot
    return UsageEntitlement(
        is_usage_allowed=snapshot.is_usage_allowed,
        lock_reason=snapshot.lock_reason,
        membership_state=snapshot.membership_state,
        snapshot=snapshot,
    )


def assert_usage_allowed(
    organization_id: str,
    store: Optional[BillingStore] = None,
    now: Optional[datetime] = None,
    context: Optional[BillingRequestContext] = None,
) -> UsageEntitlement:
    """Return the entitlement, or raise UsageLockedError if usage is locked."""
    entitlement = resolve_usage_entitlement(organization_id, store=store, now=now, context=context)
    if entitlement.is_usage_allowed:
        return entitlement

    logger.info(
        "usage_locked",
        extra={
            "organization_id": organization_id,
            "lock_reason": entitlement.lock_reason,
            "membership_state": entitlement.membership_state,
        },
    )
    raise UsageLockedError(
        organization_id,
        lock_reason=entitlement.lock_reason,
        membership_state=entitlement.membership_state,
    )


def require_usage_allowed():
    """FastAPI dependency factory for billable endpoints.

    Usage:
        @router.post("/{organization_id}/reply")
        async def reply(..., _entitlement: UsageEntitlement = Depends(require_usage_allowed())):

    The path must carry an ``organization_id`` parameter.
    """
    def _dependency(
        organization_id: str,
        context: BillingRequestContext = Depends(get_billing_context),
    ) -> UsageEntitlement:
        with organization_log_context(organization_id):
            return assert_usage_allowed(organization_id, context=context)

    return _dependency
