"""
Subscription Renewal
====================

PURPOSE:
    Renewal state of an organization's current subscription, and the
    cancel/resume actions that flip it through the billing database.

STATE:
    Read from the ``metadata`` of the newest active/past_due row in
    ``organization_subscription_records``. No organization, no row, a
    missing table or a store failure all yield DEFAULT_RENEWAL_STATE
    (auto-renew on, nothing pending).

ACTIONS:
    ``mock_subscription_cancel_renewal`` / ``mock_subscription_resume_renewal``
    are called over the same RPC transport as checkout. The procedures own
    the write; this module only maps their payload:

        success                           → ok
        blocked(admin_locked|premium_required) → blocked with that error
        blocked(anything else)            → blocked, request_failed
        missing/unknown status            → error, request_failed
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Optional

from billing_engine.services.billing_store import (
    BillingStore,
    BillingStoreError,
    BillingStoreUnavailable,
    billing_store,
)
from billing_engine.services.checkout_client import (
    ERROR_ADMIN_LOCKED,
    ERROR_INVALID_INPUT,
    ERROR_REQUEST_FAILED,
    STATUS_BLOCKED,
    STATUS_ERROR,
    STATUS_SUCCESS,
    CheckoutClient,
    checkout_client,
)

logger = logging.getLogger(__name__)

__all__ = [
    "PendingPlanChange",
    "SubscriptionRenewalState",
    "RenewalActionResult",
    "DEFAULT_RENEWAL_STATE",
    "parse_subscription_metadata",
    "map_renewal_payload",
    "get_subscription_renewal_state",
    "cancel_subscription_renewal",
    "resume_subscription_renewal",
]

CANCEL_PROCEDURE = "mock_subscription_cancel_renewal"
RESUME_PROCEDURE = "mock_subscription_resume_renewal"

ERROR_PREMIUM_REQUIRED = "premium_required"
_BLOCKED_REASONS = {ERROR_ADMIN_LOCKED, ERROR_PREMIUM_REQUIRED}

STATUS_OK = "ok"


@dataclass(frozen=True)
class PendingPlanChange:
    change_type: str
    requested_monthly_credits: float
    requested_monthly_price_try: float
    effective_at: Optional[str]
    requested_at: Optional[str]


@dataclass(frozen=True)
class SubscriptionRenewalState:
    auto_renew: bool
    cancel_at_period_end: bool
    cancellation_requested_at: Optional[str]
    period_end: Optional[str]
    pending_plan_change: Optional[PendingPlanChange]


@dataclass(frozen=True)
class RenewalActionResult:
    ok: bool
    status: str
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_RENEWAL_STATE = SubscriptionRenewalState(
    auto_renew=True,
    cancel_at_period_end=False,
    cancellation_requested_at=None,
    period_end=None,
    pending_plan_change=None,
)


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _finite_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value) if math.isfinite(value) else 0.0


def _parse_pending_plan_change(value: Any) -> Optional[PendingPlanChange]:
    if not isinstance(value, dict):
        return None
    change_type = value.get("change_type")
    return PendingPlanChange(
        change_type=change_type if isinstance(change_type, str) else "unknown",
        requested_monthly_credits=_finite_number(value.get("requested_monthly_credits")),
        requested_monthly_price_try=_finite_number(value.get("requested_monthly_price_try")),
        effective_at=_optional_str(value.get("effective_at")),
        requested_at=_optional_str(value.get("requested_at")),
    )


def parse_subscription_metadata(metadata: Any, period_end: Optional[str] = None) -> SubscriptionRenewalState:
    """Renewal state from a subscription record's metadata object.

    ``cancel_at_period_end`` counts only when it is literally true. Without
    an explicit boolean ``auto_renew``, renewal is on unless cancellation
    is scheduled.
    """
    if not isinstance(metadata, dict):
        return SubscriptionRenewalState(
            auto_renew=True,
            cancel_at_period_end=False,
            cancellation_requested_at=None,
            period_end=period_end,
            pending_plan_change=None,
        )

    cancel_at_period_end = metadata.get("cancel_at_period_end") is True
    auto_renew = metadata.get("auto_renew")
    if not isinstance(auto_renew, bool):
        auto_renew = not cancel_at_period_end

    return SubscriptionRenewalState(
        auto_renew=auto_renew,
        cancel_at_period_end=cancel_at_period_end,
        cancellation_requested_at=_optional_str(metadata.get("cancellation_requested_at")),
        period_end=period_end,
        pending_plan_change=_parse_pending_plan_change(metadata.get("pending_plan_change")),
    )


def get_subscription_renewal_state(
    organization_id: Optional[str],
    store: Optional[BillingStore] = None,
) -> SubscriptionRenewalState:
    if not organization_id:
        return DEFAULT_RENEWAL_STATE

    store = store or billing_store
    try:
        record = store.fetch_current_subscription(organization_id)
    except BillingStoreUnavailable:
        return DEFAULT_RENEWAL_STATE
    except BillingStoreError as e:
        logger.error("Failed to load subscription renewal state for %s: %s", organization_id, e)
        return DEFAULT_RENEWAL_STATE

    if record is None:
        return DEFAULT_RENEWAL_STATE

    period_end = record.period_end.isoformat() if record.period_end else None
    return parse_subscription_metadata(record.record_metadata, period_end=period_end)


def map_renewal_payload(payload: Any) -> RenewalActionResult:
    """Map a renewal procedure response body onto a RenewalActionResult."""
    if not isinstance(payload, dict) or not payload.get("status"):
        return RenewalActionResult(ok=False, status=STATUS_ERROR, error=ERROR_REQUEST_FAILED)

    status = payload["status"]
    if status == STATUS_SUCCESS:
        return RenewalActionResult(ok=True, status=STATUS_OK)

    if status == STATUS_BLOCKED:
        reason = payload.get("reason")
        error = reason if reason in _BLOCKED_REASONS else ERROR_REQUEST_FAILED
        return RenewalActionResult(ok=False, status=STATUS_BLOCKED, error=error)

    return RenewalActionResult(ok=False, status=STATUS_ERROR, error=ERROR_REQUEST_FAILED)


async def _run_renewal_action(
    procedure: str,
    organization_id: str,
    reason: Optional[str],
    client: Optional[CheckoutClient],
) -> RenewalActionResult:
    if not organization_id:
        return RenewalActionResult(ok=False, status=STATUS_ERROR, error=ERROR_INVALID_INPUT)

    client = client or checkout_client
    error, body = await client.call_procedure(
        procedure,
        {"target_organization_id": organization_id, "action_reason": reason},
    )
    if error is not None:
        return RenewalActionResult(ok=False, status=STATUS_ERROR, error=error)

    result = map_renewal_payload(body)
    logger.info(
        "subscription_renewal_updated",
        extra={
            "procedure": procedure,
            "organization_id": organization_id,
            "status": result.status,
            "error": result.error,
        },
    )
    return result


async def cancel_subscription_renewal(
    organization_id: str,
    reason: Optional[str] = None,
    client: Optional[CheckoutClient] = None,
) -> RenewalActionResult:
    """Stop auto-renewal at the end of the current period."""
    return await _run_renewal_action(CANCEL_PROCEDURE, organization_id, reason, client)


async def resume_subscription_renewal(
    organization_id: str,
    reason: Optional[str] = None,
    client: Optional[CheckoutClient] = None,
) -> RenewalActionResult:
    """Undo a scheduled cancellation."""
    return await _run_renewal_action(RESUME_PROCEDURE, organization_id, reason, client)
