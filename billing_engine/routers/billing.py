"""
Billing Router
==============

Read-only billing views plus the mock checkout actions:

- GET  /api/billing/{organization_id}/snapshot        - canonical billing snapshot
- GET  /api/billing/{organization_id}/entitlement     - usage entitlement (fail-open)
- POST /api/billing/{organization_id}/usage/authorize - usage guard, 402 when locked
- GET  /api/billing/{organization_id}/ledger          - latest ledger entries
- GET  /api/billing/{organization_id}/sidebar         - sidebar credit progress
- GET  /api/billing/{organization_id}/access          - workspace gate, 303 when locked
- GET  /api/billing/{organization_id}/usage-summary   - credit usage by category
- POST /api/billing/{organization_id}/checkout/subscribe
- POST /api/billing/{organization_id}/checkout/topup
- GET  /api/billing/{organization_id}/subscription/renewal - renewal state
- POST /api/billing/{organization_id}/subscription/cancel
- POST /api/billing/{organization_id}/subscription/resume
- GET  /api/billing/pricing-catalog                   - plans and top-ups for a locale
- POST /api/billing/cost-estimate                     - credits for a token count

Store reads are synchronous, so those handlers are plain ``def`` and run in
the threadpool.
"""

import logging
from dataclasses import asdict
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from billing_engine.core.errors import BillingEngineError
from billing_engine.core.structured_logging import organization_log_context
from billing_engine.services.checkout_client import (
    ERROR_INVALID_INPUT,
    ERROR_NOT_AVAILABLE,
    CheckoutResult,
    checkout_client,
)
from billing_engine.services.credit_cost import (
    calculate_usage_credit_cost,
    estimate_usage_credit_cost_from_total_tokens,
)
from billing_engine.services.entitlements import (
    UsageEntitlement,
    require_usage_allowed,
    resolve_usage_entitlement,
)
from billing_engine.services.ledger_reader import get_organization_billing_ledger
from billing_engine.services.request_context import BillingRequestContext, get_billing_context
from billing_engine.services.sidebar_progress import build_sidebar_progress
from billing_engine.services.pricing_catalog import (
    get_billing_pricing_catalog,
    resolve_billing_currency_by_locale,
)
from billing_engine.services.snapshot import BillingSnapshot
from billing_engine.services.subscription_renewal import (
    RenewalActionResult,
    cancel_subscription_renewal,
    get_subscription_renewal_state,
    resume_subscription_renewal,
)
from billing_engine.services.usage_summary import get_org_credit_usage_summary
from billing_engine.services.workspace_access import (
    NavItem,
    enforce_workspace_access_or_redirect,
    resolve_billing_locked_nav_item,
    resolve_workspace_access_state,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Sidebar entries whose lock state is reported alongside the progress bar
SIDEBAR_NAV_ITEMS = [
    NavItem(id="inbox", href="/inbox"),
    NavItem(id="leads", href="/leads"),
    NavItem(id="skills", href="/skills"),
    NavItem(id="knowledge", href="/knowledge"),
    NavItem(id="settings", href="/settings/general"),
]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class SubscribeCheckoutRequest(BaseModel):
    simulated_outcome: str = Field(..., description='"success" or "failed"')
    monthly_price_try: float
    monthly_credits: float


class TopupCheckoutRequest(BaseModel):
    simulated_outcome: str = Field(..., description='"success" or "failed"')
    credits: float
    amount_try: float


class RenewalActionRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Free-text reason recorded with the action")


class CostEstimateRequest(BaseModel):
    input_tokens: Optional[float] = None
    output_tokens: Optional[float] = None
    total_tokens: Optional[float] = Field(
        None, description="Used only when input/output tokens are not given"
    )


class CostEstimateResponse(BaseModel):
    credits: float
    method: str


class NavItemResponse(BaseModel):
    id: str
    href: Optional[str]
    is_locked: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_snapshot(organization_id: str, context: BillingRequestContext) -> BillingSnapshot:
    lookup = context.load_snapshot(organization_id)
    if lookup.snapshot is None:
        raise BillingEngineError(
            "BIL-ENT-001",
            detail=f"No billing snapshot for {organization_id}",
            context={"organization_id": organization_id, "fallback_reason": lookup.fallback_reason},
        )
    return lookup.snapshot


def _checkout_response(organization_id: str, result: Union[CheckoutResult, RenewalActionResult]) -> dict:
    if result.error == ERROR_INVALID_INPUT:
        raise BillingEngineError("BIL-CHK-001", context={"organization_id": organization_id})
    if result.error == ERROR_NOT_AVAILABLE:
        raise BillingEngineError("BIL-CHK-002", context={"organization_id": organization_id})
    return result.to_dict()


def _entitlement_response(entitlement: UsageEntitlement) -> dict:
    return {
        "is_usage_allowed": entitlement.is_usage_allowed,
        "lock_reason": entitlement.lock_reason,
        "membership_state": entitlement.membership_state,
        "fallback_reason": entitlement.fallback_reason,
        "active_credit_pool": entitlement.snapshot.active_credit_pool if entitlement.snapshot else None,
    }


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------

@router.get("/{organization_id}/snapshot")
def get_snapshot(
    organization_id: str,
    context: BillingRequestContext = Depends(get_billing_context),
):
    """Canonical billing snapshot. 404 when the organization has no billing account."""
    with organization_log_context(organization_id):
        snapshot = _require_snapshot(organization_id, context)
    return {**asdict(snapshot), "is_locked": snapshot.is_locked}


@router.get("/{organization_id}/entitlement")
def get_entitlement(
    organization_id: str,
    context: BillingRequestContext = Depends(get_billing_context),
):
    """Usage entitlement. Never fails: missing data yields a permissive entitlement."""
    with organization_log_context(organization_id):
        entitlement = resolve_usage_entitlement(organization_id, context=context)
    return _entitlement_response(entitlement)


@router.post("/{organization_id}/usage/authorize")
def authorize_usage(
    organization_id: str,
    entitlement: UsageEntitlement = Depends(require_usage_allowed()),
):
    """Pre-flight check for billable AI work. 402 when usage is locked."""
    return _entitlement_response(entitlement)


@router.get("/{organization_id}/ledger")
def get_ledger(
    organization_id: str,
    limit: Optional[float] = Query(None, description="Entries to return (1-100, default 15)"),
):
    """Latest credit ledger entries, newest first."""
    with organization_log_context(organization_id):
        entries = get_organization_billing_ledger(organization_id, limit=limit)
    return {"organization_id": organization_id, "entries": [asdict(e) for e in entries]}


@router.get("/{organization_id}/sidebar")
def get_sidebar(
    organization_id: str,
    context: BillingRequestContext = Depends(get_billing_context),
):
    """Sidebar progress bar, low-credit warning and navigation lock state."""
    with organization_log_context(organization_id):
        snapshot = _require_snapshot(organization_id, context)
    access = resolve_workspace_access_state(snapshot)
    nav: List[NavItemResponse] = []
    for item in SIDEBAR_NAV_ITEMS:
        state = resolve_billing_locked_nav_item(item, access.is_locked)
        nav.append(NavItemResponse(id=item.id, href=state.href, is_locked=state.is_locked))

    return {
        "organization_id": organization_id,
        "membership_state": snapshot.membership_state,
        "progress": asdict(build_sidebar_progress(snapshot)),
        "access": asdict(access),
        "nav": [n.model_dump() for n in nav],
    }


@router.get("/{organization_id}/access")
def check_access(
    organization_id: str,
    path: str = Query(..., description="Page the user is navigating to"),
    locale: Optional[str] = Query(None),
    bypass_lock: bool = Query(False, description="Operator override (e.g. system admin impersonation)"),
    context: BillingRequestContext = Depends(get_billing_context),
):
    """Workspace gate. Responds 303 to the plans page when the workspace is locked."""
    with organization_log_context(organization_id):
        enforce_workspace_access_or_redirect(
            organization_id,
            locale,
            path,
            bypass_lock=bypass_lock,
            context=context,
        )
    snapshot = context.load_snapshot(organization_id).snapshot
    return asdict(resolve_workspace_access_state(snapshot))


@router.get("/{organization_id}/usage-summary")
def get_usage_summary(organization_id: str):
    """Monthly and all-time credit usage by category."""
    with organization_log_context(organization_id):
        return asdict(get_org_credit_usage_summary(organization_id))


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

@router.post("/{organization_id}/checkout/subscribe")
async def checkout_subscribe(organization_id: str, body: SubscribeCheckoutRequest):
    """Mock subscription checkout. Status is in the body; only bad input and outages are HTTP errors."""
    result = await checkout_client.simulate_subscription_checkout(
        organization_id,
        body.simulated_outcome,
        body.monthly_price_try,
        body.monthly_credits,
    )
    return _checkout_response(organization_id, result)


@router.post("/{organization_id}/checkout/topup")
async def checkout_topup(organization_id: str, body: TopupCheckoutRequest):
    """Mock top-up checkout."""
    result = await checkout_client.simulate_topup_checkout(
        organization_id,
        body.simulated_outcome,
        body.credits,
        body.amount_try,
    )
    return _checkout_response(organization_id, result)


# ---------------------------------------------------------------------------
# Subscription renewal
# ---------------------------------------------------------------------------

@router.get("/{organization_id}/subscription/renewal")
def get_subscription_renewal(organization_id: str):
    """Renewal state of the current subscription. Defaults when there is none."""
    with organization_log_context(organization_id):
        state = get_subscription_renewal_state(organization_id)
    return {"organization_id": organization_id, **asdict(state)}


@router.post("/{organization_id}/subscription/cancel")
async def subscription_cancel(organization_id: str, body: Optional[RenewalActionRequest] = None):
    """Stop auto-renewal at period end."""
    reason = body.reason if body else None
    result = await cancel_subscription_renewal(organization_id, reason=reason)
    return _checkout_response(organization_id, result)


@router.post("/{organization_id}/subscription/resume")
async def subscription_resume(organization_id: str, body: Optional[RenewalActionRequest] = None):
    """Undo a scheduled cancellation."""
    reason = body.reason if body else None
    result = await resume_subscription_renewal(organization_id, reason=reason)
    return _checkout_response(organization_id, result)


# ---------------------------------------------------------------------------
# Pricing catalog
# ---------------------------------------------------------------------------

@router.get("/pricing-catalog")
def pricing_catalog(locale: Optional[str] = Query(None)):
    """Plan tiers and top-up packs, with the currency the locale pays in."""
    catalog = get_billing_pricing_catalog()
    return {"currency": resolve_billing_currency_by_locale(locale), **asdict(catalog)}


# ---------------------------------------------------------------------------
# Cost estimate
# ---------------------------------------------------------------------------

@router.post("/cost-estimate", response_model=CostEstimateResponse)
async def cost_estimate(body: CostEstimateRequest):
    """Credits charged for a token count."""
    if body.input_tokens is None and body.output_tokens is None:
        return CostEstimateResponse(
            credits=estimate_usage_credit_cost_from_total_tokens(body.total_tokens),
            method="total_tokens",
        )
    return CostEstimateResponse(
        credits=calculate_usage_credit_cost(body.input_tokens, body.output_tokens),
        method="weighted",
    )
