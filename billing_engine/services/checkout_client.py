"""
Checkout Client - mock checkout procedures on the billing database.
===================================================================

Validates checkout input, invokes the external atomic procedures
``mock_checkout_subscribe`` / ``mock_checkout_topup`` through the
PostgREST-style RPC endpoint at ``{checkout_rpc_url}/rpc/<procedure>``, and
maps their payload onto a CheckoutResult.

The procedures own every balance mutation; this client only maps results.
``call_procedure`` is the shared transport; the subscription renewal actions
go through it too.
No retries: a checkout must never be submitted twice.

PAYLOAD → RESULT:
    success / scheduled       → ok, change_type + effective_at passed through
    failed                    → not ok, no error
    blocked(topup_not_allowed|admin_locked) → blocked with that error
    blocked(anything else)    → blocked, request_failed
    missing/unknown status    → error, request_failed
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Optional, Tuple

import httpx

from billing_engine.config import settings

logger = logging.getLogger(__name__)

__all__ = [
    "CheckoutResult",
    "CheckoutClient",
    "checkout_client",
    "map_checkout_payload",
    "simulate_subscription_checkout",
    "simulate_topup_checkout",
]

SUBSCRIBE_PROCEDURE = "mock_checkout_subscribe"
TOPUP_PROCEDURE = "mock_checkout_topup"

VALID_OUTCOMES = ("success", "failed")

# Checkout statuses
STATUS_SUCCESS = "success"
STATUS_SCHEDULED = "scheduled"
STATUS_FAILED = "failed"
STATUS_BLOCKED = "blocked"
STATUS_ERROR = "error"

# Checkout errors
ERROR_INVALID_INPUT = "invalid_input"
ERROR_NOT_AVAILABLE = "not_available"
ERROR_REQUEST_FAILED = "request_failed"
ERROR_TOPUP_NOT_ALLOWED = "topup_not_allowed"
ERROR_ADMIN_LOCKED = "admin_locked"

_BLOCKED_REASONS = {ERROR_TOPUP_NOT_ALLOWED, ERROR_ADMIN_LOCKED}
# Undefined function (42883), PostgREST unknown RPC (PGRST202), missing table (42P01)
_NOT_AVAILABLE_CODES = {"42883", "PGRST202", "42P01"}


@dataclass(frozen=True)
class CheckoutResult:
    ok: bool
    status: str
    error: Optional[str] = None
    change_type: Optional[str] = None
    effective_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _error_result(error: str) -> CheckoutResult:
    return CheckoutResult(ok=False, status=STATUS_ERROR, error=error)


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def map_checkout_payload(payload: Any) -> CheckoutResult:
    """Map a procedure response body onto a CheckoutResult."""
    if not isinstance(payload, dict) or not payload.get("status"):
        return _error_result(ERROR_REQUEST_FAILED)

    status = payload["status"]

    if status in (STATUS_SUCCESS, STATUS_SCHEDULED):
        return CheckoutResult(
            ok=True,
            status=status,
            change_type=_optional_str(payload.get("change_type")),
            effective_at=_optional_str(payload.get("effective_at")),
        )

    if status == STATUS_FAILED:
        return CheckoutResult(ok=False, status=STATUS_FAILED)

    if status == STATUS_BLOCKED:
        reason = payload.get("reason")
        error = reason if reason in _BLOCKED_REASONS else ERROR_REQUEST_FAILED
        return CheckoutResult(ok=False, status=STATUS_BLOCKED, error=error)

    return _error_result(ERROR_REQUEST_FAILED)


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _valid_checkout_input(organization_id: str, outcome: str, price: Any, credits: Any) -> bool:
    return bool(
        organization_id
        and outcome in VALID_OUTCOMES
        and _is_finite_number(price)
        and price >= 0
        and _is_finite_number(credits)
        and credits > 0
    )


def _is_not_available(status_code: int, body: Any) -> bool:
    if status_code == 404:
        return True
    return isinstance(body, dict) and str(body.get("code")) in _NOT_AVAILABLE_CODES


class CheckoutClient:
    """Async client for the checkout procedures."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._base_url = (base_url or settings.checkout_rpc_url or "").rstrip("/")
        self._service_key = service_key or settings.checkout_service_key
        self._timeout = timeout or settings.checkout_timeout_s

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self._service_key:
            headers["apikey"] = self._service_key
            headers["Authorization"] = f"Bearer {self._service_key}"
        return headers

    async def call_procedure(self, procedure: str, params: dict) -> Tuple[Optional[str], Any]:
        """POST ``params`` to ``/rpc/<procedure>``.

        Returns ``(error, body)``: ``error`` is ``not_available`` or
        ``request_failed`` when the call itself failed, else None and
        ``body`` is the decoded response payload.
        """
        if not self._base_url:
            logger.warning("%s skipped: checkout RPC URL not configured", procedure)
            return ERROR_NOT_AVAILABLE, None

        url = f"{self._base_url}/rpc/{procedure}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=params, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error("%s failed: %s", procedure, e)
            return ERROR_REQUEST_FAILED, None

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code >= 400:
            logger.error("%s failed: HTTP %d %s", procedure, resp.status_code, body)
            if _is_not_available(resp.status_code, body):
                return ERROR_NOT_AVAILABLE, None
            return ERROR_REQUEST_FAILED, None

        return None, body

    async def _call(self, procedure: str, params: dict) -> CheckoutResult:
        error, body = await self.call_procedure(procedure, params)
        if error is not None:
            return _error_result(error)

        result = map_checkout_payload(body)
        logger.info(
            "checkout_completed",
            extra={
                "procedure": procedure,
                "organization_id": params.get("target_organization_id"),
                "status": result.status,
                "error": result.error,
            },
        )
        return result

    async def simulate_subscription_checkout(
        self,
        organization_id: str,
        simulated_outcome: str,
        monthly_price_try: float,
        monthly_credits: float,
    ) -> CheckoutResult:
        """Subscribe (or change package) via mock_checkout_subscribe."""
        if not _valid_checkout_input(organization_id, simulated_outcome, monthly_price_try, monthly_credits):
            return _error_result(ERROR_INVALID_INPUT)

        return await self._call(
            SUBSCRIBE_PROCEDURE,
            {
                "target_organization_id": organization_id,
                "requested_monthly_price_try": monthly_price_try,
                "requested_monthly_credits": monthly_credits,
                "simulated_outcome": simulated_outcome,
            },
        )

    async def simulate_topup_checkout(
        self,
        organization_id: str,
        simulated_outcome: str,
        credits: float,
        amount_try: float,
    ) -> CheckoutResult:
        """Buy top-up credits via mock_checkout_topup."""
        if not _valid_checkout_input(organization_id, simulated_outcome, amount_try, credits):
            return _error_result(ERROR_INVALID_INPUT)

        return await self._call(
            TOPUP_PROCEDURE,
            {
                "target_organization_id": organization_id,
                "requested_credits": credits,
                "requested_amount_try": amount_try,
                "simulated_outcome": simulated_outcome,
            },
        )


# Module-level singleton
checkout_client = CheckoutClient()


async def simulate_subscription_checkout(
    organization_id: str,
    simulated_outcome: str,
    monthly_price_try: float,
    monthly_credits: float,
) -> CheckoutResult:
    return await checkout_client.simulate_subscription_checkout(
        organization_id, simulated_outcome, monthly_price_try, monthly_credits
    )


async def simulate_topup_checkout(
    organization_id: str,
    simulated_outcome: str,
    credits: float,
    amount_try: float,
) -> CheckoutResult:
    return await checkout_client.simulate_topup_checkout(
        organization_id, simulated_outcome, credits, amount_try
    )
