"""
Billing Snapshot Builder
========================

PURPOSE:
    Projects a persisted billing account row into a ``BillingSnapshot``:
    balances, trial progress, the canonical lock reason, whether usage and
    top-ups are permitted, and which credit pool funds the next debit.

NOTES:
    - Pure and deterministic in ``(account, now)``; no I/O.
    - The stored ``lock_reason`` is a hint written by external procedures and
      may be stale. The snapshot recomputes the canonical reason; only a
      trial_exhausted account keeps a stored trial_time_expired or
      trial_credits_exhausted, since that records which trial limit ran out.
    - Premium pools are drained in list order (package first, then top-up).
      Adding a pool means adding one entry to ``_premium_pools``.
    - Accepts ORM rows or plain mappings. Numerics may be Decimal, float or
      numeric strings; timestamps may be datetimes or ISO-8601 strings.
      Naive datetimes are treated as UTC.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional, Tuple

from billing_engine.models.billing import CreditPool, LockReason, MembershipState
from billing_engine.services.credit_cost import to_non_negative_number
from billing_engine.services.credit_policy import calculate_credit_progress, is_topup_allowed

__all__ = [
    "CreditBalance",
    "TrialProgress",
    "PackageProgress",
    "BillingSnapshot",
    "build_billing_snapshot",
    "parse_timestamp",
]

_DAY = timedelta(days=1)
_TRIAL_LOCK_REASONS = (LockReason.TRIAL_TIME_EXPIRED.value, LockReason.TRIAL_CREDITS_EXHAUSTED.value)


@dataclass(frozen=True)
class CreditBalance:
    limit: float
    used: float
    remaining: float
    progress: float


@dataclass(frozen=True)
class TrialProgress:
    started_at: Optional[datetime]
    ends_at: Optional[datetime]
    credits: CreditBalance
    remaining_days: int
    total_days: int
    time_progress: float


@dataclass(frozen=True)
class PackageProgress:
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    credits: CreditBalance


@dataclass(frozen=True)
class BillingSnapshot:
    organization_id: str
    membership_state: str
    lock_reason: str
    is_usage_allowed: bool
    is_topup_allowed: bool
    active_credit_pool: Optional[str]
    trial: TrialProgress
    package: PackageProgress
    topup_balance: float
    total_remaining_credits: float

    @property
    def is_locked(self) -> bool:
        return not self.is_usage_allowed


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def _field(account: Any, name: str) -> Any:
    if isinstance(account, Mapping):
        return account.get(name)
    return getattr(account, name, None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a datetime or ISO-8601 string into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _credit_balance(limit_raw: Any, used_raw: Any) -> CreditBalance:
    limit = to_non_negative_number(limit_raw)
    used = to_non_negative_number(used_raw)
    return CreditBalance(
        limit=limit,
        used=used,
        remaining=max(0.0, limit - used),
        progress=calculate_credit_progress(limit, used),
    )


def _trial_progress(
    started_at: Optional[datetime],
    ends_at: Optional[datetime],
    credits: CreditBalance,
    now: datetime,
) -> TrialProgress:
    duration = (ends_at - started_at) if started_at and ends_at else timedelta(0)
    if duration < timedelta(0):
        duration = timedelta(0)

    if ends_at is not None and now >= ends_at:
        time_progress = 100.0
    elif started_at is not None and duration > timedelta(0):
        elapsed = max(timedelta(0), now - started_at)
        time_progress = min(100.0, max(0.0, elapsed / duration * 100))
    else:
        time_progress = 0.0

    remaining_days = max(0, math.ceil((ends_at - now) / _DAY)) if ends_at else 0
    total_days = max(1, math.ceil(duration / _DAY)) if duration > timedelta(0) else 0

    return TrialProgress(
        started_at=started_at,
        ends_at=ends_at,
        credits=credits,
        remaining_days=remaining_days,
        total_days=total_days,
        time_progress=time_progress,
    )


def _premium_pools(package: CreditBalance, topup_balance: float) -> List[Tuple[str, float]]:
    return [
        (CreditPool.PACKAGE.value, package.remaining),
        (CreditPool.TOPUP.value, topup_balance),
    ]


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def build_billing_snapshot(account: Any, now: Optional[datetime] = None) -> BillingSnapshot:
    """Derive the billing snapshot for ``account`` as of ``now`` (default: current UTC time)."""
    now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)

    state = str(_field(account, "membership_state") or "")
    trial_credits = _credit_balance(_field(account, "trial_credit_limit"), _field(account, "trial_credit_used"))
    package_credits = _credit_balance(
        _field(account, "monthly_package_credit_limit"),
        _field(account, "monthly_package_credit_used"),
    )
    topup_balance = to_non_negative_number(_field(account, "topup_credit_balance"))

    trial_started_at = parse_timestamp(_field(account, "trial_started_at"))
    trial_ends_at = parse_timestamp(_field(account, "trial_ends_at"))
    trial = _trial_progress(trial_started_at, trial_ends_at, trial_credits, now)

    usage_allowed = False
    active_pool: Optional[str] = None

    if state == MembershipState.TRIAL_ACTIVE.value:
        if trial_ends_at is None or now >= trial_ends_at:
            lock_reason = LockReason.TRIAL_TIME_EXPIRED.value
        elif trial_credits.remaining > 0:
            usage_allowed = True
            active_pool = CreditPool.TRIAL.value
            lock_reason = LockReason.NONE.value
        else:
            lock_reason = LockReason.TRIAL_CREDITS_EXHAUSTED.value

    elif state == MembershipState.TRIAL_EXHAUSTED.value:
        stored = _field(account, "lock_reason")
        # The procedure that ended the trial records which limit ran out
        if stored in _TRIAL_LOCK_REASONS:
            lock_reason = stored
        else:
            lock_reason = LockReason.SUBSCRIPTION_REQUIRED.value

    elif state == MembershipState.PREMIUM_ACTIVE.value:
        lock_reason = LockReason.PACKAGE_CREDITS_EXHAUSTED.value
        for pool, remaining in _premium_pools(package_credits, topup_balance):
            if remaining > 0:
                usage_allowed = True
                active_pool = pool
                lock_reason = LockReason.NONE.value
                break

    elif state == MembershipState.PAST_DUE.value:
        lock_reason = LockReason.PAST_DUE.value
    elif state == MembershipState.ADMIN_LOCKED.value:
        lock_reason = LockReason.ADMIN_LOCKED.value
    elif state == MembershipState.CANCELED.value:
        lock_reason = LockReason.SUBSCRIPTION_REQUIRED.value
    else:
        lock_reason = str(_field(account, "lock_reason") or LockReason.NONE.value)

    package_exhausted = active_pool != CreditPool.PACKAGE.value
    topup_allowed = is_topup_allowed(state, 0.0 if package_exhausted else package_credits.remaining)

    return BillingSnapshot(
        organization_id=str(_field(account, "organization_id") or ""),
        membership_state=state,
        lock_reason=lock_reason,
        is_usage_allowed=usage_allowed,
        is_topup_allowed=topup_allowed,
        active_credit_pool=active_pool,
        trial=trial,
        package=PackageProgress(
            period_start=parse_timestamp(_field(account, "current_period_start")),
            period_end=parse_timestamp(_field(account, "current_period_end")),
            credits=package_credits,
        ),
        topup_balance=topup_balance,
        total_remaining_credits=trial_credits.remaining + package_credits.remaining + topup_balance,
    )
