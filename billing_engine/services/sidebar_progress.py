"""
Sidebar credit progress: remaining-credit percentage, package/top-up bar
segments, and the low-credit warning flag.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from billing_engine.config import settings
from billing_engine.models.billing import MembershipState
from billing_engine.services.snapshot import BillingSnapshot

LOW_CREDIT_WARNING_THRESHOLD_PERCENT = 10.0

_TRIAL_STATES = {MembershipState.TRIAL_ACTIVE.value, MembershipState.TRIAL_EXHAUSTED.value}


@dataclass(frozen=True)
class SidebarProgressInput:
    membership_state: str
    trial_remaining_credits: float
    trial_credit_limit: float
    package_remaining_credits: float
    package_credit_limit: float
    topup_balance: float

    @classmethod
    def from_snapshot(cls, snapshot: BillingSnapshot) -> "SidebarProgressInput":
        return cls(
            membership_state=snapshot.membership_state,
            trial_remaining_credits=snapshot.trial.credits.remaining,
            trial_credit_limit=snapshot.trial.credits.limit,
            package_remaining_credits=snapshot.package.credits.remaining,
            package_credit_limit=snapshot.package.credits.limit,
            topup_balance=snapshot.topup_balance,
        )


@dataclass(frozen=True)
class SidebarProgressSegments:
    package_percent: float
    topup_percent: float


@dataclass(frozen=True)
class SidebarProgress:
    percent: float
    package_percent: float
    topup_percent: float
    low_credit_warning: bool


def _clamp_non_negative(value: float) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return max(0.0, value)


def _to_progress(remaining: float, total: float) -> float:
    safe_total = _clamp_non_negative(total)
    if safe_total <= 0:
        return 0.0
    safe_remaining = min(_clamp_non_negative(remaining), safe_total)
    return safe_remaining / safe_total * 100


def calculate_sidebar_billing_progress(data: SidebarProgressInput) -> float:
    """Remaining credits as a percentage of the applicable total."""
    if data.membership_state in _TRIAL_STATES:
        return _to_progress(data.trial_remaining_credits, data.trial_credit_limit)

    if data.membership_state == MembershipState.PREMIUM_ACTIVE.value:
        topup = _clamp_non_negative(data.topup_balance)
        remaining = _clamp_non_negative(data.package_remaining_credits) + topup
        total = _clamp_non_negative(data.package_credit_limit) + topup
        return _to_progress(remaining, total)

    return 0.0


def calculate_sidebar_billing_progress_segments(data: SidebarProgressInput) -> SidebarProgressSegments:
    total_progress = calculate_sidebar_billing_progress(data)
    if total_progress <= 0:
        return SidebarProgressSegments(package_percent=0.0, topup_percent=0.0)

    if data.membership_state == MembershipState.PREMIUM_ACTIVE.value:
        package_remaining = _clamp_non_negative(data.package_remaining_credits)
        topup_remaining = _clamp_non_negative(data.topup_balance)
        total_remaining = package_remaining + topup_remaining
        if total_remaining <= 0:
            return SidebarProgressSegments(package_percent=0.0, topup_percent=0.0)
        return SidebarProgressSegments(
            package_percent=total_progress * package_remaining / total_remaining,
            topup_percent=total_progress * topup_remaining / total_remaining,
        )

    return SidebarProgressSegments(package_percent=total_progress, topup_percent=0.0)


def is_low_credit_warning_visible(
    data: SidebarProgressInput,
    threshold_percent: float = LOW_CREDIT_WARNING_THRESHOLD_PERCENT,
) -> bool:
    """True while some credit remains but less than ``threshold_percent``."""
    if threshold_percent is None or not math.isfinite(threshold_percent):
        threshold = LOW_CREDIT_WARNING_THRESHOLD_PERCENT
    else:
        threshold = max(0.0, threshold_percent)

    progress = calculate_sidebar_billing_progress(data)
    return 0 < progress < threshold


def build_sidebar_progress(snapshot: BillingSnapshot) -> SidebarProgress:
    data = SidebarProgressInput.from_snapshot(snapshot)
    segments = calculate_sidebar_billing_progress_segments(data)
    return SidebarProgress(
        percent=calculate_sidebar_billing_progress(data),
        package_percent=segments.package_percent,
        topup_percent=segments.topup_percent,
        low_credit_warning=is_low_credit_warning_visible(
            data, settings.low_credit_warning_threshold_percent
        ),
    )
