"""
Credit pool policy: pure predicates over membership state and balances.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from billing_engine.models.billing import MembershipState

StateLike = Union[MembershipState, str]

_ALWAYS_BLOCKED = {
    MembershipState.ADMIN_LOCKED.value,
    MembershipState.PAST_DUE.value,
    MembershipState.CANCELED.value,
}


def _state_value(state: StateLike) -> str:
    return state.value if isinstance(state, MembershipState) else str(state)


def is_usage_allowed(
    membership_state: StateLike,
    remaining_trial_credits: float,
    trial_ends_at: Optional[datetime],
    now: datetime,
    remaining_package_credits: float,
    topup_credits: float,
) -> bool:
    """Whether paid usage is permitted for the given state and balances."""
    state = _state_value(membership_state)

    if state in _ALWAYS_BLOCKED:
        return False

    if state == MembershipState.TRIAL_ACTIVE.value:
        if remaining_trial_credits <= 0 or trial_ends_at is None:
            return False
        return now <= trial_ends_at

    if state == MembershipState.PREMIUM_ACTIVE.value:
        return remaining_package_credits > 0 or topup_credits > 0

    # trial_exhausted and anything unrecognised
    return False


def is_topup_allowed(membership_state: StateLike, remaining_package_credits: float) -> bool:
    """Top-ups are only sold to premium members whose package is used up."""
    return (
        _state_value(membership_state) == MembershipState.PREMIUM_ACTIVE.value
        and remaining_package_credits <= 0
    )


def calculate_credit_progress(limit: float, used: float) -> float:
    """Percentage of ``limit`` consumed, clamped to [0, 100]."""
    if limit <= 0:
        return 0.0
    return min(100.0, max(0.0, used / limit * 100))
