"""
Billing Models
==============

SQLModel tables for the persisted billing state read by the engine:
- OrganizationBillingAccount: one row per organization (counters + state).
- OrganizationCreditLedgerEntry: append-only credit events.
- PlatformBillingSettings: plan and top-up price list (one row per key).
- OrganizationSubscriptionRecord: subscription periods; metadata carries
  renewal flags and any pending plan change.

All tables are written exclusively by the external billing procedures and
administrative tooling. The engine never updates or deletes rows.

Numeric columns are declared as NUMERIC; depending on the driver they come
back as Decimal, float or (via REST layers) strings. Readers coerce them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Numeric
from sqlmodel import Field, SQLModel


class MembershipState(str, Enum):
    TRIAL_ACTIVE = "trial_active"
    TRIAL_EXHAUSTED = "trial_exhausted"
    PREMIUM_ACTIVE = "premium_active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    ADMIN_LOCKED = "admin_locked"


class LockReason(str, Enum):
    NONE = "none"
    SUBSCRIPTION_REQUIRED = "subscription_required"
    TRIAL_TIME_EXPIRED = "trial_time_expired"
    TRIAL_CREDITS_EXHAUSTED = "trial_credits_exhausted"
    PACKAGE_CREDITS_EXHAUSTED = "package_credits_exhausted"
    PAST_DUE = "past_due"
    ADMIN_LOCKED = "admin_locked"


class CreditPool(str, Enum):
    TRIAL = "trial_pool"
    PACKAGE = "package_pool"
    TOPUP = "topup_pool"


# Ledger entry type written by the usage debit procedure
USAGE_DEBIT_ENTRY_TYPE = "usage_debit"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _credit_column() -> Column:
    return Column(Numeric(14, 2), nullable=False, default=0)


class OrganizationBillingAccount(SQLModel, table=True):
    """Billing counters and membership state for one organization."""

    __tablename__ = "organization_billing_accounts"

    organization_id: str = Field(primary_key=True, max_length=64)
    membership_state: str = Field(default=MembershipState.TRIAL_ACTIVE.value, max_length=32)
    lock_reason: str = Field(default=LockReason.NONE.value, max_length=48)

    trial_started_at: Optional[datetime] = Field(default=None, nullable=True)
    trial_ends_at: Optional[datetime] = Field(default=None, nullable=True)
    trial_credit_limit: Decimal = Field(default=Decimal("0"), sa_column=_credit_column())
    trial_credit_used: Decimal = Field(default=Decimal("0"), sa_column=_credit_column())

    current_period_start: Optional[datetime] = Field(default=None, nullable=True)
    current_period_end: Optional[datetime] = Field(default=None, nullable=True)
    monthly_package_credit_limit: Decimal = Field(default=Decimal("0"), sa_column=_credit_column())
    monthly_package_credit_used: Decimal = Field(default=Decimal("0"), sa_column=_credit_column())

    topup_credit_balance: Decimal = Field(default=Decimal("0"), sa_column=_credit_column())

    premium_assigned_at: Optional[datetime] = Field(default=None, nullable=True)
    last_manual_action_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class OrganizationCreditLedgerEntry(SQLModel, table=True):
    """Append-only record of a credit-affecting event."""

    __tablename__ = "organization_credit_ledger"

    id: str = Field(primary_key=True, max_length=64)
    organization_id: str = Field(index=True, max_length=64)
    entry_type: str = Field(max_length=48)
    credit_pool: str = Field(max_length=32)
    credits_delta: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(14, 2), nullable=False))
    balance_after: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(14, 2), nullable=False))
    reason: Optional[str] = Field(default=None, nullable=True)
    usage_id: Optional[str] = Field(default=None, nullable=True, max_length=64)
    # "metadata" is reserved on declarative models; the column keeps its name.
    entry_metadata: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, index=True)


def _price_column() -> Column:
    return Column(Numeric(12, 2), nullable=True)


class PlatformBillingSettings(SQLModel, table=True):
    """Plan and top-up price list maintained by platform admins."""

    __tablename__ = "platform_billing_settings"

    key: str = Field(primary_key=True, max_length=32)
    default_trial_credits: Optional[Decimal] = Field(default=None, sa_column=_price_column())

    starter_plan_credits: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    starter_plan_price_try: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    starter_plan_price_usd: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    growth_plan_credits: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    growth_plan_price_try: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    growth_plan_price_usd: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    scale_plan_credits: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    scale_plan_price_try: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    scale_plan_price_usd: Optional[Decimal] = Field(default=None, sa_column=_price_column())

    topup_250_price_try: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    topup_250_price_usd: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    topup_500_price_try: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    topup_500_price_usd: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    topup_1000_price_try: Optional[Decimal] = Field(default=None, sa_column=_price_column())
    topup_1000_price_usd: Optional[Decimal] = Field(default=None, sa_column=_price_column())

    updated_at: datetime = Field(default_factory=_utcnow)


class OrganizationSubscriptionRecord(SQLModel, table=True):
    """One subscription period; the newest active/past_due row is current."""

    __tablename__ = "organization_subscription_records"

    id: str = Field(primary_key=True, max_length=64)
    organization_id: str = Field(index=True, max_length=64)
    status: str = Field(max_length=32)
    period_start: Optional[datetime] = Field(default=None, nullable=True)
    period_end: Optional[datetime] = Field(default=None, nullable=True)
    record_metadata: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, index=True)
