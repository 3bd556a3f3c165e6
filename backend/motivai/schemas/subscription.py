"""
Pydantic schemas for subscription operations and lifecycle events.
"""
from datetime import datetime
from typing import Annotated, List, Optional, Literal, Union
from pydantic import BaseModel, ConfigDict, Field


SubscriptionPlanName = Literal["free", "basic", "pro", "premium", "monthly", "lifetime"]
SubscriptionStatusName = Literal[
    "active", "inactive", "expired", "cancelled", "trial", "pending", "past_due", "paused"
]
BillingInterval = Literal["monthly", "yearly", "lifetime"]
EventSource = Literal["system", "user", "webhook"]


class Discount(BaseModel):
    """Discount applied to a subscription."""
    type: Literal["percentage", "fixed"]
    value: float
    code: str
    valid_until: Optional[datetime] = None


class PlanHistoryEntry(BaseModel):
    """One closed (or open) period on a given plan."""
    plan_id: str
    plan: str
    start_date: datetime
    end_date: Optional[datetime] = None
    reason: Optional[str] = None


class SubscriptionCreate(BaseModel):
    """Schema for creating a subscription."""
    plan_id: str
    plan: SubscriptionPlanName
    status: SubscriptionStatusName = "active"
    billing_interval: BillingInterval = "monthly"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    payment_id: Optional[str] = None
    paypal_subscription_id: Optional[str] = None
    paypal_order_id: Optional[str] = None
    paypal_plan_id: Optional[str] = None
    trial_end_date: Optional[datetime] = None
    is_auto_renew: bool = True
    source: Optional[Literal["web", "mobile", "api"]] = None
    promocode: Optional[str] = None
    discount: Optional[Discount] = None


class SubscriptionDetail(BaseModel):
    """Detailed subscription information including derived fields."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    plan_id: str
    plan: str
    status: str
    billing_interval: str
    start_date: datetime
    end_date: Optional[datetime] = None
    trial_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    ai_usage_count: int
    ai_usage_reset: Optional[datetime] = None
    ai_usage_total_all_time: int
    is_auto_renew: bool
    cancel_at_period_end: bool
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    discount: Optional[Discount] = None
    plan_history: List[PlanHistoryEntry] = []
    created_at: datetime
    updated_at: datetime

    # Derived, never persisted
    remaining_days: Optional[int] = None
    is_expired: bool = False
    can_use_ai: bool = False
    ai_limit_remaining: Optional[int] = None


class PlanInfo(BaseModel):
    """Catalog plan details for display."""
    id: str
    name: str
    description: str
    price: float
    currency: str
    interval: Literal["month", "year", "lifetime"]
    trial_days: int
    is_active: bool
    highlights: List[str]
    features: List[str]
    monthly_ai_limit: Optional[int] = None
    unlimited_ai: bool
    letter_limit: Optional[int] = None


class AIUsageStatus(BaseModel):
    """AI usage against the plan quota."""
    can_use: bool
    current_usage: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_date: Optional[datetime] = None
    plan: str


class LetterLimitStatus(BaseModel):
    """Letter count against the plan quota."""
    can_create: bool
    current_count: int
    limit: Optional[int] = None
    plan: str


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    at_period_end: bool = Field(True, description="Keep access until the end of the current period")


class ChangePlanRequest(BaseModel):
    plan: Literal["free", "basic", "pro", "premium"]
    reason: Optional[str] = None


class ReactivateRequest(BaseModel):
    reason: Optional[str] = None


class ValidationIssue(BaseModel):
    """Single validation failure on subscription data."""
    field: str
    message: str


# =============================================================================
# Lifecycle event payloads (tagged by event_type)
# =============================================================================

class CreatedPayload(BaseModel):
    event_type: Literal["created"] = "created"
    plan: str
    status: str
    interval: str


class UpdatedPayload(BaseModel):
    event_type: Literal["updated"] = "updated"
    change_type: Literal["upgrade", "downgrade"]
    from_plan: str
    to_plan: str
    reason: Optional[str] = None


class CancelledPayload(BaseModel):
    event_type: Literal["cancelled"] = "cancelled"
    reason: Optional[str] = None
    at_period_end: bool


class ExpiredPayload(BaseModel):
    event_type: Literal["expired"] = "expired"
    reason: str


class RenewedPayload(BaseModel):
    event_type: Literal["renewed"] = "renewed"
    end_date: Optional[datetime] = None
    reactivated: bool = False
    reason: Optional[str] = None


class TrialStartedPayload(BaseModel):
    event_type: Literal["trial_started"] = "trial_started"
    plan: str
    trial_end_date: Optional[datetime] = None


class TrialEndedPayload(BaseModel):
    event_type: Literal["trial_ended"] = "trial_ended"
    converted: bool


EventPayload = Annotated[
    Union[
        CreatedPayload,
        UpdatedPayload,
        CancelledPayload,
        ExpiredPayload,
        RenewedPayload,
        TrialStartedPayload,
        TrialEndedPayload,
    ],
    Field(discriminator="event_type"),
]


class SubscriptionEventRecord(BaseModel):
    """Audit record of a lifecycle transition, as handed to listeners."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    subscription_id: str
    user_id: str
    event_type: str
    payload: EventPayload
    source: EventSource
    created_at: datetime
