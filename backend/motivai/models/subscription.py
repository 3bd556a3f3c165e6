"""
Subscription and subscription event models.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Boolean, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship

from motivai.db.base import Base


class SubscriptionStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    TRIAL = "trial"
    PENDING = "pending"  # awaiting payment confirmation
    PAST_DUE = "past_due"
    PAUSED = "paused"

    ALL = (ACTIVE, INACTIVE, EXPIRED, CANCELLED, TRIAL, PENDING, PAST_DUE, PAUSED)
    USABLE = (ACTIVE, TRIAL)
    TERMINAL = (EXPIRED, CANCELLED)


class SubscriptionPlan:
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    PREMIUM = "premium"
    # Legacy values
    MONTHLY = "monthly"
    LIFETIME = "lifetime"

    ALL = (FREE, BASIC, PRO, PREMIUM, MONTHLY, LIFETIME)


class Subscription(Base):
    """Subscription model - one row per subscription lifecycle of a user."""

    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)

    # Plan
    plan_id = Column(String(50), nullable=False)
    plan = Column(String(50), nullable=False)  # free, basic, pro, premium (+ legacy monthly, lifetime)
    status = Column(String(50), nullable=False, index=True)
    billing_interval = Column(String(20), default="monthly", nullable=False)  # monthly, yearly, lifetime

    # Validity (no end date means perpetual)
    start_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    end_date = Column(DateTime, nullable=True)

    # Billing provider correlation
    payment_id = Column(String(255), nullable=True)
    paypal_subscription_id = Column(String(255), nullable=True, index=True)
    paypal_order_id = Column(String(255), nullable=True)
    paypal_plan_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True)

    # Trial
    trial_count = Column(Integer, default=0, nullable=False)
    trial_start_date = Column(DateTime, nullable=True)
    trial_end_date = Column(DateTime, nullable=True)

    # AI usage
    ai_usage_count = Column(Integer, default=0, nullable=False)
    ai_usage_reset = Column(DateTime, nullable=True)
    ai_usage_total_all_time = Column(Integer, default=0, nullable=False)

    # Renewal / cancellation
    is_auto_renew = Column(Boolean, default=True, nullable=False)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    cancel_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Billing period
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    billing_cycle_anchor = Column(DateTime, nullable=True)

    # Metadata
    source = Column(String(20), nullable=True)  # web, mobile, api
    promocode = Column(String(100), nullable=True)
    discount = Column(JSON, nullable=True)  # {type, value, code, valid_until}
    plan_history = Column(JSON, nullable=False, default=list)  # [{plan_id, plan, start_date, end_date, reason}]

    # Optimistic concurrency counter, bumped on every usage write
    version = Column(Integer, default=1, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    events = relationship(
        "SubscriptionEvent",
        back_populates="subscription",
        order_by="SubscriptionEvent.created_at",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Subscription(id={self.id}, user_id={self.user_id}, plan={self.plan}, status={self.status})>"


class SubscriptionEvent(Base):
    """
    Append-only audit record of a subscription lifecycle transition.
    """

    __tablename__ = "subscription_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subscription_id = Column(String(36), ForeignKey("subscriptions.id"), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    event_type = Column(String(30), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    source = Column(String(20), nullable=False, default="system")  # system, user, webhook
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    subscription = relationship("Subscription", back_populates="events")

    def __repr__(self):
        return (
            f"<SubscriptionEvent(id={self.id}, event_type={self.event_type}, "
            f"subscription_id={self.subscription_id})>"
        )
