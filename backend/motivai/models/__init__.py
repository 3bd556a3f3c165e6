"""
Database models package.

All SQLAlchemy models are exported from this module for easy imports.
"""
from motivai.models.user import User
from motivai.models.subscription import (
    Subscription,
    SubscriptionEvent,
    SubscriptionPlan,
    SubscriptionStatus,
)

__all__ = [
    "User",
    "Subscription",
    "SubscriptionEvent",
    "SubscriptionPlan",
    "SubscriptionStatus",
]
