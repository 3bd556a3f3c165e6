"""
Pydantic schemas package.
"""
from motivai.schemas.common import ApiResponse, ApiErrorResponse
from motivai.schemas.notification import (
    Notification,
    NotificationAction,
    NotificationDraft,
    NotificationPage,
    LiveNotificationMessage,
)
from motivai.schemas.subscription import (
    AIUsageStatus,
    CancelRequest,
    ChangePlanRequest,
    Discount,
    LetterLimitStatus,
    PlanHistoryEntry,
    PlanInfo,
    ReactivateRequest,
    SubscriptionCreate,
    SubscriptionDetail,
    SubscriptionEventRecord,
    ValidationIssue,
    CreatedPayload,
    UpdatedPayload,
    CancelledPayload,
    ExpiredPayload,
    RenewedPayload,
    TrialStartedPayload,
    TrialEndedPayload,
)

__all__ = [
    "ApiResponse",
    "ApiErrorResponse",
    "Notification",
    "NotificationAction",
    "NotificationDraft",
    "NotificationPage",
    "LiveNotificationMessage",
    "AIUsageStatus",
    "CancelRequest",
    "ChangePlanRequest",
    "Discount",
    "LetterLimitStatus",
    "PlanHistoryEntry",
    "PlanInfo",
    "ReactivateRequest",
    "SubscriptionCreate",
    "SubscriptionDetail",
    "SubscriptionEventRecord",
    "ValidationIssue",
    "CreatedPayload",
    "UpdatedPayload",
    "CancelledPayload",
    "ExpiredPayload",
    "RenewedPayload",
    "TrialStartedPayload",
    "TrialEndedPayload",
]
