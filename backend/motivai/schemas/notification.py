"""
Pydantic schemas for UI notifications.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import AliasChoices, BaseModel, Field


NotificationType = Literal["success", "info", "warning", "error"]


class NotificationAction(BaseModel):
    """Call-to-action attached to a notification."""
    label: str
    href: Optional[str] = None


class NotificationDraft(BaseModel):
    """Notification content before the store assigns id, timestamp and read flag."""
    type: NotificationType
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    action: Optional[NotificationAction] = None


class Notification(NotificationDraft):
    """Notification as held by the store."""
    id: str
    read: bool = False
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )


class LiveNotificationMessage(BaseModel):
    """Inbound message on the live notification channel."""
    type: Literal["notification"]
    notification: NotificationDraft


class NotificationPage(BaseModel):
    """Server response for GET /notifications."""
    notifications: List[Notification] = Field(default_factory=list)
    unread_count: Optional[int] = Field(None, alias="unreadCount")

    model_config = {"populate_by_name": True}
