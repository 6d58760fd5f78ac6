"""Notification records and request models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from nutriplan.models.common import UtcDatetime

TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 2000
DEFAULT_MAX_RETRIES = 3


class NotificationType(str, Enum):
    CONSULTATION_REMINDER = "consultation_reminder"
    CONSULTATION_SCHEDULED = "consultation_scheduled"
    CONSULTATION_CANCELLED = "consultation_cancelled"
    DIET_PLAN_CREATED = "diet_plan_created"
    DIET_PLAN_UPDATED = "diet_plan_updated"
    ASSESSMENT_DUE = "assessment_due"
    PASSWORD_RESET = "password_reset"
    SYSTEM_ANNOUNCEMENT = "system_announcement"
    WELCOME = "welcome"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def queue_priority(self) -> int:
        """Numeric queue priority, lower runs first."""
        return _QUEUE_PRIORITIES[self]


_QUEUE_PRIORITIES = {
    NotificationPriority.URGENT: 1,
    NotificationPriority.HIGH: 2,
    NotificationPriority.NORMAL: 3,
    NotificationPriority.LOW: 4,
}


class Notification(BaseModel):
    """Persisted notification.

    ``claimed_by`` holds the token of the processor currently delivering the
    notification; it is set and cleared through conditional updates only.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    type: NotificationType
    channel: NotificationChannel = NotificationChannel.EMAIL
    status: NotificationStatus = NotificationStatus.PENDING
    title: str = Field(..., max_length=TITLE_MAX_LENGTH)
    message: str = Field(..., max_length=MESSAGE_MAX_LENGTH)
    data: dict[str, Any] = Field(default_factory=dict)
    scheduled_for: datetime
    sent_at: datetime | None = None
    read_at: datetime | None = None
    failure_reason: str | None = None
    retry_count: int = Field(0, ge=0)
    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=1)
    priority: NotificationPriority = NotificationPriority.NORMAL
    expires_at: datetime
    claimed_by: str | None = None
    claimed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def retry_count_within_bounds(self) -> "Notification":
        if self.retry_count > self.max_retries:
            msg = "retry_count cannot exceed max_retries"
            raise ValueError(msg)
        return self

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"claimed_by", "claimed_at"})


class CreateNotificationRequest(BaseModel):
    """Input to the dispatcher; unset optionals take dispatcher defaults."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    message: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
    data: dict[str, Any] | None = None
    channel: NotificationChannel | None = None
    scheduled_for: UtcDatetime | None = Field(None, alias="scheduledFor")
    priority: NotificationPriority | None = None
    expires_at: UtcDatetime | None = Field(None, alias="expiresAt")
    max_retries: int | None = Field(None, alias="maxRetries", ge=1)


class NotificationStats(BaseModel):
    total: int = 0
    sent: int = 0
    pending: int = 0
    failed: int = 0
    cancelled: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_channel: dict[str, int] = Field(default_factory=dict)
