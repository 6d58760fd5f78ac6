"""Usage and performance metrics recorded by the API."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class MetricType(str, Enum):
    USER_REGISTRATION = "user_registration"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    USER_SESSION_DURATION = "user_session_duration"
    PATIENT_CREATED = "patient_created"
    PATIENT_UPDATED = "patient_updated"
    PATIENT_DELETED = "patient_deleted"
    ASSESSMENT_CREATED = "assessment_created"
    ASSESSMENT_COMPLETED = "assessment_completed"
    DIET_PLAN_CREATED = "diet_plan_created"
    DIET_PLAN_UPDATED = "diet_plan_updated"
    CONSULTATION_SCHEDULED = "consultation_scheduled"
    CONSULTATION_COMPLETED = "consultation_completed"
    CONSULTATION_CANCELLED = "consultation_cancelled"
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"
    SYSTEM_ERROR = "system_error"
    API_REQUEST = "api_request"
    API_ERROR = "api_error"
    DATABASE_QUERY = "database_query"
    RESPONSE_TIME = "response_time"
    DATABASE_RESPONSE_TIME = "database_response_time"

    @property
    def category(self) -> "MetricCategory":
        for prefix, category in CATEGORY_PREFIXES:
            if self.name.startswith(prefix):
                return category
        return MetricCategory.SYSTEM_HEALTH


class MetricCategory(str, Enum):
    USER_ACTIVITY = "user_activity"
    PATIENT_MANAGEMENT = "patient_management"
    CLINICAL_DATA = "clinical_data"
    CONSULTATION = "consultation"
    NOTIFICATION = "notification"
    SYSTEM_HEALTH = "system_health"
    PERFORMANCE = "performance"


# First matching prefix of the type name wins
CATEGORY_PREFIXES: tuple[tuple[str, MetricCategory], ...] = (
    ("USER_", MetricCategory.USER_ACTIVITY),
    ("PATIENT_", MetricCategory.PATIENT_MANAGEMENT),
    ("ASSESSMENT_", MetricCategory.CLINICAL_DATA),
    ("DIET_PLAN_", MetricCategory.CLINICAL_DATA),
    ("CONSULTATION_", MetricCategory.CONSULTATION),
    ("NOTIFICATION_", MetricCategory.NOTIFICATION),
    ("SYSTEM_", MetricCategory.SYSTEM_HEALTH),
    ("API_", MetricCategory.SYSTEM_HEALTH),
    ("DATABASE_", MetricCategory.PERFORMANCE),
    ("RESPONSE_TIME", MetricCategory.PERFORMANCE),
)


class MetricUnit(str, Enum):
    COUNT = "count"
    PERCENTAGE = "percentage"
    BYTES = "bytes"
    MILLISECONDS = "milliseconds"
    SECONDS = "seconds"


GroupBy = Literal["hour", "day", "week", "month", "year"]
AggregationType = Literal["sum", "avg", "min", "max", "count"]


class MetricCreate(BaseModel):
    type: MetricType
    name: str | None = Field(None, max_length=200)
    value: float = Field(1, ge=0)
    unit: MetricUnit = MetricUnit.COUNT
    user_id: str | None = None
    patient_id: str | None = None
    resource_id: str | None = None
    resource_type: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: str = "api"

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str | None) -> str | None:
        return value.strip() or None if value is not None else None


class MetricBatch(BaseModel):
    metrics: list[MetricCreate] = Field(..., min_length=1, max_length=500)


class Metric(MetricCreate):
    id: str
    name: str
    category: MetricCategory
    timestamp: datetime


class AggregationResult(BaseModel):
    period: str
    value: float
    count: int


class MetricReport(BaseModel):
    period: dict[str, Any]
    summary: dict[str, Any]
    trends: dict[str, list[AggregationResult]]
    performance: dict[str, float]
    user_activity: dict[str, float]
