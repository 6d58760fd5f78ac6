"""Audit trail entries and the reports built from them."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    PATIENT_CREATE = "PATIENT_CREATE"
    PATIENT_READ = "PATIENT_READ"
    PATIENT_UPDATE = "PATIENT_UPDATE"
    PATIENT_DELETE = "PATIENT_DELETE"
    PATIENT_LIST = "PATIENT_LIST"
    CONSULTATION_CREATE = "CONSULTATION_CREATE"
    CONSULTATION_READ = "CONSULTATION_READ"
    CONSULTATION_UPDATE = "CONSULTATION_UPDATE"
    CONSULTATION_DELETE = "CONSULTATION_DELETE"
    DIET_PLAN_CREATE = "DIET_PLAN_CREATE"
    DIET_PLAN_READ = "DIET_PLAN_READ"
    DIET_PLAN_UPDATE = "DIET_PLAN_UPDATE"
    DIET_PLAN_DELETE = "DIET_PLAN_DELETE"
    SENSITIVE_DATA_ACCESS = "SENSITIVE_DATA_ACCESS"

    @property
    def sensitive(self) -> bool:
        return self in SENSITIVE_ACTIONS


SENSITIVE_ACTIONS = frozenset(
    {
        AuditAction.PATIENT_READ,
        AuditAction.PATIENT_UPDATE,
        AuditAction.PATIENT_DELETE,
        AuditAction.SENSITIVE_DATA_ACCESS,
    }
)


class AuditResource(str, Enum):
    USER = "USER"
    PATIENT = "PATIENT"
    CONSULTATION = "CONSULTATION"
    DIET_PLAN = "DIET_PLAN"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AuditEntry(BaseModel):
    id: str
    user_id: str
    user_email: str
    action: AuditAction
    resource_type: AuditResource
    resource_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    sensitive: bool = False
    timestamp: datetime
    expires_at: datetime


class UserActivity(BaseModel):
    user_id: str
    user_email: str
    count: int


class ActivityReport(BaseModel):
    period: dict[str, Any]
    action_stats: dict[str, int]
    user_stats: list[UserActivity]
    sensitive_stats: dict[str, int]
    total_actions: int


class SecurityMetrics(BaseModel):
    period: dict[str, Any]
    total_actions: int
    sensitive_data_access: int
    unique_users_accessing: int
    top_sensitive_actions: dict[str, int]
    risk_score: RiskLevel
    recommendations: list[str]
