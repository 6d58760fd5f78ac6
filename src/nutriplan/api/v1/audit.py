"""Audit trail reports and per-user access logs."""

from typing import Any

from fastapi import APIRouter, Query

from nutriplan.auth.dependencies import AdminUser, Container, CurrentUser, NutritionistUser
from nutriplan.models.audit import AuditResource
from nutriplan.models.common import ok

router = APIRouter()


@router.get("/activity")
async def activity_report(
    _user: NutritionistUser,
    container: Container,
    days: int = Query(30, ge=1, le=365),
) -> dict[str, Any]:
    report = await container.audit.activity_report(days)
    return ok("Activity report generated successfully", report)


@router.get("/sensitive-access")
async def sensitive_access(
    _admin: AdminUser,
    container: Container,
    days: int = Query(7, ge=1, le=365),
) -> dict[str, Any]:
    accesses = await container.audit.sensitive_access(days)
    return ok(
        "Sensitive data access retrieved successfully",
        {"period": {"days": days}, "totalAccess": len(accesses), "accesses": accesses},
    )


@router.get("/security-metrics")
async def security_metrics(
    _admin: AdminUser,
    container: Container,
    days: int = Query(7, ge=1, le=365),
) -> dict[str, Any]:
    metrics = await container.audit.security_metrics(days)
    return ok("Security metrics generated successfully", metrics)


@router.get("/my-logs")
async def my_logs(
    user: CurrentUser,
    container: Container,
    limit: int = Query(50, ge=1, le=100),
) -> dict[str, Any]:
    """The caller's own trail, without network details."""
    entries = await container.audit.logs_by_user(user.id, limit)
    logs = [
        entry.model_dump(include={"action", "resource_type", "resource_id", "timestamp", "details"})
        for entry in entries
    ]
    return ok("Your audit logs retrieved successfully", {"totalLogs": len(logs), "logs": logs})


@router.get("/user/{user_id}")
async def user_logs(
    user_id: str,
    _admin: AdminUser,
    container: Container,
    limit: int = Query(50, ge=1, le=500),
) -> dict[str, Any]:
    entries = await container.audit.logs_by_user(user_id, limit)
    return ok(
        "User audit logs retrieved successfully",
        {"userId": user_id, "totalLogs": len(entries), "logs": entries},
    )


@router.get("/patient/{patient_id}")
async def patient_logs(
    patient_id: str,
    user: NutritionistUser,
    container: Container,
    limit: int = Query(50, ge=1, le=500),
) -> dict[str, Any]:
    """Access history of one patient the caller owns."""
    await container.patients.get(user, patient_id)
    entries = await container.audit.logs_by_resource(AuditResource.PATIENT, patient_id, limit)
    return ok(
        "Patient audit logs retrieved successfully",
        {"patientId": patient_id, "totalLogs": len(entries), "logs": entries},
    )
