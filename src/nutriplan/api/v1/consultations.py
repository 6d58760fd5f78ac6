"""Consultation scheduling endpoints."""

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status

from nutriplan.api.pagination import Pagination
from nutriplan.auth.dependencies import Container, NutritionistUser, audit_access
from nutriplan.models.audit import AuditAction, AuditResource
from nutriplan.models.common import ok
from nutriplan.models.records import (
    CancelConsultationRequest,
    ConsultationCreate,
    ConsultationStatus,
    ConsultationUpdate,
)

router = APIRouter()

CONSULTATION = AuditResource.CONSULTATION
ID = "consultation_id"


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit_access(AuditAction.CONSULTATION_CREATE, CONSULTATION))],
)
async def create_consultation(
    body: ConsultationCreate, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    """Schedule a consultation.

    When the patient has a linked account a ``consultation_scheduled``
    notification goes out now and a reminder 24 hours before.
    """
    consultation = await container.consultations.create(user, body)
    return ok("Consultation scheduled successfully", consultation)


@router.get(
    "", dependencies=[Depends(audit_access(AuditAction.CONSULTATION_READ, CONSULTATION))]
)
async def list_consultations(
    user: NutritionistUser,
    container: Container,
    pagination: Pagination,
    status_filter: ConsultationStatus | None = Query(None, alias="status"),
    patient_id: str | None = Query(None, alias="patientId"),
) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    if status_filter:
        filters["status"] = status_filter
    if patient_id:
        filters["patient_id"] = patient_id
    consultations, total = await container.consultations.list(
        user, pagination.page, pagination.limit, filters
    )
    return ok("Consultations retrieved successfully", consultations, pagination.info(total))


@router.get(
    "/{consultation_id}",
    dependencies=[Depends(audit_access(AuditAction.CONSULTATION_READ, CONSULTATION, ID))],
)
async def get_consultation(
    consultation_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    consultation = await container.consultations.get(user, consultation_id)
    return ok("Consultation retrieved successfully", consultation)


@router.put(
    "/{consultation_id}",
    dependencies=[Depends(audit_access(AuditAction.CONSULTATION_UPDATE, CONSULTATION, ID))],
)
async def update_consultation(
    consultation_id: str,
    body: ConsultationUpdate,
    user: NutritionistUser,
    container: Container,
) -> dict[str, Any]:
    consultation = await container.consultations.update(user, consultation_id, body)
    return ok("Consultation updated successfully", consultation)


@router.patch(
    "/{consultation_id}/cancel",
    dependencies=[Depends(audit_access(AuditAction.CONSULTATION_UPDATE, CONSULTATION, ID))],
)
async def cancel_consultation(
    consultation_id: str,
    user: NutritionistUser,
    container: Container,
    body: CancelConsultationRequest | None = Body(None),
) -> dict[str, Any]:
    reason = body.reason if body else None
    consultation = await container.consultations.cancel(user, consultation_id, reason)
    return ok("Consultation cancelled successfully", consultation)


@router.delete(
    "/{consultation_id}",
    dependencies=[Depends(audit_access(AuditAction.CONSULTATION_DELETE, CONSULTATION, ID))],
)
async def delete_consultation(
    consultation_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    await container.consultations.delete(user, consultation_id)
    return ok("Consultation deleted successfully")
