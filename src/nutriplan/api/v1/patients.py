"""Patient records, scoped to the owning nutritionist."""

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from nutriplan.api.pagination import Pagination
from nutriplan.auth.dependencies import Container, NutritionistUser, audit_access
from nutriplan.models.audit import AuditAction, AuditResource
from nutriplan.models.common import ok
from nutriplan.models.records import PatientCreate, PatientUpdate

router = APIRouter()

PATIENT = AuditResource.PATIENT


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit_access(AuditAction.PATIENT_CREATE, PATIENT))],
)
async def create_patient(
    body: PatientCreate, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    patient = await container.patients.create(user, body)
    return ok("Patient created successfully", patient)


@router.get("", dependencies=[Depends(audit_access(AuditAction.PATIENT_LIST, PATIENT))])
async def list_patients(
    user: NutritionistUser,
    container: Container,
    pagination: Pagination,
    search: str | None = Query(None, max_length=100),
) -> dict[str, Any]:
    """Active patients, optionally filtered by a name or email substring."""
    patients, total = await container.patients.search(
        user, pagination.page, pagination.limit, search
    )
    return ok("Patients retrieved successfully", patients, pagination.info(total))


@router.get(
    "/{patient_id}",
    dependencies=[Depends(audit_access(AuditAction.PATIENT_READ, PATIENT, "patient_id"))],
)
async def get_patient(
    patient_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    return ok("Patient retrieved successfully", await container.patients.get(user, patient_id))


@router.put(
    "/{patient_id}",
    dependencies=[Depends(audit_access(AuditAction.PATIENT_UPDATE, PATIENT, "patient_id"))],
)
async def update_patient(
    patient_id: str, body: PatientUpdate, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    patient = await container.patients.update(user, patient_id, body)
    return ok("Patient updated successfully", patient)


@router.delete(
    "/{patient_id}",
    dependencies=[Depends(audit_access(AuditAction.PATIENT_DELETE, PATIENT, "patient_id"))],
)
async def delete_patient(
    patient_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    await container.patients.delete(user, patient_id)
    return ok("Patient deleted successfully")
