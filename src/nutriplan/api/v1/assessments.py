"""Nutritional assessments of a patient."""

from typing import Any

from fastapi import APIRouter, Query, status

from nutriplan.api.pagination import Pagination
from nutriplan.auth.dependencies import Container, NutritionistUser
from nutriplan.models.common import ok
from nutriplan.models.records import AssessmentCreate, AssessmentUpdate

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_assessment(
    body: AssessmentCreate, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    """Record an assessment; BMI is computed when not supplied."""
    assessment = await container.assessments.create(user, body)
    return ok("Assessment created successfully", assessment)


@router.get("")
async def list_assessments(
    user: NutritionistUser,
    container: Container,
    pagination: Pagination,
    patient_id: str | None = Query(None, alias="patientId"),
) -> dict[str, Any]:
    filters = {"patient_id": patient_id} if patient_id else None
    assessments, total = await container.assessments.list(
        user, pagination.page, pagination.limit, filters
    )
    return ok("Assessments retrieved successfully", assessments, pagination.info(total))


@router.get("/{assessment_id}")
async def get_assessment(
    assessment_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    assessment = await container.assessments.get(user, assessment_id)
    return ok("Assessment retrieved successfully", assessment)


@router.put("/{assessment_id}")
async def update_assessment(
    assessment_id: str, body: AssessmentUpdate, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    assessment = await container.assessments.update(user, assessment_id, body)
    return ok("Assessment updated successfully", assessment)


@router.delete("/{assessment_id}")
async def delete_assessment(
    assessment_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    await container.assessments.delete(user, assessment_id)
    return ok("Assessment deleted successfully")
