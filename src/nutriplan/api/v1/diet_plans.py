"""Diet plan endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from nutriplan.api.pagination import Pagination
from nutriplan.auth.dependencies import Container, NutritionistUser, audit_access
from nutriplan.models.audit import AuditAction, AuditResource
from nutriplan.models.common import ok
from nutriplan.models.records import DietPlanCreate, DietPlanUpdate

router = APIRouter()

DIET_PLAN = AuditResource.DIET_PLAN


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit_access(AuditAction.DIET_PLAN_CREATE, DIET_PLAN))],
)
async def create_diet_plan(
    body: DietPlanCreate, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    """Create a plan and notify the patient's linked account, if any."""
    plan = await container.diet_plans.create(user, body)
    return ok("Diet plan created successfully", plan)


@router.get("", dependencies=[Depends(audit_access(AuditAction.DIET_PLAN_READ, DIET_PLAN))])
async def list_diet_plans(
    user: NutritionistUser,
    container: Container,
    pagination: Pagination,
    patient_id: str | None = Query(None, alias="patientId"),
    is_active: bool | None = Query(None, alias="isActive"),
) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    if patient_id:
        filters["patient_id"] = patient_id
    if is_active is not None:
        filters["is_active"] = is_active
    plans, total = await container.diet_plans.list(
        user, pagination.page, pagination.limit, filters
    )
    return ok("Diet plans retrieved successfully", plans, pagination.info(total))


@router.get(
    "/{plan_id}",
    dependencies=[Depends(audit_access(AuditAction.DIET_PLAN_READ, DIET_PLAN, "plan_id"))],
)
async def get_diet_plan(
    plan_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    return ok("Diet plan retrieved successfully", await container.diet_plans.get(user, plan_id))


@router.put(
    "/{plan_id}",
    dependencies=[Depends(audit_access(AuditAction.DIET_PLAN_UPDATE, DIET_PLAN, "plan_id"))],
)
async def update_diet_plan(
    plan_id: str, body: DietPlanUpdate, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    plan = await container.diet_plans.update(user, plan_id, body)
    return ok("Diet plan updated successfully", plan)


@router.patch(
    "/{plan_id}/toggle",
    dependencies=[Depends(audit_access(AuditAction.DIET_PLAN_UPDATE, DIET_PLAN, "plan_id"))],
)
async def toggle_diet_plan(
    plan_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    plan = await container.diet_plans.toggle(user, plan_id)
    state = "activated" if plan.get("is_active") else "deactivated"
    return ok(f"Diet plan {state} successfully", plan)


@router.delete(
    "/{plan_id}",
    dependencies=[Depends(audit_access(AuditAction.DIET_PLAN_DELETE, DIET_PLAN, "plan_id"))],
)
async def delete_diet_plan(
    plan_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    await container.diet_plans.delete(user, plan_id)
    return ok("Diet plan deleted successfully")
