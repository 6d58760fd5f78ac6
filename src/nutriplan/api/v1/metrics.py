"""Metric recording and reporting endpoints."""

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Query, status

from nutriplan.auth.dependencies import AdminUser, Container, CurrentUser, NutritionistUser
from nutriplan.core.exceptions import AuthorizationError
from nutriplan.models.auth import UserRole
from nutriplan.models.common import ok, utc_now
from nutriplan.models.metric import (
    AggregationType,
    GroupBy,
    MetricBatch,
    MetricCategory,
    MetricCreate,
    MetricType,
)

router = APIRouter()

DEFAULT_PERIOD = timedelta(days=30)


def _window(start: datetime | None, end: datetime | None) -> tuple[datetime, datetime]:
    end = end or utc_now()
    return start or end - DEFAULT_PERIOD, end


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_metric(
    body: MetricCreate, user: CurrentUser, container: Container
) -> dict[str, Any]:
    """Record one metric; ``user_id`` defaults to the caller."""
    if body.user_id is None:
        body = body.model_copy(update={"user_id": user.id})
    metric = await container.metrics.record(body)
    return ok("Metric recorded successfully", metric)


@router.post("/batch", status_code=status.HTTP_201_CREATED)
async def record_batch(
    body: MetricBatch, user: CurrentUser, container: Container
) -> dict[str, Any]:
    items = [
        item if item.user_id else item.model_copy(update={"user_id": user.id})
        for item in body.metrics
    ]
    metrics = await container.metrics.record_batch(items)
    return ok(f"{len(metrics)} metrics recorded successfully", {"count": len(metrics)})


@router.get("")
async def list_metrics(
    _user: NutritionistUser,
    container: Container,
    metric_type: MetricType | None = Query(None, alias="type"),
    category: MetricCategory | None = Query(None),
    user_id: str | None = Query(None, alias="userId"),
    start: datetime | None = Query(None, alias="startDate"),
    end: datetime | None = Query(None, alias="endDate"),
    limit: int = Query(100, ge=1, le=1000),
) -> dict[str, Any]:
    metrics = await container.metrics.find(
        metric_type=metric_type,
        category=category,
        user_id=user_id,
        start=start,
        end=end,
        limit=limit,
    )
    return ok("Metrics retrieved successfully", {"total": len(metrics), "metrics": metrics})


@router.get("/report")
async def metrics_report(
    _user: NutritionistUser,
    container: Container,
    start: datetime | None = Query(None, alias="startDate"),
    end: datetime | None = Query(None, alias="endDate"),
) -> dict[str, Any]:
    report = await container.metrics.report(*_window(start, end))
    return ok("Metrics report generated successfully", report)


@router.get("/period")
async def metrics_by_period(
    _user: NutritionistUser,
    container: Container,
    group_by: GroupBy = Query("day", alias="groupBy"),
    aggregation: AggregationType = Query("sum", alias="aggregationType"),
    metric_type: MetricType | None = Query(None, alias="type"),
    category: MetricCategory | None = Query(None),
    start: datetime | None = Query(None, alias="startDate"),
    end: datetime | None = Query(None, alias="endDate"),
) -> dict[str, Any]:
    results = await container.metrics.aggregate(
        *_window(start, end),
        group_by=group_by,
        aggregation=aggregation,
        metric_type=metric_type,
        category=category,
    )
    return ok("Aggregated metrics retrieved successfully", results)


@router.get("/user/{user_id}")
async def user_metrics(
    user_id: str,
    user: CurrentUser,
    container: Container,
    start: datetime | None = Query(None, alias="startDate"),
    end: datetime | None = Query(None, alias="endDate"),
    limit: int = Query(100, ge=1, le=1000),
) -> dict[str, Any]:
    """A user's own metrics; admins may read anyone's."""
    if user_id != user.id and user.role != UserRole.ADMIN:
        raise AuthorizationError("Cannot read another user's metrics")
    metrics = await container.metrics.find(user_id=user_id, start=start, end=end, limit=limit)
    return ok("User metrics retrieved successfully", {"total": len(metrics), "metrics": metrics})


@router.delete("/cleanup")
async def cleanup_metrics(
    _admin: AdminUser,
    container: Container,
    days_to_keep: int = Query(90, ge=1, le=3650, alias="daysToKeep"),
) -> dict[str, Any]:
    removed = await container.metrics.cleanup(days_to_keep)
    return ok(f"{removed} old metrics removed", {"deletedCount": removed})


@router.get("/types")
async def metric_types(_user: CurrentUser) -> dict[str, Any]:
    types = [{"value": kind.value, "category": kind.category.value} for kind in MetricType]
    return ok("Metric types retrieved successfully", types)


@router.get("/categories")
async def metric_categories(_user: CurrentUser) -> dict[str, Any]:
    return ok(
        "Metric categories retrieved successfully",
        [category.value for category in MetricCategory],
    )
