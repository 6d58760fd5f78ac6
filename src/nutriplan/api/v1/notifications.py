"""Notification inbox and administration endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Query, status

from nutriplan.api.pagination import Pagination
from nutriplan.auth.dependencies import AdminUser, Container, CurrentUser, NutritionistUser
from nutriplan.models.auth import UserRole
from nutriplan.models.common import ok
from nutriplan.models.notification import (
    CreateNotificationRequest,
    NotificationStatus,
    NotificationType,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_notifications(
    user: CurrentUser,
    container: Container,
    pagination: Pagination,
    status_filter: NotificationStatus | None = Query(None, alias="status"),
    type_filter: NotificationType | None = Query(None, alias="type"),
    unread_only: bool = Query(False, alias="unreadOnly"),
) -> dict[str, Any]:
    """The caller's own notifications, newest first."""
    items, total, unread = await container.dispatcher.get_user_notifications(
        user.id,
        pagination.page,
        pagination.limit,
        status=status_filter,
        type=type_filter,
        unread_only=unread_only,
    )
    return ok(
        "Notifications retrieved successfully",
        {
            "notifications": [n.to_public() for n in items],
            "unreadCount": unread,
        },
        pagination.info(total),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(
    body: CreateNotificationRequest, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    notification = await container.dispatcher.create(body)
    logger.info("Notification %s created by %s", notification.id, user.id)
    return ok("Notification created successfully", notification.to_public())


@router.patch("/read-all")
async def mark_all_read(user: CurrentUser, container: Container) -> dict[str, Any]:
    marked = await container.dispatcher.mark_all_as_read(user.id)
    return ok("All notifications marked as read", {"updated": marked})


@router.get("/stats")
async def notification_stats(user: CurrentUser, container: Container) -> dict[str, Any]:
    """Global stats for admins, the caller's own otherwise."""
    scope = None if user.role == UserRole.ADMIN else user.id
    stats = await container.dispatcher.get_stats(scope)
    return ok("Notification stats retrieved successfully", stats.model_dump())


@router.get("/queue/stats")
async def queue_stats(_admin: AdminUser, container: Container) -> dict[str, Any]:
    stats = await container.dispatcher.get_queue_stats()
    return ok("Queue stats retrieved successfully", stats.to_dict())


@router.post("/cleanup")
async def cleanup(admin: AdminUser, container: Container) -> dict[str, Any]:
    deleted = await container.dispatcher.cleanup_old_notifications()
    logger.info("Notification cleanup by %s removed %d records", admin.id, deleted)
    return ok("Old notifications cleaned up", {"deleted": deleted})


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str, user: CurrentUser, container: Container
) -> dict[str, Any]:
    notification = await container.dispatcher.mark_as_read(notification_id, user.id)
    return ok("Notification marked as read", notification.to_public())


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str, user: CurrentUser, container: Container
) -> dict[str, Any]:
    await container.dispatcher.delete(notification_id, user.id)
    return ok("Notification deleted successfully")
