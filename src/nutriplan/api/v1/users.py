"""User administration endpoints and self-service profile updates."""

import logging
from typing import Any

from fastapi import APIRouter, Query

from nutriplan.api.pagination import Pagination
from nutriplan.auth.dependencies import AdminUser, Container, CurrentUser
from nutriplan.models.auth import UserRole
from nutriplan.models.common import ok
from nutriplan.models.user import RoleUpdateRequest, UpdateProfileRequest, User

logger = logging.getLogger(__name__)

router = APIRouter()


def _public(user: User) -> dict[str, Any]:
    return user.to_public().model_dump(mode="json")


@router.get("")
async def list_users(
    _admin: AdminUser,
    container: Container,
    pagination: Pagination,
    role: UserRole | None = Query(None),
) -> dict[str, Any]:
    users, total = await container.user_service.list(pagination.page, pagination.limit, role)
    return ok(
        "Users retrieved successfully",
        {"users": [_public(u) for u in users]},
        pagination.info(total),
    )


@router.put("/me")
async def update_me(
    body: UpdateProfileRequest, user: CurrentUser, container: Container
) -> dict[str, Any]:
    updated = await container.user_service.update_profile(
        user.id, body.model_dump(exclude_unset=True)
    )
    return ok("Profile updated successfully", {"user": _public(updated)})


@router.get("/{user_id}")
async def get_user(user_id: str, _admin: AdminUser, container: Container) -> dict[str, Any]:
    user = await container.user_service.require(user_id)
    return ok("User retrieved successfully", {"user": _public(user)})


@router.patch("/{user_id}/role")
async def set_role(
    user_id: str, body: RoleUpdateRequest, admin: AdminUser, container: Container
) -> dict[str, Any]:
    """Change a user's role. Tokens already issued keep the old role."""
    user = await container.user_service.set_role(user_id, body.role)
    logger.info("Admin %s changed role of %s to %s", admin.id, user_id, body.role.value)
    return ok("User role updated successfully", {"user": _public(user)})


@router.patch("/{user_id}/activate")
async def activate(user_id: str, _admin: AdminUser, container: Container) -> dict[str, Any]:
    user = await container.user_service.activate(user_id)
    return ok("User activated successfully", {"user": _public(user)})


@router.patch("/{user_id}/deactivate")
async def deactivate(user_id: str, _admin: AdminUser, container: Container) -> dict[str, Any]:
    user = await container.user_service.deactivate(user_id)
    return ok("User deactivated successfully", {"user": _public(user)})
