"""Patient invite endpoints.

A nutritionist invites a patient by email; the invite token is then looked up
publicly and accepted by the patient's account.
"""

import logging
from typing import Any

from fastapi import APIRouter, Query, status

from nutriplan.api.pagination import Pagination
from nutriplan.auth.dependencies import Container, NutritionistUser, PatientUser
from nutriplan.models.common import ok
from nutriplan.models.records import InviteCreate, InviteStatus
from nutriplan.services.records import public_invite

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invite(
    body: InviteCreate, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    invite = await container.invites.create(user, body)
    return ok("Invite created successfully", invite)


@router.get("")
async def list_invites(
    user: NutritionistUser,
    container: Container,
    pagination: Pagination,
    status_filter: InviteStatus | None = Query(None, alias="status"),
) -> dict[str, Any]:
    filters = {"status": status_filter} if status_filter else None
    invites, total = await container.invites.list(
        user, pagination.page, pagination.limit, filters
    )
    return ok("Invites retrieved successfully", invites, pagination.info(total))


@router.get("/token/{token}")
async def get_invite_by_token(token: str, container: Container) -> dict[str, Any]:
    invite = await container.invites.get_by_token(token)
    return ok("Invite retrieved successfully", public_invite(invite))


@router.post("/token/{token}/accept")
async def accept_invite(token: str, user: PatientUser, container: Container) -> dict[str, Any]:
    invite = await container.invites.accept(token, user)
    return ok("Invite accepted successfully", public_invite(invite))


@router.patch("/{invite_id}/cancel")
async def cancel_invite(
    invite_id: str, user: NutritionistUser, container: Container
) -> dict[str, Any]:
    invite = await container.invites.cancel(user, invite_id)
    return ok("Invite cancelled successfully", invite)
