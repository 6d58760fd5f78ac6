"""Federated login endpoints authenticated by a Firebase ID token."""

import logging
from typing import Any

from fastapi import APIRouter, Body

from nutriplan.auth.dependencies import Container, FederatedPrincipal
from nutriplan.models.common import ok
from nutriplan.models.user import FederatedLoginRequest, auth_payload

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login")
async def firebase_login(
    principal: FederatedPrincipal,
    container: Container,
    body: FederatedLoginRequest | None = Body(None),
) -> dict[str, Any]:
    """Sign in with a provider token, creating or linking the local user."""
    hints = body or FederatedLoginRequest()
    user, token = await container.auth_service.federated_login(
        principal, name=hints.name, email=hints.email
    )
    logger.info("Federated login for user %s", user.id)
    return ok("Login successful", auth_payload(user, token))


@router.get("/profile")
async def firebase_profile(
    principal: FederatedPrincipal, container: Container
) -> dict[str, Any]:
    user = await container.auth_service.federated_profile(principal)
    return ok("Profile retrieved successfully", {"user": user.to_public().model_dump(mode="json")})
