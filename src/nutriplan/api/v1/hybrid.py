"""Hybrid endpoints: exchange a Firebase ID token for a local session token.

The provider token travels in the request body as ``firebaseToken``.
"""

import logging
from typing import Any

from fastapi import APIRouter, status

from nutriplan.auth.dependencies import Container
from nutriplan.core.exceptions import IdentityProviderNotConfiguredError
from nutriplan.models.auth import Principal
from nutriplan.models.common import ok
from nutriplan.models.user import HybridRegisterRequest, HybridTokenRequest, auth_payload

logger = logging.getLogger(__name__)

router = APIRouter()


async def verify_provider_token(container: Container, firebase_token: str) -> Principal:
    if not container.provider_state.is_configured:
        raise IdentityProviderNotConfiguredError(container.provider_state.reason)
    return await container.federated_resolver.resolve(f"Bearer {firebase_token}")


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def hybrid_register(body: HybridRegisterRequest, container: Container) -> dict[str, Any]:
    identity = await verify_provider_token(container, body.firebase_token)
    user, token = await container.auth_service.hybrid_register(identity, body.user_data)
    return ok("User registered successfully", auth_payload(user, token))


@router.post("/login")
async def hybrid_login(body: HybridTokenRequest, container: Container) -> dict[str, Any]:
    identity = await verify_provider_token(container, body.firebase_token)
    user, token = await container.auth_service.hybrid_login(identity)
    return ok("Login successful", auth_payload(user, token))


@router.post("/refresh")
async def hybrid_refresh(body: HybridTokenRequest, container: Container) -> dict[str, Any]:
    identity = await verify_provider_token(container, body.firebase_token)
    user, token = await container.auth_service.hybrid_refresh(identity)
    return ok("Token refreshed successfully", auth_payload(user, token))


@router.get("/status")
async def hybrid_status(container: Container) -> dict[str, Any]:
    state = container.provider_state
    return ok(
        "Hybrid authentication status",
        {
            "firebaseConfigured": state.is_configured,
            "localAuthEnabled": True,
        },
    )
