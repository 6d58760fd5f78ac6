"""Local authentication endpoints: email and password accounts."""

import logging
from typing import Any

from fastapi import APIRouter, status

from nutriplan.auth.dependencies import AuthenticatedPrincipal, Container, CurrentUser
from nutriplan.models.common import ok
from nutriplan.models.user import (
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    auth_payload,
)

# Configure logger
logger = logging.getLogger(__name__)

# Create router
router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, container: Container) -> dict[str, Any]:
    """Register a local account and return a session token."""
    user, token = await container.auth_service.register(
        name=body.name,
        email=body.email,
        password=body.password,
        role=body.role,
        crn=body.crn,
    )
    return ok("User registered successfully", auth_payload(user, token))


@router.post("/login")
async def login(body: LoginRequest, container: Container) -> dict[str, Any]:
    user, token = await container.auth_service.login(body.email, body.password)
    return ok("Login successful", auth_payload(user, token))


@router.post("/logout")
async def logout(principal: AuthenticatedPrincipal, container: Container) -> dict[str, Any]:
    """Acknowledge a logout; session tokens simply expire."""
    await container.auth_service.logout(principal)
    return ok("Logout successful")


@router.get("/me")
async def me(user: CurrentUser) -> dict[str, Any]:
    return ok("User retrieved successfully", {"user": user.to_public().model_dump(mode="json")})


@router.post("/forgot-password")
async def forgot_password(body: ForgotPasswordRequest, container: Container) -> dict[str, Any]:
    """Start a password reset.

    Outside production the reset token is returned directly; in production it
    is sent to the user by email.
    """
    token = await container.auth_service.forgot_password(body.email)
    if token is None:
        return ok("Password reset instructions sent to your email")
    return ok("Password reset token generated", {"resetToken": token})


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, container: Container) -> dict[str, Any]:
    await container.auth_service.reset_password(body.token, body.new_password)
    return ok("Password reset successfully")
