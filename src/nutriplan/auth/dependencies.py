"""Authentication dependencies for the API routers.

``get_principal`` resolves the bearer credential with the shared hybrid
resolver; ``require_roles`` adds the authorization gate on top of it.
"""

from collections.abc import Awaitable, Callable
import logging
from typing import Annotated

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from nutriplan.auth.gate import ADMIN_ROLES, ANY_ROLE, NUTRITIONIST_ROLES, PATIENT_ROLES
from nutriplan.core.container import ServiceContainer, get_container
from nutriplan.core.exceptions import IdentityProviderNotConfiguredError
from nutriplan.models.audit import AuditAction, AuditResource
from nutriplan.models.auth import Principal, UserRole
from nutriplan.models.user import User

logger = logging.getLogger(__name__)

# Security scheme, documents the bearer header in OpenAPI
security = HTTPBearer(auto_error=False)

Container = Annotated[ServiceContainer, Depends(get_container)]


async def get_principal(
    request: Request,
    container: Container,
    _credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal:
    """Resolve the request's credential with the hybrid resolver."""
    principal = await container.resolver.resolve(request.headers.get("Authorization"))
    request.state.user = principal
    return principal


async def get_federated_principal(
    request: Request,
    container: Container,
    _credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal:
    """Resolve an identity provider token only.

    Raises:
        IdentityProviderNotConfiguredError: Firebase credentials are absent.
    """
    if not container.provider_state.is_configured:
        raise IdentityProviderNotConfiguredError(container.provider_state.reason)
    principal = await container.federated_resolver.resolve(
        request.headers.get("Authorization")
    )
    request.state.user = principal
    return principal


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[Principal]]:
    """Dependency factory gating a route on the given roles."""
    allowed = frozenset(roles)

    async def dependency(
        request: Request,
        container: Container,
        principal: Principal = Depends(get_principal),
    ) -> Principal:
        authorized = await container.gate.authorize(principal, allowed)
        request.state.user = authorized
        return authorized

    return dependency


async def require_known_role(
    request: Request,
    container: Container,
    principal: Principal = Depends(get_principal),
) -> Principal:
    """Any role at all; a principal without one is looked up or denied."""
    authorized = await container.gate.authorize(principal, ANY_ROLE)
    request.state.user = authorized
    return authorized


def current_user(
    *roles: UserRole,
) -> Callable[..., Awaitable[User]]:
    """Dependency factory returning the caller's active user record.

    The principal is gated on ``roles`` (any role when empty) and then mapped
    to the stored user, by id for session tokens and by external subject for
    identity provider tokens.
    """
    gate_dependency = require_roles(*roles) if roles else require_known_role

    async def dependency(
        container: Container,
        principal: Principal = Depends(gate_dependency),
    ) -> User:
        return await container.user_service.user_for_principal(principal)

    return dependency


# Reused by ``audit_access``; FastAPI resolves one callable once per request
get_current_user = current_user()
get_nutritionist_user = current_user(*NUTRITIONIST_ROLES)

# Type aliases for cleaner function signatures
AuthenticatedPrincipal = Annotated[Principal, Depends(require_known_role)]
CurrentUser = Annotated[User, Depends(get_current_user)]
NutritionistUser = Annotated[User, Depends(get_nutritionist_user)]
PatientUser = Annotated[User, Depends(current_user(*PATIENT_ROLES))]
AdminUser = Annotated[User, Depends(current_user(*ADMIN_ROLES))]
FederatedPrincipal = Annotated[Principal, Depends(get_federated_principal)]


def audit_access(
    action: AuditAction,
    resource_type: AuditResource,
    id_param: str | None = None,
) -> Callable[..., Awaitable[None]]:
    """Route dependency recording an audit entry once the request succeeds.

    The entry is written as a background task, which only runs after a
    successful response. ``id_param`` names the path parameter holding the
    resource id.
    """

    async def dependency(
        request: Request,
        background_tasks: BackgroundTasks,
        container: Container,
        user: NutritionistUser,
    ) -> None:
        resource_id = request.path_params.get(id_param) if id_param else None
        details = {
            "method": request.method,
            "path": request.url.path,
            "query": dict(request.query_params),
        }
        background_tasks.add_task(
            container.audit.record,
            user,
            action,
            resource_type,
            resource_id,
            details=details,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

    return dependency
