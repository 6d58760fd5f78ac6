"""Authorization gate.

Role checks trust the role embedded in the credential. Only a principal
without a role triggers a lookup of the identity provider's ``role`` claim.
Any failure along that slow path denies access.
"""

from collections.abc import Iterable
import logging

from nutriplan.auth.identity_provider import IdentityProviderState, NotConfigured
from nutriplan.core.exceptions import InsufficientRoleError
from nutriplan.models.auth import Principal, UserRole

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({UserRole.ADMIN})
NUTRITIONIST_ROLES = frozenset({UserRole.NUTRITIONIST, UserRole.ADMIN})
PATIENT_ROLES = frozenset({UserRole.PATIENT, UserRole.NUTRITIONIST, UserRole.ADMIN})
ANY_ROLE = frozenset(UserRole)


class AuthorizationGate:
    def __init__(self, provider_state: IdentityProviderState) -> None:
        self.provider_state = provider_state

    async def authorize(
        self, principal: Principal, allowed_roles: Iterable[UserRole]
    ) -> Principal:
        """Return the principal, role-enriched if a lookup was needed.

        Raises:
            InsufficientRoleError: The role is missing, not allowed, or could
                not be looked up.
        """
        allowed = frozenset(allowed_roles)
        allowed_names = [role.value for role in allowed]

        if principal.role is not None:
            if principal.role in allowed:
                return principal
            logger.info(
                "Access denied for subject %s: role %s not in %s",
                principal.subject_id,
                principal.role.value,
                sorted(allowed_names),
            )
            raise InsufficientRoleError(allowed_names, principal.role.value)

        role = await self._lookup_role(principal)
        if role is None or role not in allowed:
            raise InsufficientRoleError(allowed_names, role.value if role else None)
        return principal.with_role(role)

    async def _lookup_role(self, principal: Principal) -> UserRole | None:
        if isinstance(self.provider_state, NotConfigured):
            return None
        try:
            return await self.provider_state.provider.get_role(principal.subject_id)
        except Exception:
            logger.warning(
                "Role lookup failed for subject %s, denying access",
                principal.subject_id,
                exc_info=True,
            )
            return None
