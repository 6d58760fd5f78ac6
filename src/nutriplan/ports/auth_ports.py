"""Identity provider port."""

from abc import ABC, abstractmethod

from nutriplan.models.auth import ExternalIdentity, UserRole


class IIdentityProvider(ABC):
    """External identity verification service.

    Implementations raise ``InvalidCredentialError`` for rejected tokens and
    ``IdentityProviderUnreachableError`` when the service cannot be contacted.
    """

    @abstractmethod
    async def verify_token(self, token: str) -> ExternalIdentity:
        """Verify an opaque provider token and return the asserted identity."""

    @abstractmethod
    async def get_role(self, subject_id: str) -> UserRole | None:
        """Application role stored as a custom claim, if any."""

    @abstractmethod
    async def set_role(self, subject_id: str, role: UserRole) -> None:
        """Store the application role as a custom claim."""

    @abstractmethod
    async def user_exists_by_email(self, email: str) -> bool:
        pass

    @abstractmethod
    async def delete_user(self, subject_id: str) -> None:
        pass
