"""User records service.

Users are never hard-deleted; deactivation is a soft flag. Emails are stored
lowercased and are unique across local and federated accounts.
"""

import logging
from typing import Any
import uuid

from nutriplan.auth.identity_provider import IdentityProviderState, NotConfigured
from nutriplan.core.exceptions import (
    AccountDisabledError,
    ConflictError,
    InvalidCredentialError,
    NotFoundError,
)
from nutriplan.models.auth import CredentialSource, Principal, UserRole
from nutriplan.models.common import to_document, utc_now
from nutriplan.models.user import User
from nutriplan.ports.storage import IDocumentStore

logger = logging.getLogger(__name__)

USERS = "users"
# One document per lowercased email, created only if absent
USER_EMAILS = "user_emails"


class UserService:
    def __init__(
        self,
        store: IDocumentStore,
        provider_state: IdentityProviderState | None = None,
    ) -> None:
        self.store = store
        self.provider_state = provider_state or NotConfigured("not provided")

    async def _insert(self, *, email: str, **fields: Any) -> User:
        """Reserve the lowercased email, then store the user.

        Raises:
            ConflictError: The email belongs to another account.
        """
        email = email.lower()
        if await self.find_by_email(email):
            raise ConflictError("Email already registered")

        now = utc_now()
        user = User(
            id=uuid.uuid4().hex,
            email=email,
            created_at=now,
            updated_at=now,
            **fields,
        )
        reserved = await self.store.create_unique(
            USER_EMAILS, email, {"user_id": user.id, "created_at": now}
        )
        if not reserved:
            raise ConflictError("Email already registered")
        try:
            await self.store.create(USERS, to_document(user), document_id=user.id)
        except Exception:
            await self.store.delete(USER_EMAILS, email)
            raise
        logger.info("User created: %s (role=%s)", user.id, user.role.value)
        return user

    async def create_local(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        role: UserRole,
        crn: str | None = None,
    ) -> User:
        return await self._insert(
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            crn=crn,
        )

    async def create_federated(
        self,
        *,
        name: str,
        email: str,
        external_subject_id: str,
        external_verified: bool = False,
        role: UserRole = UserRole.PATIENT,
        crn: str | None = None,
    ) -> User:
        return await self._insert(
            name=name,
            email=email,
            external_subject_id=external_subject_id,
            external_verified=external_verified,
            role=role,
            crn=crn,
        )

    async def get(self, user_id: str) -> User | None:
        document = await self.store.get(USERS, user_id)
        return User.model_validate(document) if document else None

    async def require(self, user_id: str) -> User:
        user = await self.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def find_by_email(self, email: str) -> User | None:
        documents = await self.store.query(USERS, {"email": email.lower()}, limit=1)
        return User.model_validate(documents[0]) if documents else None

    async def find_by_external_subject(self, external_subject_id: str) -> User | None:
        documents = await self.store.query(
            USERS, {"external_subject_id": external_subject_id}, limit=1
        )
        return User.model_validate(documents[0]) if documents else None

    async def user_for_principal(self, principal: Principal) -> User:
        """Map a verified principal to its active user record.

        Raises:
            InvalidCredentialError: No user exists for the principal.
            AccountDisabledError: The user is deactivated.
        """
        if principal.source == CredentialSource.IDENTITY_PROVIDER:
            user = await self.find_by_external_subject(principal.subject_id)
        else:
            user = await self.get(principal.subject_id)
        if user is None:
            raise InvalidCredentialError("User not registered")
        if not user.is_active:
            raise AccountDisabledError(user.id)
        return user

    async def _apply(self, user_id: str, changes: dict[str, Any]) -> User:
        changes = {**to_document(changes), "updated_at": utc_now()}
        if not await self.store.update(USERS, user_id, changes):
            raise NotFoundError("User", user_id)
        return await self.require(user_id)

    async def link_external_subject(
        self, user_id: str, external_subject_id: str, verified: bool = False
    ) -> User:
        logger.info("Linking user %s to identity provider subject", user_id)
        return await self._apply(
            user_id,
            {"external_subject_id": external_subject_id, "external_verified": verified},
        )

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> User:
        allowed = {key: value for key, value in changes.items() if key in {"name", "avatar"}}
        return await self._apply(user_id, allowed)

    async def update_last_login(self, user_id: str) -> None:
        await self.store.update(USERS, user_id, {"last_login": utc_now()})

    async def update_password(self, user_id: str, password_hash: str) -> None:
        await self._apply(user_id, {"password_hash": password_hash})
        logger.info("Password updated for user %s", user_id)

    async def set_role(self, user_id: str, role: UserRole) -> User:
        """Change a user's role and mirror it to the identity provider claim.

        Already issued session tokens keep the old role until they expire.
        """
        user = await self._apply(user_id, {"role": role})
        if user.external_subject_id and not isinstance(self.provider_state, NotConfigured):
            await self.provider_state.provider.set_role(user.external_subject_id, role)
        logger.info("Role for user %s set to %s", user_id, role.value)
        return user

    async def activate(self, user_id: str) -> User:
        return await self._apply(user_id, {"is_active": True})

    async def deactivate(self, user_id: str) -> User:
        logger.info("Deactivating user %s", user_id)
        return await self._apply(user_id, {"is_active": False})

    async def list(
        self, page: int, limit: int, role: UserRole | None = None
    ) -> tuple[list[User], int]:
        filters = {"role": role.value} if role else None
        documents = await self.store.query(
            USERS,
            filters,
            order_by="created_at",
            descending=True,
            limit=limit,
            offset=(page - 1) * limit,
        )
        total = await self.store.count(USERS, filters)
        return [User.model_validate(document) for document in documents], total
