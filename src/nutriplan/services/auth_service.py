"""NutriPlan - Authentication Service.

Local accounts (email and bcrypt password), identity-provider accounts and the
hybrid flow that trades a provider token for a local session token.
"""

import logging
from typing import TYPE_CHECKING

from nutriplan.auth.passwords import hash_password_async, verify_password_async
from nutriplan.auth.reset_tokens import PasswordResetTokens
from nutriplan.auth.tokens import LocalTokenIssuer
from nutriplan.core.exceptions import (
    AccountDisabledError,
    ConflictError,
    InvalidCredentialError,
    NotFoundError,
    ValidationError,
)
from nutriplan.models.auth import ExternalIdentity, Principal, UserRole
from nutriplan.models.user import HybridUserData, User
from nutriplan.services.user_service import UserService

if TYPE_CHECKING:
    from nutriplan.services.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


class AuthenticationService:
    def __init__(
        self,
        users: UserService,
        issuer: LocalTokenIssuer,
        reset_tokens: PasswordResetTokens,
        *,
        bcrypt_rounds: int = 12,
        expose_reset_token: bool = False,
        dispatcher: "NotificationDispatcher | None" = None,
    ) -> None:
        self.users = users
        self.issuer = issuer
        self.reset_tokens = reset_tokens
        self.bcrypt_rounds = bcrypt_rounds
        self.expose_reset_token = expose_reset_token
        self.dispatcher = dispatcher

    def issue_token(self, user: User) -> str:
        return self.issuer.issue(user.id, user.email, user.role)

    async def register(
        self,
        *,
        name: str,
        email: str,
        password: str,
        role: UserRole = UserRole.PATIENT,
        crn: str | None = None,
    ) -> tuple[User, str]:
        """Create a local account and return it with a session token.

        Raises:
            ConflictError: The email is already registered.
        """
        if await self.users.find_by_email(email):
            raise ConflictError("Email already registered")

        password_hash = await hash_password_async(password, self.bcrypt_rounds)
        user = await self.users.create_local(
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            crn=crn,
        )
        await self.send_welcome(user)
        logger.info("User registered: %s", user.id)
        return user, self.issue_token(user)

    async def login(self, email: str, password: str) -> tuple[User, str]:
        """Check the password and issue a session token.

        Unknown emails and wrong passwords are indistinguishable.
        """
        user = await self.users.find_by_email(email)
        if user is None or not user.password_hash:
            raise InvalidCredentialError(INVALID_CREDENTIALS)
        if not await verify_password_async(password, user.password_hash):
            logger.info("Failed login for user %s", user.id)
            raise InvalidCredentialError(INVALID_CREDENTIALS)
        if not user.is_active:
            raise AccountDisabledError(user.id)

        await self.users.update_last_login(user.id)
        return user, self.issue_token(user)

    async def logout(self, principal: Principal) -> None:
        # Session tokens are stateless; the client discards its copy
        logger.info("Logout acknowledged for subject %s", principal.subject_id)

    async def forgot_password(self, email: str) -> str | None:
        """Issue a reset token for the account.

        Returns the token only when it may be exposed in the response; otherwise
        it is delivered as a ``password_reset`` notification.

        Raises:
            NotFoundError: No account uses this email.
        """
        user = await self.users.find_by_email(email)
        if user is None:
            raise NotFoundError("User")

        token = await self.reset_tokens.generate(user.id)
        if self.expose_reset_token:
            return token
        if self.dispatcher is not None:
            await self.dispatcher.notify_password_reset(user.id, token)
        return None

    async def reset_password(self, token: str, new_password: str) -> None:
        user_id = await self.reset_tokens.verify_and_consume(token)
        if await self.users.get(user_id) is None:
            raise InvalidCredentialError("Invalid or expired reset token")
        password_hash = await hash_password_async(new_password, self.bcrypt_rounds)
        await self.users.update_password(user_id, password_hash)

    async def federated_login(
        self,
        principal: Principal,
        name: str | None = None,
        email: str | None = None,
    ) -> tuple[User, str]:
        """Sign in with a verified provider principal.

        The user is found by external subject, else an account with the same
        email is linked, else a new patient account is created.
        """
        user = await self.users.find_by_external_subject(principal.subject_id)

        if user is None:
            address = principal.email or email
            if not address:
                raise ValidationError(
                    "Email is required",
                    errors=[{"field": "email", "message": "Email is required"}],
                    field_name="email",
                )
            existing = await self.users.find_by_email(address)
            if existing is not None:
                user = await self.users.link_external_subject(
                    existing.id, principal.subject_id, principal.email_verified
                )
            else:
                user = await self.users.create_federated(
                    name=name or principal.display_name or address.split("@")[0],
                    email=address,
                    external_subject_id=principal.subject_id,
                    external_verified=principal.email_verified,
                    role=principal.role or UserRole.PATIENT,
                )
                await self.send_welcome(user)

        if not user.is_active:
            raise AccountDisabledError(user.id)

        await self.users.update_last_login(user.id)
        return user, self.issue_token(user)

    async def federated_profile(self, principal: Principal) -> User:
        user = await self.users.find_by_external_subject(principal.subject_id)
        if user is None:
            raise NotFoundError("User")
        return user

    async def hybrid_register(
        self, identity: ExternalIdentity | Principal, user_data: HybridUserData
    ) -> tuple[User, str]:
        """Create a provider-only account from a verified provider token."""
        if not identity.email:
            raise ValidationError(
                "Identity provider account has no email",
                errors=[{"field": "email", "message": "Email is required"}],
                field_name="email",
            )
        if await self.users.find_by_email(identity.email):
            raise ConflictError("Email already registered")

        user = await self.users.create_federated(
            name=user_data.name or identity.display_name or identity.email.split("@")[0],
            email=identity.email,
            external_subject_id=identity.subject_id,
            external_verified=identity.email_verified,
            role=user_data.role,
            crn=user_data.crn,
        )
        await self.send_welcome(user)
        return user, self.issue_token(user)

    async def _hybrid_user(self, identity: ExternalIdentity | Principal) -> User:
        user = await self.users.find_by_email(identity.email) if identity.email else None
        if user is None:
            user = await self.users.find_by_external_subject(identity.subject_id)
        if user is None:
            raise NotFoundError("User", message="User not registered")
        if not user.is_active:
            raise AccountDisabledError(user.id)
        return user

    async def hybrid_login(self, identity: ExternalIdentity | Principal) -> tuple[User, str]:
        user = await self._hybrid_user(identity)
        if user.external_subject_id != identity.subject_id:
            user = await self.users.link_external_subject(
                user.id, identity.subject_id, identity.email_verified
            )
        await self.users.update_last_login(user.id)
        return user, self.issue_token(user)

    async def hybrid_refresh(self, identity: ExternalIdentity | Principal) -> tuple[User, str]:
        user = await self._hybrid_user(identity)
        return user, self.issue_token(user)

    async def send_welcome(self, user: User) -> None:
        if self.dispatcher is None:
            return
        try:
            await self.dispatcher.send_welcome(user)
        except Exception:
            # A failed welcome message must not fail the registration
            logger.exception("Failed to dispatch welcome notification to %s", user.id)
