"""Firebase identity provider adapter.

The provider is optional. ``build_identity_provider`` resolves it once at
startup into either ``Configured`` or ``NotConfigured`` and the result is
passed explicitly to the credential resolver and the authorization gate.
"""

import asyncio
from dataclasses import dataclass
import logging
from typing import Any

import firebase_admin
from firebase_admin import auth, credentials, exceptions as firebase_exceptions

from nutriplan.core.config import Settings
from nutriplan.core.exceptions import (
    InvalidCredentialError,
    IdentityProviderUnreachableError,
)
from nutriplan.models.auth import ExternalIdentity, UserRole
from nutriplan.ports.auth_ports import IIdentityProvider

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "nutriplan"
ROLE_CLAIM = "role"


def _parse_role(value: Any) -> UserRole | None:
    try:
        return UserRole(value) if value else None
    except ValueError:
        logger.warning("Ignoring unknown role claim: %s", value)
        return None


def service_account_info(settings: Settings) -> dict[str, str]:
    """Service account dict for ``credentials.Certificate``."""
    return {
        "type": "service_account",
        "project_id": settings.firebase_project_id,
        "private_key_id": settings.firebase_private_key_id,
        # Keys supplied through env vars carry literal "\n" sequences
        "private_key": settings.firebase_private_key.replace("\\n", "\n"),
        "client_email": settings.firebase_client_email,
        "client_id": settings.firebase_client_id,
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
        "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
        "client_x509_cert_url": settings.firebase_client_cert_url,
    }


class FirebaseIdentityProvider(IIdentityProvider):
    """Firebase Admin SDK backed identity provider.

    SDK calls are blocking and run in a worker thread.
    """

    def __init__(
        self,
        app: firebase_admin.App,
        *,
        check_revoked: bool = False,
        clock_skew_seconds: int = 30,
    ) -> None:
        self._app = app
        self.check_revoked = check_revoked
        self.clock_skew_seconds = clock_skew_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "FirebaseIdentityProvider":
        try:
            app = firebase_admin.get_app(FIREBASE_APP_NAME)
            logger.info("Firebase Admin SDK already initialized with app: %s", app.name)
        except ValueError:
            cred = credentials.Certificate(service_account_info(settings))
            app = firebase_admin.initialize_app(
                cred,
                {"projectId": settings.firebase_project_id},
                name=FIREBASE_APP_NAME,
            )
            logger.info("Firebase Admin SDK initialized for project %s", settings.firebase_project_id)
        return cls(app)

    async def verify_token(self, token: str) -> ExternalIdentity:
        try:
            decoded = await asyncio.to_thread(
                auth.verify_id_token,
                token,
                app=self._app,
                check_revoked=self.check_revoked,
                clock_skew_seconds=self.clock_skew_seconds,
            )
        except (
            auth.ExpiredIdTokenError,
            auth.RevokedIdTokenError,
            auth.InvalidIdTokenError,
            auth.UserDisabledError,
        ) as e:
            logger.debug("Firebase token rejected: %s", e)
            raise InvalidCredentialError("Invalid Firebase token") from e
        except (auth.CertificateFetchError, firebase_exceptions.FirebaseError) as e:
            logger.warning("Firebase token verification unavailable: %s", e)
            raise IdentityProviderUnreachableError(str(e)) from e
        except ValueError as e:
            raise InvalidCredentialError("Invalid Firebase token") from e

        return ExternalIdentity(
            subject_id=decoded["uid"],
            email=decoded.get("email"),
            email_verified=bool(decoded.get("email_verified", False)),
            display_name=decoded.get("name"),
            role=_parse_role(decoded.get(ROLE_CLAIM)),
        )

    async def get_role(self, subject_id: str) -> UserRole | None:
        try:
            record = await asyncio.to_thread(auth.get_user, subject_id, app=self._app)
        except auth.UserNotFoundError:
            return None
        except firebase_exceptions.FirebaseError as e:
            raise IdentityProviderUnreachableError(str(e)) from e
        return _parse_role((record.custom_claims or {}).get(ROLE_CLAIM))

    async def set_role(self, subject_id: str, role: UserRole) -> None:
        try:
            record = await asyncio.to_thread(auth.get_user, subject_id, app=self._app)
            claims = dict(record.custom_claims or {})
            claims[ROLE_CLAIM] = role.value
            await asyncio.to_thread(
                auth.set_custom_user_claims, subject_id, claims, app=self._app
            )
        except firebase_exceptions.FirebaseError as e:
            logger.exception("Error setting role claim for user %s", subject_id)
            raise IdentityProviderUnreachableError(str(e)) from e
        logger.info("Role claim set for user %s: %s", subject_id, role.value)

    async def user_exists_by_email(self, email: str) -> bool:
        try:
            await asyncio.to_thread(auth.get_user_by_email, email, app=self._app)
        except auth.UserNotFoundError:
            return False
        except firebase_exceptions.FirebaseError as e:
            raise IdentityProviderUnreachableError(str(e)) from e
        return True

    async def delete_user(self, subject_id: str) -> None:
        try:
            await asyncio.to_thread(auth.delete_user, subject_id, app=self._app)
        except firebase_exceptions.FirebaseError as e:
            logger.exception("Error deleting user %s", subject_id)
            raise IdentityProviderUnreachableError(str(e)) from e
        logger.info("Identity provider user %s deleted", subject_id)


@dataclass(frozen=True)
class Configured:
    provider: IIdentityProvider

    @property
    def is_configured(self) -> bool:
        return True


@dataclass(frozen=True)
class NotConfigured:
    reason: str

    @property
    def is_configured(self) -> bool:
        return False


IdentityProviderState = Configured | NotConfigured


def build_identity_provider(settings: Settings) -> IdentityProviderState:
    """Resolve the optional identity provider once at startup."""
    if not settings.firebase_configured():
        return NotConfigured(
            "FIREBASE_PROJECT_ID, FIREBASE_PRIVATE_KEY and FIREBASE_CLIENT_EMAIL are required"
        )
    try:
        provider = FirebaseIdentityProvider.from_settings(settings)
    except (ValueError, OSError) as e:
        logger.exception("Failed to initialize Firebase Admin SDK")
        return NotConfigured(f"Invalid Firebase credentials: {e}")
    return Configured(provider)
