"""Shared test fixtures for the NutriPlan test suite."""

import os

# Set testing environment before any settings are loaded
os.environ["TESTING"] = "1"
os.environ["ENVIRONMENT"] = "testing"

from collections.abc import AsyncIterator  # noqa: E402

from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
import pytest  # noqa: E402

from nutriplan.auth.identity_provider import Configured  # noqa: E402
from nutriplan.auth.passwords import hash_password  # noqa: E402
from nutriplan.auth.reset_tokens import InMemoryPasswordResetTokenStore  # noqa: E402
from nutriplan.auth.tokens import LocalTokenIssuer  # noqa: E402
from nutriplan.core.config import Settings  # noqa: E402
from nutriplan.core.container import ServiceContainer, build_container  # noqa: E402
from nutriplan.core.exceptions import (  # noqa: E402
    IdentityProviderUnreachableError,
    InvalidCredentialError,
)
from nutriplan.main import create_app  # noqa: E402
from nutriplan.models.auth import ExternalIdentity, UserRole  # noqa: E402
from nutriplan.models.user import User  # noqa: E402
from nutriplan.ports.auth_ports import IIdentityProvider  # noqa: E402
from nutriplan.services.notifications.email import LoggingTransport  # noqa: E402
from nutriplan.services.notifications.queue import InMemoryDeliveryQueue  # noqa: E402
from nutriplan.storage.memory_store import InMemoryDocumentStore  # noqa: E402

TEST_PASSWORD = "Abc123!"
TEST_JWT_SECRET = "test-jwt-secret"


class FakeIdentityProvider(IIdentityProvider):
    """Identity provider double keyed by raw token strings."""

    def __init__(self) -> None:
        self.identities: dict[str, ExternalIdentity] = {}
        self.roles: dict[str, UserRole] = {}
        self.unreachable = False
        self.role_lookups: list[str] = []

    def add_token(
        self,
        token: str,
        subject_id: str,
        email: str | None = None,
        role: UserRole | None = None,
        display_name: str | None = None,
    ) -> None:
        self.identities[token] = ExternalIdentity(
            subject_id=subject_id,
            email=email,
            email_verified=True,
            display_name=display_name,
            role=role,
        )

    async def verify_token(self, token: str) -> ExternalIdentity:
        if self.unreachable:
            raise IdentityProviderUnreachableError("connection refused")
        identity = self.identities.get(token)
        if identity is None:
            raise InvalidCredentialError()
        return identity

    async def get_role(self, subject_id: str) -> UserRole | None:
        self.role_lookups.append(subject_id)
        if self.unreachable:
            raise IdentityProviderUnreachableError("connection refused")
        return self.roles.get(subject_id)

    async def set_role(self, subject_id: str, role: UserRole) -> None:
        self.roles[subject_id] = role

    async def user_exists_by_email(self, email: str) -> bool:
        return any(i.email == email for i in self.identities.values())

    async def delete_user(self, subject_id: str) -> None:
        self.identities = {
            token: identity
            for token, identity in self.identities.items()
            if identity.subject_id != subject_id
        }


@pytest.fixture
def settings() -> Settings:
    """Testing settings with cheap hashing and no background worker."""
    return Settings(
        environment="testing",
        testing=True,
        jwt_secret=TEST_JWT_SECRET,
        bcrypt_rounds=4,
        enable_notification_worker=False,
        notification_base_delay_ms=0,
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def issuer() -> LocalTokenIssuer:
    return LocalTokenIssuer(TEST_JWT_SECRET, 3600)


@pytest.fixture
def fake_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def queue() -> InMemoryDeliveryQueue:
    return InMemoryDeliveryQueue(concurrency=4)


@pytest.fixture
def email_transport() -> LoggingTransport:
    return LoggingTransport()


@pytest.fixture
def container(
    settings: Settings,
    store: InMemoryDocumentStore,
    fake_provider: FakeIdentityProvider,
    queue: InMemoryDeliveryQueue,
    email_transport: LoggingTransport,
) -> ServiceContainer:
    return build_container(
        settings,
        store=store,
        provider_state=Configured(fake_provider),
        queue=queue,
        reset_token_store=InMemoryPasswordResetTokenStore(),
        email_transport=email_transport,
    )


@pytest.fixture
def app(settings: Settings, container: ServiceContainer) -> FastAPI:
    return create_app(settings, container)


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def seed_user(
    container: ServiceContainer,
    *,
    role: UserRole,
    email: str,
    name: str = "Test User",
    password: str = TEST_PASSWORD,
    active: bool = True,
) -> tuple[User, dict[str, str]]:
    """Store a local user and return it with ready-made auth headers."""
    user = await container.user_service.create_local(
        name=name,
        email=email,
        password_hash=hash_password(password, rounds=4),
        role=role,
        crn="CRN-3/12345" if role == UserRole.NUTRITIONIST else None,
    )
    if not active:
        user = await container.user_service.deactivate(user.id)
    token = container.issuer.issue(user.id, user.email, user.role)
    return user, {"Authorization": f"Bearer {token}"}
