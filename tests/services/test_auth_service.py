"""Tests for local, federated and hybrid authentication flows."""

import pytest

from nutriplan.core.exceptions import (
    AccountDisabledError,
    ConflictError,
    InvalidCredentialError,
    NotFoundError,
    ValidationError,
)
from nutriplan.models.auth import CredentialSource, ExternalIdentity, Principal, UserRole
from nutriplan.models.notification import NotificationType
from nutriplan.models.user import HybridUserData

from tests.conftest import TEST_PASSWORD, seed_user


@pytest.fixture
def auth(container):
    return container.auth_service


def provider_principal(subject_id: str, email: str | None = None) -> Principal:
    return Principal(
        subject_id=subject_id,
        email=email,
        email_verified=True,
        source=CredentialSource.IDENTITY_PROVIDER,
    )


class TestLocalAccounts:
    @pytest.mark.asyncio
    async def test_register_then_login(self, auth, container):
        user, token = await auth.register(name="Ana", email="Ana@Example.com", password=TEST_PASSWORD)

        assert user.email == "ana@example.com"
        assert user.password_hash != TEST_PASSWORD
        assert container.issuer.verify(token).sub == user.id

        logged_in, _ = await auth.login("ana@example.com", TEST_PASSWORD)
        assert logged_in.id == user.id

    @pytest.mark.asyncio
    async def test_register_sends_welcome(self, auth, container):
        user, _ = await auth.register(name="Ana", email="ana@example.com", password=TEST_PASSWORD)

        items, _, _ = await container.dispatcher.get_user_notifications(user.id)

        assert [item.type for item in items] == [NotificationType.WELCOME]

    @pytest.mark.asyncio
    async def test_duplicate_email(self, auth):
        await auth.register(name="Ana", email="ana@example.com", password=TEST_PASSWORD)

        with pytest.raises(ConflictError):
            await auth.register(name="Ana", email="ANA@example.com", password=TEST_PASSWORD)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("email", "password"),
        [("ana@example.com", "wrong-password"), ("nobody@example.com", TEST_PASSWORD)],
    )
    async def test_bad_credentials_are_indistinguishable(self, auth, email, password):
        await auth.register(name="Ana", email="ana@example.com", password=TEST_PASSWORD)

        with pytest.raises(InvalidCredentialError, match="Invalid credentials"):
            await auth.login(email, password)

    @pytest.mark.asyncio
    async def test_inactive_user_cannot_login(self, auth, container):
        await seed_user(container, role=UserRole.PATIENT, email="off@example.com", active=False)

        with pytest.raises(AccountDisabledError):
            await auth.login("off@example.com", TEST_PASSWORD)


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_reset_flow(self, auth):
        await auth.register(name="Ana", email="ana@example.com", password=TEST_PASSWORD)

        token = await auth.forgot_password("ana@example.com")
        await auth.reset_password(token, "N3wPassword")

        await auth.login("ana@example.com", "N3wPassword")
        with pytest.raises(InvalidCredentialError):
            await auth.login("ana@example.com", TEST_PASSWORD)

    @pytest.mark.asyncio
    async def test_reset_token_is_single_use(self, auth):
        await auth.register(name="Ana", email="ana@example.com", password=TEST_PASSWORD)
        token = await auth.forgot_password("ana@example.com")
        await auth.reset_password(token, "N3wPassword")

        with pytest.raises(InvalidCredentialError):
            await auth.reset_password(token, "Another1")

    @pytest.mark.asyncio
    async def test_unknown_email(self, auth):
        with pytest.raises(NotFoundError):
            await auth.forgot_password("nobody@example.com")

    @pytest.mark.asyncio
    async def test_hidden_token_is_delivered_as_notification(self, auth, container):
        user, _ = await auth.register(name="Ana", email="ana@example.com", password=TEST_PASSWORD)
        auth.expose_reset_token = False

        assert await auth.forgot_password("ana@example.com") is None

        items, _, _ = await container.dispatcher.get_user_notifications(
            user.id, type=NotificationType.PASSWORD_RESET
        )
        assert len(items) == 1
        assert items[0].data["reset_token"]


class TestFederatedLogin:
    @pytest.mark.asyncio
    async def test_creates_patient_account(self, auth):
        user, _ = await auth.federated_login(provider_principal("fb-1", "new@example.com"))

        assert user.role == UserRole.PATIENT
        assert user.external_subject_id == "fb-1"
        assert user.password_hash is None

    @pytest.mark.asyncio
    async def test_links_existing_local_account(self, auth, container):
        local, _ = await seed_user(container, role=UserRole.NUTRITIONIST, email="doc@example.com")

        user, _ = await auth.federated_login(provider_principal("fb-2", "doc@example.com"))

        assert user.id == local.id
        assert user.external_subject_id == "fb-2"
        assert user.role == UserRole.NUTRITIONIST

    @pytest.mark.asyncio
    async def test_email_required_for_new_account(self, auth):
        with pytest.raises(ValidationError):
            await auth.federated_login(provider_principal("fb-3"))

    @pytest.mark.asyncio
    async def test_profile_of_unknown_subject(self, auth):
        with pytest.raises(NotFoundError):
            await auth.federated_profile(provider_principal("nobody"))


class TestHybrid:
    @pytest.mark.asyncio
    async def test_register_login_refresh(self, auth):
        identity = ExternalIdentity(subject_id="fb-9", email="hy@example.com", email_verified=True)

        user, _ = await auth.hybrid_register(
            identity, HybridUserData(name="Hy", role=UserRole.NUTRITIONIST, crn="CRN-3/12345")
        )
        logged_in, _ = await auth.hybrid_login(identity)
        refreshed, _ = await auth.hybrid_refresh(identity)

        assert user.role == UserRole.NUTRITIONIST
        assert logged_in.id == refreshed.id == user.id

    @pytest.mark.asyncio
    async def test_register_twice_conflicts(self, auth):
        identity = ExternalIdentity(subject_id="fb-9", email="hy@example.com")
        await auth.hybrid_register(identity, HybridUserData())

        with pytest.raises(ConflictError):
            await auth.hybrid_register(identity, HybridUserData())

    @pytest.mark.asyncio
    async def test_login_unregistered(self, auth):
        with pytest.raises(NotFoundError, match="User not registered"):
            await auth.hybrid_login(ExternalIdentity(subject_id="fb-0", email="none@example.com"))

    @pytest.mark.asyncio
    async def test_login_links_local_account_by_email(self, auth, container):
        local, _ = await seed_user(container, role=UserRole.PATIENT, email="pat@example.com")

        user, _ = await auth.hybrid_login(ExternalIdentity(subject_id="fb-5", email="pat@example.com"))

        assert user.id == local.id
        assert user.external_subject_id == "fb-5"
