"""API tests for Firebase and hybrid authentication."""

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
import pytest

from nutriplan.auth.identity_provider import NotConfigured
from nutriplan.auth.reset_tokens import InMemoryPasswordResetTokenStore
from nutriplan.core.container import build_container
from nutriplan.main import create_app
from nutriplan.models.auth import UserRole

from tests.conftest import seed_user


@pytest.fixture
def unconfigured_app(settings, store, queue, email_transport) -> FastAPI:
    container = build_container(
        settings,
        store=store,
        provider_state=NotConfigured("no service account"),
        queue=queue,
        reset_token_store=InMemoryPasswordResetTokenStore(),
        email_transport=email_transport,
    )
    return create_app(settings, container)


@pytest.fixture
async def unconfigured_client(unconfigured_app):
    transport = ASGITransport(app=unconfigured_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestFirebaseLogin:
    @pytest.mark.asyncio
    async def test_first_login_creates_patient(self, client, fake_provider):
        fake_provider.add_token("fb-token", "fb-1", email="new@example.com", display_name="New User")

        response = await client.post(
            "/api/firebase/login", headers={"Authorization": "Bearer fb-token"}
        )
        profile = await client.get(
            "/api/firebase/profile", headers={"Authorization": "Bearer fb-token"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["user"]["role"] == "patient"
        assert response.json()["data"]["user"]["name"] == "New User"
        assert profile.json()["data"]["user"]["email"] == "new@example.com"

    @pytest.mark.asyncio
    async def test_session_token_is_not_accepted(self, client, container):
        _, headers = await seed_user(container, role=UserRole.PATIENT, email="p@example.com")

        response = await client.post("/api/firebase/login", headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_provider_unreachable(self, client, fake_provider):
        fake_provider.unreachable = True

        response = await client.post(
            "/api/firebase/login", headers={"Authorization": "Bearer fb-token"}
        )

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_not_configured(self, unconfigured_client):
        response = await unconfigured_client.post(
            "/api/firebase/login", headers={"Authorization": "Bearer fb-token"}
        )

        assert response.status_code == 503
        assert response.json()["message"] == "Firebase not configured"


class TestHybrid:
    @pytest.mark.asyncio
    async def test_status(self, client, unconfigured_client):
        configured = await client.get("/api/hybrid/status")
        unconfigured = await unconfigured_client.get("/api/hybrid/status")

        assert configured.json()["data"] == {"firebaseConfigured": True, "localAuthEnabled": True}
        assert unconfigured.json()["data"]["firebaseConfigured"] is False

    @pytest.mark.asyncio
    async def test_register_login_refresh(self, client, fake_provider):
        fake_provider.add_token("fb-token", "fb-7", email="hy@example.com")

        registered = await client.post(
            "/api/hybrid/register",
            json={
                "firebaseToken": "fb-token",
                "userData": {"name": "Hy Brid", "role": "nutritionist", "crn": "CRN-3/12345"},
            },
        )
        login = await client.post("/api/hybrid/login", json={"firebaseToken": "fb-token"})
        refresh = await client.post("/api/hybrid/refresh", json={"firebaseToken": "fb-token"})
        session = login.json()["data"]["token"]
        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {session}"})

        assert registered.status_code == 201
        assert registered.json()["data"]["user"]["role"] == "nutritionist"
        assert login.status_code == 200
        assert refresh.status_code == 200
        assert me.json()["data"]["user"]["email"] == "hy@example.com"

    @pytest.mark.asyncio
    async def test_login_unregistered(self, client, fake_provider):
        fake_provider.add_token("fb-token", "fb-8", email="ghost@example.com")

        response = await client.post("/api/hybrid/login", json={"firebaseToken": "fb-token"})

        assert response.status_code == 404
        assert response.json()["message"] == "User not registered"

    @pytest.mark.asyncio
    async def test_invalid_provider_token(self, client):
        response = await client.post("/api/hybrid/login", json={"firebaseToken": "bogus"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_not_configured(self, unconfigured_client):
        response = await unconfigured_client.post(
            "/api/hybrid/login", json={"firebaseToken": "fb-token"}
        )

        assert response.status_code == 503
