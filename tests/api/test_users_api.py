"""API tests for user administration, health and response headers."""

import pytest

from nutriplan.models.auth import UserRole

from tests.conftest import seed_user


@pytest.fixture
async def admin_headers(container):
    _, headers = await seed_user(container, role=UserRole.ADMIN, email="admin@example.com")
    return headers


class TestUserAdministration:
    @pytest.mark.asyncio
    async def test_list_filtered_by_role(self, client, container, admin_headers):
        await seed_user(container, role=UserRole.PATIENT, email="p1@example.com")
        await seed_user(container, role=UserRole.PATIENT, email="p2@example.com")

        response = await client.get("/api/users?role=patient&limit=1", headers=admin_headers)

        body = response.json()
        assert len(body["data"]["users"]) == 1
        assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}

    @pytest.mark.asyncio
    async def test_patient_cannot_list_users(self, client, container):
        _, headers = await seed_user(container, role=UserRole.PATIENT, email="p@example.com")

        response = await client.get("/api/users", headers=headers)

        assert response.status_code == 403
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_role_change_mirrors_to_provider(self, client, container, fake_provider, admin_headers):
        user = await container.user_service.create_federated(
            name="Fed", email="fed@example.com", external_subject_id="fb-1"
        )

        response = await client.patch(
            f"/api/users/{user.id}/role", json={"role": "nutritionist"}, headers=admin_headers
        )

        assert response.json()["data"]["user"]["role"] == "nutritionist"
        assert fake_provider.roles["fb-1"] == UserRole.NUTRITIONIST

    @pytest.mark.asyncio
    async def test_deactivate_and_activate(self, client, container, admin_headers):
        user, headers = await seed_user(container, role=UserRole.PATIENT, email="p@example.com")

        await client.patch(f"/api/users/{user.id}/deactivate", headers=admin_headers)
        blocked = await client.get("/api/auth/me", headers=headers)
        await client.patch(f"/api/users/{user.id}/activate", headers=admin_headers)
        allowed = await client.get("/api/auth/me", headers=headers)

        assert blocked.status_code == 403
        assert allowed.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_user(self, client, admin_headers):
        response = await client.get("/api/users/nope", headers=admin_headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_update_own_profile(self, client, container):
        _, headers = await seed_user(container, role=UserRole.PATIENT, email="p@example.com")

        response = await client.put("/api/users/me", json={"name": "Renamed"}, headers=headers)

        assert response.json()["data"]["user"]["name"] == "Renamed"


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["firebaseConfigured"] is True

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.json()["success"] is True

    @pytest.mark.asyncio
    async def test_security_headers(self, client):
        response = await client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" not in response.headers

    @pytest.mark.asyncio
    async def test_unknown_route_uses_envelope(self, client):
        response = await client.get("/api/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Not Found"}
