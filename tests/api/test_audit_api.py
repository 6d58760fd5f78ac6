"""API tests for the audit trail on patient records and the audit reports."""

import pytest

from nutriplan.models.audit import AuditAction, AuditResource
from nutriplan.models.auth import UserRole
from nutriplan.services.audit import AUDIT_LOGS

from tests.conftest import seed_user

PATIENT = {"name": "Maria Souza", "birthDate": "1990-04-02", "gender": "female"}


@pytest.fixture
async def nutritionist(container):
    return await seed_user(container, role=UserRole.NUTRITIONIST, email="n1@example.com")


@pytest.fixture
async def admin_headers(container):
    _, headers = await seed_user(container, role=UserRole.ADMIN, email="admin@example.com")
    return headers


async def create_patient(client, headers) -> str:
    response = await client.post("/api/patients", json=PATIENT, headers=headers)
    return response.json()["data"]["id"]


class TestAuditedRoutes:
    @pytest.mark.asyncio
    async def test_patient_read_is_recorded_as_sensitive(self, client, container, nutritionist):
        user, headers = nutritionist
        patient_id = await create_patient(client, headers)

        await client.get(f"/api/patients/{patient_id}?view=full", headers=headers)

        entries = await container.audit.logs_by_user(user.id)
        read = next(e for e in entries if e.action == AuditAction.PATIENT_READ)
        assert [e.action for e in entries] == [AuditAction.PATIENT_READ, AuditAction.PATIENT_CREATE]
        assert read.resource_type == AuditResource.PATIENT
        assert read.resource_id == patient_id
        assert read.sensitive is True
        assert read.user_email == "n1@example.com"
        assert read.details == {
            "method": "GET",
            "path": f"/api/patients/{patient_id}",
            "query": {"view": "full"},
        }

    @pytest.mark.asyncio
    async def test_failed_request_is_not_recorded(self, client, container, nutritionist):
        _, headers = nutritionist

        response = await client.get("/api/patients/missing", headers=headers)

        assert response.status_code == 404
        assert await container.store.count(AUDIT_LOGS) == 0

    @pytest.mark.asyncio
    async def test_forbidden_role_is_not_recorded(self, client, container):
        _, headers = await seed_user(container, role=UserRole.PATIENT, email="p@example.com")

        response = await client.get("/api/patients", headers=headers)

        assert response.status_code == 403
        assert await container.store.count(AUDIT_LOGS) == 0

    @pytest.mark.asyncio
    async def test_consultation_and_diet_plan_routes_are_audited(
        self, client, container, nutritionist
    ):
        user, headers = nutritionist
        patient_id = await create_patient(client, headers)

        await client.get("/api/consultations", headers=headers)
        await client.get("/api/diet-plans", headers=headers)
        await client.get(f"/api/diet-plans?patientId={patient_id}", headers=headers)

        actions = [e.action for e in await container.audit.logs_by_user(user.id)]
        assert AuditAction.CONSULTATION_READ in actions
        assert actions.count(AuditAction.DIET_PLAN_READ) == 2

    @pytest.mark.asyncio
    async def test_disabled_audit_records_nothing(self, client, container, nutritionist):
        _, headers = nutritionist
        container.audit.enabled = False

        await create_patient(client, headers)

        assert await container.store.count(AUDIT_LOGS) == 0


class TestAuditReports:
    @pytest.mark.asyncio
    async def test_my_logs_hides_network_details(self, client, nutritionist):
        _, headers = nutritionist
        await create_patient(client, headers)

        response = await client.get("/api/audit/my-logs", headers=headers)

        body = response.json()["data"]
        assert response.status_code == 200
        assert body["totalLogs"] == 1
        assert body["logs"][0]["action"] == "PATIENT_CREATE"
        assert "ip_address" not in body["logs"][0]
        assert "user_agent" not in body["logs"][0]

    @pytest.mark.asyncio
    async def test_patient_can_read_own_logs(self, client, container):
        _, headers = await seed_user(container, role=UserRole.PATIENT, email="p@example.com")

        response = await client.get("/api/audit/my-logs", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"totalLogs": 0, "logs": []}

    @pytest.mark.asyncio
    async def test_activity_report_counts_actions_and_users(
        self, client, nutritionist, admin_headers
    ):
        user, headers = nutritionist
        patient_id = await create_patient(client, headers)
        await client.get(f"/api/patients/{patient_id}", headers=headers)
        await client.get(f"/api/patients/{patient_id}", headers=headers)

        response = await client.get("/api/audit/activity?days=7", headers=admin_headers)

        report = response.json()["data"]
        assert report["total_actions"] == 3
        assert report["action_stats"] == {"PATIENT_READ": 2, "PATIENT_CREATE": 1}
        assert report["sensitive_stats"] == {"PATIENT_READ": 2}
        assert report["user_stats"] == [
            {"user_id": user.id, "user_email": "n1@example.com", "count": 3}
        ]

    @pytest.mark.asyncio
    async def test_user_logs_require_admin(self, client, nutritionist, admin_headers):
        user, headers = nutritionist
        await create_patient(client, headers)

        as_nutritionist = await client.get(f"/api/audit/user/{user.id}", headers=headers)
        as_admin = await client.get(f"/api/audit/user/{user.id}", headers=admin_headers)

        assert as_nutritionist.status_code == 403
        assert as_admin.status_code == 200
        assert as_admin.json()["data"]["totalLogs"] == 1

    @pytest.mark.asyncio
    async def test_sensitive_access_and_security_metrics(
        self, client, nutritionist, admin_headers
    ):
        _, headers = nutritionist
        patient_id = await create_patient(client, headers)
        await client.get(f"/api/patients/{patient_id}", headers=headers)

        sensitive = await client.get("/api/audit/sensitive-access", headers=admin_headers)
        metrics = await client.get("/api/audit/security-metrics", headers=admin_headers)

        assert sensitive.json()["data"]["totalAccess"] == 1
        assert sensitive.json()["data"]["accesses"][0]["resource_id"] == patient_id
        data = metrics.json()["data"]
        assert data["total_actions"] == 2
        assert data["sensitive_data_access"] == 1
        assert data["unique_users_accessing"] == 1
        # One sensitive action in two is above the medium threshold
        assert data["risk_score"] == "MEDIUM"

    @pytest.mark.asyncio
    async def test_patient_logs_are_scoped_to_owner(self, client, container, nutritionist):
        _, headers = nutritionist
        _, other = await seed_user(container, role=UserRole.NUTRITIONIST, email="n2@example.com")
        patient_id = await create_patient(client, headers)
        await client.put(f"/api/patients/{patient_id}", json={"notes": "x"}, headers=headers)

        own = await client.get(f"/api/audit/patient/{patient_id}", headers=headers)
        foreign = await client.get(f"/api/audit/patient/{patient_id}", headers=other)

        assert [log["action"] for log in own.json()["data"]["logs"]] == ["PATIENT_UPDATE"]
        assert foreign.status_code == 404
