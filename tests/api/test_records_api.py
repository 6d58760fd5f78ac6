"""API tests for practice records and patient invites."""

import pytest

from nutriplan.models.auth import UserRole

from tests.conftest import seed_user

PATIENT = {"name": "Maria Souza", "birthDate": "1990-04-02", "gender": "female"}


@pytest.fixture
async def doctors(container):
    first = await seed_user(container, role=UserRole.NUTRITIONIST, email="n1@example.com")
    second = await seed_user(container, role=UserRole.NUTRITIONIST, email="n2@example.com")
    return first[1], second[1]


class TestPatients:
    @pytest.mark.asyncio
    async def test_crud(self, client, doctors):
        headers, _ = doctors

        created = await client.post("/api/patients", json=PATIENT, headers=headers)
        patient_id = created.json()["data"]["id"]
        updated = await client.put(
            f"/api/patients/{patient_id}", json={"notes": "Vegetarian"}, headers=headers
        )
        listing = await client.get("/api/patients?search=maria", headers=headers)
        deleted = await client.delete(f"/api/patients/{patient_id}", headers=headers)
        missing = await client.get(f"/api/patients/{patient_id}", headers=headers)

        assert created.status_code == 201
        assert created.json()["data"]["birth_date"] == "1990-04-02"
        assert updated.json()["data"]["notes"] == "Vegetarian"
        assert listing.json()["pagination"]["total"] == 1
        assert deleted.status_code == 200
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_other_nutritionist_gets_404(self, client, doctors):
        owner, other = doctors
        created = await client.post("/api/patients", json=PATIENT, headers=owner)
        patient_id = created.json()["data"]["id"]

        read = await client.get(f"/api/patients/{patient_id}", headers=other)
        write = await client.put(f"/api/patients/{patient_id}", json={"notes": "x"}, headers=other)
        listing = await client.get("/api/patients", headers=other)

        assert read.status_code == 404
        assert write.status_code == 404
        assert listing.json()["data"] == []

    @pytest.mark.asyncio
    async def test_patient_role_is_forbidden(self, client, container):
        _, headers = await seed_user(container, role=UserRole.PATIENT, email="p@example.com")

        response = await client.get("/api/patients", headers=headers)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_future_birth_date(self, client, doctors):
        headers, _ = doctors

        response = await client.post(
            "/api/patients", json={**PATIENT, "birthDate": "2999-01-01"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "birthDate"


class TestAssessmentsAndPlans:
    @pytest.mark.asyncio
    async def test_assessment_computes_bmi(self, client, doctors):
        headers, _ = doctors
        patient = (await client.post("/api/patients", json=PATIENT, headers=headers)).json()["data"]

        response = await client.post(
            "/api/assessments",
            json={"patientId": patient["id"], "anthropometricData": {"height": 160, "weight": 64}},
            headers=headers,
        )

        assert response.status_code == 201
        assert response.json()["data"]["anthropometric_data"]["bmi"] == 25.0

    @pytest.mark.asyncio
    async def test_plan_for_foreign_patient(self, client, doctors):
        owner, other = doctors
        patient = (await client.post("/api/patients", json=PATIENT, headers=owner)).json()["data"]

        response = await client.post(
            "/api/diet-plans",
            json={
                "patientId": patient["id"],
                "title": "Plan",
                "startDate": "2030-01-01",
                "targetCalories": 2000,
                "targetProteins": 100,
                "targetCarbohydrates": 250,
                "targetFats": 70,
            },
            headers=other,
        )

        assert response.status_code == 404


class TestConsultations:
    @pytest.mark.asyncio
    async def test_schedule_and_cancel(self, client, doctors):
        headers, _ = doctors
        patient = (await client.post("/api/patients", json=PATIENT, headers=headers)).json()["data"]

        created = await client.post(
            "/api/consultations",
            json={"patientId": patient["id"], "scheduledDate": "2030-06-01T10:00:00Z"},
            headers=headers,
        )
        consultation_id = created.json()["data"]["id"]
        cancelled = await client.patch(
            f"/api/consultations/{consultation_id}/cancel",
            json={"reason": "Travelling"},
            headers=headers,
        )
        again = await client.patch(f"/api/consultations/{consultation_id}/cancel", headers=headers)
        scheduled = await client.get("/api/consultations?status=scheduled", headers=headers)

        assert created.status_code == 201
        assert created.json()["data"]["duration"] == 60
        assert cancelled.json()["data"]["status"] == "cancelled"
        assert again.status_code == 400
        assert scheduled.json()["pagination"]["total"] == 0


class TestInvites:
    @pytest.mark.asyncio
    async def test_invite_flow(self, client, container, doctors):
        headers, _ = doctors
        _, patient_headers = await seed_user(container, role=UserRole.PATIENT, email="p@example.com")

        created = await client.post(
            "/api/invites", json={"patientEmail": "p@example.com"}, headers=headers
        )
        duplicate = await client.post(
            "/api/invites", json={"patientEmail": "p@example.com"}, headers=headers
        )
        token = created.json()["data"]["token"]
        public = await client.get(f"/api/invites/token/{token}")
        accepted = await client.post(f"/api/invites/token/{token}/accept", headers=patient_headers)
        pending = await client.get("/api/invites?status=PENDING", headers=headers)

        assert created.status_code == 201
        assert duplicate.status_code == 409
        assert public.status_code == 200
        assert "token" not in public.json()["data"]
        assert accepted.json()["data"]["status"] == "ACCEPTED"
        assert pending.json()["data"] == []

    @pytest.mark.asyncio
    async def test_unknown_token(self, client):
        response = await client.get("/api/invites/token/nope")

        assert response.status_code == 404
