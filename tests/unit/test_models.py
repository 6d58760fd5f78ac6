"""Tests for request model validation."""

from datetime import UTC, date, datetime, timedelta

from pydantic import ValidationError
import pytest

from nutriplan.models.auth import UserRole
from nutriplan.models.common import PaginationInfo, to_document
from nutriplan.models.notification import CreateNotificationRequest, NotificationPriority
from nutriplan.models.records import (
    AnthropometricData,
    ConsultationCreate,
    DietPlanCreate,
    InviteCreate,
    PatientCreate,
)
from nutriplan.models.user import RegisterRequest, User


class TestRegisterRequest:
    def test_patient_registration(self):
        request = RegisterRequest(name="Ana", email="Ana@Example.com", password="Abc123!")

        assert request.role == UserRole.PATIENT

    def test_short_password_rejected(self):
        with pytest.raises(ValidationError, match="Password must be between"):
            RegisterRequest(name="Ana", email="ana@example.com", password="12345")

    def test_admin_cannot_self_register(self):
        with pytest.raises(ValidationError, match="cannot be self-registered"):
            RegisterRequest(name="Ana", email="ana@example.com", password="Abc123!", role="admin")

    @pytest.mark.parametrize("crn", [None, "12345", "CRN-12/1234", "CRN-3/123"])
    def test_nutritionist_needs_valid_crn(self, crn):
        with pytest.raises(ValidationError):
            RegisterRequest(
                name="Ana",
                email="ana@example.com",
                password="Abc123!",
                role="nutritionist",
                crn=crn,
            )

    def test_nutritionist_with_crn(self):
        request = RegisterRequest(
            name="Ana", email="ana@example.com", password="Abc123!", role="nutritionist", crn="CRN-3/12345"
        )

        assert request.crn == "CRN-3/12345"


class TestUser:
    def test_passwordless_user_must_be_linked(self):
        now = datetime.now(UTC)
        with pytest.raises(ValidationError):
            User(id="1", name="Ana", email="a@b.com", created_at=now, updated_at=now)

    def test_public_projection_hides_hash(self):
        now = datetime.now(UTC)
        user = User(id="1", name="Ana", email="a@b.com", password_hash="x", created_at=now, updated_at=now)

        assert "password_hash" not in user.to_public().model_dump()


class TestRecordModels:
    def test_bmi_is_computed(self):
        data = AnthropometricData(height=180, weight=81)

        assert data.bmi == 25.0

    def test_out_of_range_height(self):
        with pytest.raises(ValidationError):
            AnthropometricData(height=300, weight=80)

    def test_birth_date_in_future_rejected(self):
        with pytest.raises(ValidationError, match="past"):
            PatientCreate(name="Ana", birthDate=date.today() + timedelta(days=1), gender="female")

    def test_diet_plan_end_after_start(self):
        with pytest.raises(ValidationError, match="End date"):
            DietPlanCreate(
                patientId="p1",
                title="Plan",
                startDate=date(2024, 2, 1),
                endDate=date(2024, 1, 1),
                targetCalories=2000,
                targetProteins=100,
                targetCarbohydrates=250,
                targetFats=70,
            )

    def test_consultation_duration_bounds(self):
        with pytest.raises(ValidationError):
            ConsultationCreate(patientId="p1", scheduledDate=datetime.now(UTC), duration=10)

    def test_naive_consultation_date_is_utc(self):
        consultation = ConsultationCreate(patientId="p1", scheduledDate="2030-01-01T10:00:00")

        assert consultation.scheduled_date.tzinfo is UTC

    def test_invite_needs_email_or_name(self):
        with pytest.raises(ValidationError, match="email or name"):
            InviteCreate()


class TestCommon:
    def test_pagination_pages_round_up(self):
        assert PaginationInfo.build(page=1, limit=20, total=41).pages == 3
        assert PaginationInfo.build(page=1, limit=20, total=0).pages == 0

    def test_to_document_converts_enums_and_dates(self):
        document = to_document({"role": UserRole.ADMIN, "born": date(2000, 1, 2), "tags": [UserRole.PATIENT]})

        assert document == {"role": "admin", "born": "2000-01-02", "tags": ["patient"]}

    def test_notification_request_optional_fields(self):
        request = CreateNotificationRequest(userId="u1", type="welcome", title="Hi", message="Hello")

        assert request.channel is None
        assert request.priority is None
        assert NotificationPriority.URGENT.queue_priority == 1
        assert NotificationPriority.LOW.queue_priority == 4
