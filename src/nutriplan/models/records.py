"""Ownership-scoped practice records: patients, assessments, diet plans,
consultations and patient invites.

Each ``*Create`` model validates the client payload; the persisted shape adds
``id``, owner ids and timestamps.
"""

from datetime import date, datetime
from enum import Enum
import re
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from nutriplan.models.common import UtcDatetime, to_document

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class MealType(str, Enum):
    BREAKFAST = "breakfast"
    MORNING_SNACK = "morning_snack"
    LUNCH = "lunch"
    AFTERNOON_SNACK = "afternoon_snack"
    DINNER = "dinner"
    EVENING_SNACK = "evening_snack"


class ActivityIntensity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class ConsultationStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class InviteStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


# ==============================================================================
# Patients
# ==============================================================================


class Address(BaseModel):
    street: str = Field(..., min_length=1)
    number: str = Field(..., min_length=1)
    neighborhood: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=2, max_length=2)
    zip_code: str = Field(..., alias="zipCode", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class PatientCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr | None = None
    birth_date: date = Field(..., alias="birthDate")
    gender: Gender
    address: Address | None = None
    medical_history: str | None = Field(None, alias="medicalHistory", max_length=5000)
    allergies: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    nutritional_goals: list[str] = Field(default_factory=list, alias="nutritionalGoals")
    notes: str | None = Field(None, max_length=2000)
    user_id: str | None = Field(None, alias="userId")

    @field_validator("birth_date")
    @classmethod
    def birth_date_in_past(cls, value: date) -> date:
        if value >= date.today():
            msg = "Birth date must be in the past"
            raise ValueError(msg)
        return value


class PatientUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(None, min_length=2, max_length=100)
    email: EmailStr | None = None
    birth_date: date | None = Field(None, alias="birthDate")
    gender: Gender | None = None
    address: Address | None = None
    medical_history: str | None = Field(None, alias="medicalHistory", max_length=5000)
    allergies: list[str] | None = None
    medications: list[str] | None = None
    nutritional_goals: list[str] | None = Field(None, alias="nutritionalGoals")
    notes: str | None = Field(None, max_length=2000)
    user_id: str | None = Field(None, alias="userId")


# ==============================================================================
# Nutritional assessments
# ==============================================================================


class SkinfoldMeasurement(BaseModel):
    location: str
    measurement: float = Field(..., ge=0)


class AnthropometricData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    height: float = Field(..., ge=50, le=250, description="cm")
    weight: float = Field(..., ge=20, le=300, description="kg")
    bmi: float | None = Field(None, ge=10, le=50)
    waist_circumference: float | None = Field(None, alias="waistCircumference", ge=40, le=200)
    hip_circumference: float | None = Field(None, alias="hipCircumference", ge=40, le=200)
    body_fat_percentage: float | None = Field(None, alias="bodyFatPercentage", ge=0, le=100)
    muscle_mass: float | None = Field(None, alias="muscleMass", ge=0, le=100)
    skinfold_measurements: list[SkinfoldMeasurement] = Field(
        default_factory=list, alias="skinfoldMeasurements"
    )

    @model_validator(mode="after")
    def compute_bmi(self) -> "AnthropometricData":
        if self.bmi is None:
            meters = self.height / 100
            self.bmi = round(self.weight / (meters * meters), 1)
        return self


class FoodItem(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)
    calories: float | None = Field(None, ge=0)
    proteins: float | None = Field(None, ge=0)
    carbohydrates: float | None = Field(None, ge=0)
    fats: float | None = Field(None, ge=0)
    fiber: float | None = Field(None, ge=0)


class Activity(BaseModel):
    name: str
    duration: int = Field(..., ge=0, description="minutes")
    intensity: ActivityIntensity
    frequency: int = Field(..., ge=0, le=7)


class PhysicalActivity(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    weekly_frequency: int = Field(..., alias="weeklyFrequency", ge=0, le=7)
    activities: list[Activity] = Field(default_factory=list)
    sedentary_time: float = Field(..., alias="sedentaryTime", ge=0, le=24)


class AssessmentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    patient_id: str = Field(..., alias="patientId")
    anthropometric_data: AnthropometricData = Field(..., alias="anthropometricData")
    physical_activity: PhysicalActivity | None = Field(None, alias="physicalActivity")
    observations: str | None = Field(None, max_length=5000)


class AssessmentUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    anthropometric_data: AnthropometricData | None = Field(None, alias="anthropometricData")
    physical_activity: PhysicalActivity | None = Field(None, alias="physicalActivity")
    observations: str | None = Field(None, max_length=5000)


# ==============================================================================
# Diet plans
# ==============================================================================


class PlannedMeal(BaseModel):
    type: MealType
    time: str
    foods: list[FoodItem] = Field(default_factory=list)
    instructions: str | None = Field(None, max_length=1000)

    @field_validator("time")
    @classmethod
    def time_is_hh_mm(cls, value: str) -> str:
        if not _TIME_PATTERN.match(value):
            msg = "Time must be in HH:MM format"
            raise ValueError(msg)
        return value


class DietPlanCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    patient_id: str = Field(..., alias="patientId")
    title: str = Field(..., min_length=3, max_length=200)
    description: str | None = Field(None, max_length=1000)
    start_date: date = Field(..., alias="startDate")
    end_date: date | None = Field(None, alias="endDate")
    target_calories: float = Field(..., alias="targetCalories", ge=0)
    target_proteins: float = Field(..., alias="targetProteins", ge=0)
    target_carbohydrates: float = Field(..., alias="targetCarbohydrates", ge=0)
    target_fats: float = Field(..., alias="targetFats", ge=0)
    meals: list[PlannedMeal] = Field(default_factory=list)

    @model_validator(mode="after")
    def end_after_start(self) -> "DietPlanCreate":
        if self.end_date is not None and self.end_date <= self.start_date:
            msg = "End date must be after start date"
            raise ValueError(msg)
        return self


class DietPlanUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = Field(None, min_length=3, max_length=200)
    description: str | None = Field(None, max_length=1000)
    end_date: date | None = Field(None, alias="endDate")
    target_calories: float | None = Field(None, alias="targetCalories", ge=0)
    target_proteins: float | None = Field(None, alias="targetProteins", ge=0)
    target_carbohydrates: float | None = Field(None, alias="targetCarbohydrates", ge=0)
    target_fats: float | None = Field(None, alias="targetFats", ge=0)
    meals: list[PlannedMeal] | None = None


# ==============================================================================
# Consultations
# ==============================================================================


class BloodPressure(BaseModel):
    systolic: int = Field(..., ge=50, le=250)
    diastolic: int = Field(..., ge=30, le=150)


class ConsultationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    patient_id: str = Field(..., alias="patientId")
    scheduled_date: UtcDatetime = Field(..., alias="scheduledDate")
    duration: int = Field(60, ge=15, le=240, description="minutes")
    notes: str | None = Field(None, max_length=2000)


class ConsultationUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scheduled_date: UtcDatetime | None = Field(None, alias="scheduledDate")
    duration: int | None = Field(None, ge=15, le=240)
    status: ConsultationStatus | None = None
    weight: float | None = Field(None, ge=20, le=300)
    blood_pressure: BloodPressure | None = Field(None, alias="bloodPressure")
    observations: str | None = Field(None, max_length=5000)
    recommendations: str | None = Field(None, max_length=5000)
    notes: str | None = Field(None, max_length=2000)


class CancelConsultationRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


# ==============================================================================
# Patient invites
# ==============================================================================


class InviteCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    patient_email: EmailStr | None = Field(None, alias="patientEmail")
    patient_name: str | None = Field(None, alias="patientName", min_length=2, max_length=100)
    message: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def email_or_name(self) -> "InviteCreate":
        if not self.patient_email and not self.patient_name:
            msg = "Patient email or name is required"
            raise ValueError(msg)
        return self


def dump_for_store(model: BaseModel, *, partial: bool = False) -> dict[str, Any]:
    """Serialize a request model for the document store.

    With ``partial`` only the fields the client sent are kept, for updates.
    """
    return to_document(model.model_dump(exclude_unset=partial))
