"""User records and auth request/response models."""

from datetime import datetime
import re
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from nutriplan.core.config import get_settings
from nutriplan.models.auth import UserRole

CRN_PATTERN = re.compile(r"^CRN-\d/\d{4,5}$")

SELF_REGISTERABLE_ROLES = {UserRole.PATIENT, UserRole.NUTRITIONIST, UserRole.STUDENT}


def check_password_length(value: str) -> str:
    settings = get_settings()
    if not settings.min_password_length <= len(value) <= settings.max_password_length:
        msg = (
            f"Password must be between {settings.min_password_length} and "
            f"{settings.max_password_length} characters"
        )
        raise ValueError(msg)
    return value


Password = Annotated[str, AfterValidator(check_password_length)]


class User(BaseModel):
    """Persisted user record.

    ``password_hash`` is absent only for identity-provider-only accounts, which
    must then carry ``external_subject_id``.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    email: str
    password_hash: str | None = None
    role: UserRole = UserRole.PATIENT
    crn: str | None = None
    avatar: str | None = None
    external_subject_id: str | None = None
    external_verified: bool = False
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def check_credentials(self) -> "User":
        if not self.password_hash and not self.external_subject_id:
            msg = "User without a password must be linked to an identity provider"
            raise ValueError(msg)
        return self

    def to_public(self) -> "UserPublic":
        return UserPublic.model_validate(self.model_dump())


class UserPublic(BaseModel):
    """User projection returned by the API; never includes the password hash."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    email: str
    role: UserRole
    crn: str | None = None
    avatar: str | None = None
    external_verified: bool = False
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime | None = None


class RegisterRequest(BaseModel):
    """Local account registration."""

    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: Password
    role: UserRole = UserRole.PATIENT
    crn: str | None = None

    @field_validator("role")
    @classmethod
    def role_is_self_registerable(cls, value: UserRole) -> UserRole:
        if value not in SELF_REGISTERABLE_ROLES:
            msg = f"Role '{value.value}' cannot be self-registered"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def crn_required_for_nutritionists(self) -> "RegisterRequest":
        if self.role == UserRole.NUTRITIONIST:
            if not self.crn:
                msg = "CRN is required for nutritionists"
                raise ValueError(msg)
            if not CRN_PATTERN.match(self.crn):
                msg = "CRN must look like CRN-3/1234"
                raise ValueError(msg)
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=1)
    new_password: Password = Field(..., alias="newPassword")


class UpdateProfileRequest(BaseModel):
    name: str | None = Field(None, min_length=2, max_length=100)
    avatar: str | None = Field(None, max_length=500)


class RoleUpdateRequest(BaseModel):
    role: UserRole


class FederatedLoginRequest(BaseModel):
    """Optional profile hints sent with a provider token."""

    name: str | None = Field(None, min_length=2, max_length=100)
    email: EmailStr | None = None


class HybridUserData(BaseModel):
    name: str | None = Field(None, min_length=2, max_length=100)
    role: UserRole = UserRole.PATIENT
    crn: str | None = None

    @field_validator("role")
    @classmethod
    def role_is_self_registerable(cls, value: UserRole) -> UserRole:
        if value not in SELF_REGISTERABLE_ROLES:
            msg = f"Role '{value.value}' cannot be self-registered"
            raise ValueError(msg)
        return value


class HybridRegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    firebase_token: str = Field(..., alias="firebaseToken", min_length=1)
    user_data: HybridUserData = Field(default_factory=HybridUserData, alias="userData")


class HybridTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    firebase_token: str = Field(..., alias="firebaseToken", min_length=1)


def auth_payload(user: User, token: str) -> dict[str, Any]:
    """``data`` member returned by register/login style endpoints."""
    public = user.to_public()
    return {
        "user": {
            "id": public.id,
            "name": public.name,
            "email": public.email,
            "role": public.role.value,
        },
        "token": token,
    }
