"""NutriPlan - Authentication Models

Data models for authentication and authorization.
"""

from enum import Enum

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """User roles for access control."""

    PATIENT = "patient"
    NUTRITIONIST = "nutritionist"
    ADMIN = "admin"
    STUDENT = "student"


class CredentialSource(str, Enum):
    """Which verification strategy produced a principal."""

    LOCAL = "local"
    IDENTITY_PROVIDER = "identity_provider"


class Principal(BaseModel):
    """Request-scoped identity derived from a verified credential.

    ``role`` is None when the credential carried no application role, which
    happens for identity provider tokens without a ``role`` custom claim.
    """

    subject_id: str = Field(..., description="User id or external subject id")
    email: str | None = Field(None, description="User email address")
    display_name: str | None = Field(None, description="Display name, if known")
    role: UserRole | None = Field(None, description="Application role")
    email_verified: bool = Field(False, description="Email verification status")
    source: CredentialSource = Field(CredentialSource.LOCAL)

    def with_role(self, role: UserRole) -> "Principal":
        return self.model_copy(update={"role": role})


class SessionClaims(BaseModel):
    """Decoded claims of a locally issued session token."""

    sub: str
    email: str
    role: UserRole
    iat: int
    exp: int


class ExternalIdentity(BaseModel):
    """Identity asserted by the external identity provider."""

    subject_id: str
    email: str | None = None
    email_verified: bool = False
    display_name: str | None = None
    role: UserRole | None = None
