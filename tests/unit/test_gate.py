"""Tests for the authorization gate."""

import pytest

from nutriplan.auth.gate import ADMIN_ROLES, NUTRITIONIST_ROLES, PATIENT_ROLES, AuthorizationGate
from nutriplan.auth.identity_provider import Configured, NotConfigured
from nutriplan.core.exceptions import InsufficientRoleError
from nutriplan.models.auth import CredentialSource, Principal, UserRole


def principal(role: UserRole | None = None) -> Principal:
    return Principal(
        subject_id="ext-1",
        email="ana@example.com",
        role=role,
        source=CredentialSource.IDENTITY_PROVIDER if role is None else CredentialSource.LOCAL,
    )


class TestRoleSets:
    def test_role_hierarchy(self):
        assert ADMIN_ROLES == {UserRole.ADMIN}
        assert NUTRITIONIST_ROLES == {UserRole.NUTRITIONIST, UserRole.ADMIN}
        assert UserRole.STUDENT not in PATIENT_ROLES


class TestAuthorizationGate:
    """Embedded roles are trusted; missing roles are looked up and fail closed."""

    @pytest.mark.asyncio
    async def test_allowed_role_passes_without_lookup(self, fake_provider):
        gate = AuthorizationGate(Configured(fake_provider))

        result = await gate.authorize(principal(UserRole.ADMIN), ADMIN_ROLES)

        assert result.role == UserRole.ADMIN
        assert fake_provider.role_lookups == []

    @pytest.mark.asyncio
    async def test_disallowed_role_is_rejected(self, fake_provider):
        gate = AuthorizationGate(Configured(fake_provider))

        with pytest.raises(InsufficientRoleError):
            await gate.authorize(principal(UserRole.PATIENT), ADMIN_ROLES)

    @pytest.mark.asyncio
    async def test_missing_role_is_looked_up_and_attached(self, fake_provider):
        fake_provider.roles["ext-1"] = UserRole.NUTRITIONIST
        gate = AuthorizationGate(Configured(fake_provider))

        result = await gate.authorize(principal(), NUTRITIONIST_ROLES)

        assert result.role == UserRole.NUTRITIONIST
        assert fake_provider.role_lookups == ["ext-1"]

    @pytest.mark.asyncio
    async def test_looked_up_role_not_allowed(self, fake_provider):
        fake_provider.roles["ext-1"] = UserRole.PATIENT
        gate = AuthorizationGate(Configured(fake_provider))

        with pytest.raises(InsufficientRoleError):
            await gate.authorize(principal(), ADMIN_ROLES)

    @pytest.mark.asyncio
    async def test_no_role_claim_fails_closed(self, fake_provider):
        gate = AuthorizationGate(Configured(fake_provider))

        with pytest.raises(InsufficientRoleError):
            await gate.authorize(principal(), PATIENT_ROLES)

    @pytest.mark.asyncio
    async def test_lookup_error_fails_closed(self, fake_provider):
        fake_provider.roles["ext-1"] = UserRole.ADMIN
        fake_provider.unreachable = True
        gate = AuthorizationGate(Configured(fake_provider))

        with pytest.raises(InsufficientRoleError):
            await gate.authorize(principal(), ADMIN_ROLES)

    @pytest.mark.asyncio
    async def test_unconfigured_provider_fails_closed(self):
        gate = AuthorizationGate(NotConfigured("off"))

        with pytest.raises(InsufficientRoleError):
            await gate.authorize(principal(), PATIENT_ROLES)
