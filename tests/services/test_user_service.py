"""Tests for user creation and email uniqueness."""

import asyncio

import pytest

from nutriplan.core.exceptions import ConflictError, StorageError
from nutriplan.models.auth import UserRole
from nutriplan.services.user_service import USER_EMAILS, USERS, UserService
from nutriplan.storage.memory_store import InMemoryDocumentStore


class FailingUserWrites(InMemoryDocumentStore):
    async def create(self, collection, data, document_id=None):
        if collection == USERS:
            raise StorageError("write rejected", collection=collection)
        return await super().create(collection, data, document_id)


@pytest.fixture
def users(store) -> UserService:
    return UserService(store)


class TestEmailUniqueness:
    @pytest.mark.asyncio
    async def test_email_is_lowercased_and_reserved(self, users, store):
        user = await users.create_local(
            name="Ana", email="Ana@Example.com", password_hash="x", role=UserRole.PATIENT
        )

        assert user.email == "ana@example.com"
        assert (await store.get(USER_EMAILS, "ana@example.com"))["user_id"] == user.id

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts_across_sources(self, users):
        await users.create_local(
            name="Ana", email="ana@example.com", password_hash="x", role=UserRole.PATIENT
        )

        with pytest.raises(ConflictError, match="Email already registered"):
            await users.create_federated(
                name="Ana", email="ANA@example.com", external_subject_id="fb-1"
            )

    @pytest.mark.asyncio
    async def test_concurrent_registrations_create_one_user(self, users, store):
        results = await asyncio.gather(
            *(
                users.create_local(
                    name=f"Ana {i}",
                    email="ana@example.com",
                    password_hash="x",
                    role=UserRole.PATIENT,
                )
                for i in range(5)
            ),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 4
        assert await store.count(USERS, {"email": "ana@example.com"}) == 1

    @pytest.mark.asyncio
    async def test_failed_insert_releases_reservation(self):
        store = FailingUserWrites()
        users = UserService(store)

        with pytest.raises(StorageError):
            await users.create_local(
                name="Ana", email="ana@example.com", password_hash="x", role=UserRole.PATIENT
            )

        assert await store.get(USER_EMAILS, "ana@example.com") is None
