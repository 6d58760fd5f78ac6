"""NutriPlan - Practice Records Services.

Patients, nutritional assessments, diet plans, consultations and patient
invites. Every record belongs to the nutritionist who created it; admins see
everything. Records outside the caller's scope are reported as not found.
"""

from datetime import timedelta
import logging
import secrets
from typing import Any
import uuid

from pydantic import BaseModel

from nutriplan.core.exceptions import ConflictError, NotFoundError, ValidationError
from nutriplan.models.auth import UserRole
from nutriplan.models.common import to_document, utc_now
from nutriplan.models.records import (
    ConsultationStatus,
    InviteStatus,
    dump_for_store,
)
from nutriplan.models.user import User
from nutriplan.ports.storage import IDocumentStore
from nutriplan.services.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

INVITE_LIFETIME = timedelta(days=7)

Document = dict[str, Any]


class OwnedRecordService:
    """CRUD over one collection, scoped by ``nutritionist_id``."""

    collection: str = ""
    resource: str = "Record"
    # Soft-deleted records carry is_active=False and are hidden
    soft_delete_field: str | None = None

    def __init__(self, store: IDocumentStore) -> None:
        self.store = store

    @staticmethod
    def is_admin(owner: User) -> bool:
        return owner.role == UserRole.ADMIN

    def scope(self, owner: User) -> Document:
        filters: Document = {}
        if not self.is_admin(owner):
            filters["nutritionist_id"] = owner.id
        if self.soft_delete_field:
            filters[self.soft_delete_field] = True
        return filters

    def in_scope(self, owner: User, document: Document) -> bool:
        return all(document.get(key) == value for key, value in self.scope(owner).items())

    async def create(self, owner: User, payload: BaseModel | Document, **extra: Any) -> Document:
        now = utc_now()
        body = dump_for_store(payload) if isinstance(payload, BaseModel) else to_document(payload)
        document = {
            **body,
            **to_document(extra),
            "id": uuid.uuid4().hex,
            "nutritionist_id": owner.id,
            "created_at": now,
            "updated_at": now,
        }
        if self.soft_delete_field:
            document.setdefault(self.soft_delete_field, True)
        await self.store.create(self.collection, document, document_id=document["id"])
        logger.info("%s %s created by %s", self.resource, document["id"], owner.id)
        return document

    async def get(self, owner: User, record_id: str) -> Document:
        document = await self.store.get(self.collection, record_id)
        if document is None or not self.in_scope(owner, document):
            raise NotFoundError(self.resource, record_id)
        return document

    async def list(
        self,
        owner: User,
        page: int,
        limit: int,
        filters: Document | None = None,
    ) -> tuple[list[Document], int]:
        query = {**self.scope(owner), **to_document(filters or {})}
        documents = await self.store.query(
            self.collection,
            query,
            order_by="created_at",
            descending=True,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return documents, await self.store.count(self.collection, query)

    async def update(
        self, owner: User, record_id: str, changes: BaseModel | Document
    ) -> Document:
        await self.get(owner, record_id)
        body = (
            dump_for_store(changes, partial=True)
            if isinstance(changes, BaseModel)
            else to_document(changes)
        )
        body.pop("id", None)
        body.pop("nutritionist_id", None)
        await self.store.update(
            self.collection, record_id, {**body, "updated_at": utc_now()}
        )
        return await self.get(owner, record_id)

    async def delete(self, owner: User, record_id: str) -> None:
        await self.get(owner, record_id)
        if self.soft_delete_field:
            await self.store.update(
                self.collection,
                record_id,
                {self.soft_delete_field: False, "updated_at": utc_now()},
            )
        else:
            await self.store.delete(self.collection, record_id)
        logger.info("%s %s deleted by %s", self.resource, record_id, owner.id)


class PatientService(OwnedRecordService):
    collection = "patients"
    resource = "Patient"
    soft_delete_field = "is_active"

    async def search(
        self, owner: User, page: int, limit: int, search: str | None = None
    ) -> tuple[list[Document], int]:
        if not search:
            return await self.list(owner, page, limit)
        term = search.lower()
        documents = await self.store.query(
            self.collection, self.scope(owner), order_by="created_at", descending=True
        )
        matches = [
            d
            for d in documents
            if term in (d.get("name") or "").lower() or term in (d.get("email") or "").lower()
        ]
        start = (page - 1) * limit
        return matches[start : start + limit], len(matches)


class _PatientLinkedService(OwnedRecordService):
    """Records that hang off a patient the caller can see."""

    def __init__(
        self,
        store: IDocumentStore,
        patients: PatientService,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        super().__init__(store)
        self.patients = patients
        self.dispatcher = dispatcher

    async def create(self, owner: User, payload: BaseModel | Document, **extra: Any) -> Document:
        patient_id = payload.patient_id if isinstance(payload, BaseModel) else payload["patient_id"]
        await self.patients.get(owner, patient_id)
        return await super().create(owner, payload, **extra)

    async def patient_user_id(self, owner: User, patient_id: str) -> str | None:
        patient = await self.store.get(self.patients.collection, patient_id)
        return (patient or {}).get("user_id")

    async def notify(self, description: str, coroutine: Any) -> None:
        # A notification failure never fails the record operation
        try:
            await coroutine
        except Exception:
            logger.exception("Failed to dispatch %s notification", description)


class AssessmentService(_PatientLinkedService):
    collection = "assessments"
    resource = "Assessment"


class DietPlanService(_PatientLinkedService):
    collection = "diet_plans"
    resource = "Diet plan"

    async def create(self, owner: User, payload: BaseModel | Document, **extra: Any) -> Document:
        extra.setdefault("is_active", True)
        plan = await super().create(owner, payload, **extra)
        user_id = await self.patient_user_id(owner, plan["patient_id"])
        if user_id and self.dispatcher is not None:
            await self.notify(
                "diet_plan_created",
                self.dispatcher.send_diet_plan_created(
                    user_id, plan["id"], plan["title"], owner.name
                ),
            )
        return plan

    async def toggle(self, owner: User, record_id: str) -> Document:
        plan = await self.get(owner, record_id)
        return await self.update(owner, record_id, {"is_active": not plan.get("is_active", True)})


class ConsultationService(_PatientLinkedService):
    collection = "consultations"
    resource = "Consultation"

    async def create(self, owner: User, payload: BaseModel | Document, **extra: Any) -> Document:
        extra.setdefault("status", ConsultationStatus.SCHEDULED)
        consultation = await super().create(owner, payload, **extra)
        user_id = await self.patient_user_id(owner, consultation["patient_id"])
        if user_id and self.dispatcher is not None:
            when = consultation["scheduled_date"]
            await self.notify(
                "consultation_scheduled",
                self.dispatcher.send_consultation_scheduled(
                    user_id, consultation["id"], when, owner.name
                ),
            )
            await self.notify(
                "consultation_reminder",
                self.dispatcher.send_consultation_reminder(
                    user_id, consultation["id"], when, owner.name
                ),
            )
        return consultation

    async def cancel(self, owner: User, record_id: str, reason: str | None = None) -> Document:
        consultation = await self.get(owner, record_id)
        if consultation.get("status") == ConsultationStatus.CANCELLED.value:
            raise ValidationError("Consultation is already cancelled")
        updated = await self.update(
            owner,
            record_id,
            {
                "status": ConsultationStatus.CANCELLED,
                "cancellation_reason": reason,
                "cancelled_at": utc_now(),
            },
        )
        user_id = await self.patient_user_id(owner, updated["patient_id"])
        if user_id and self.dispatcher is not None:
            await self.notify(
                "consultation_cancelled",
                self.dispatcher.send_consultation_cancelled(
                    user_id, record_id, updated["scheduled_date"], reason
                ),
            )
        return updated


class InviteService(OwnedRecordService):
    collection = "patient_invites"
    resource = "Invite"

    async def create(self, owner: User, payload: BaseModel | Document, **extra: Any) -> Document:
        body = dump_for_store(payload) if isinstance(payload, BaseModel) else to_document(payload)
        email = body.get("patient_email")
        if email:
            email = email.lower()
            body["patient_email"] = email
            duplicates = await self.store.count(
                self.collection,
                {
                    "nutritionist_id": owner.id,
                    "patient_email": email,
                    "status": InviteStatus.PENDING.value,
                },
            )
            if duplicates:
                raise ConflictError("A pending invite already exists for this email")

        return await super().create(
            owner,
            body,
            token=secrets.token_urlsafe(32),
            status=InviteStatus.PENDING,
            expires_at=utc_now() + INVITE_LIFETIME,
            **extra,
        )

    async def get_by_token(self, token: str) -> Document:
        documents = await self.store.query(self.collection, {"token": token}, limit=1)
        if not documents:
            raise NotFoundError(self.resource)
        invite = documents[0]
        if invite["status"] == InviteStatus.PENDING.value and invite["expires_at"] <= utc_now():
            await self.store.update(
                self.collection,
                invite["id"],
                {"status": InviteStatus.EXPIRED.value, "updated_at": utc_now()},
            )
            invite["status"] = InviteStatus.EXPIRED.value
        return invite

    async def accept(self, token: str, user: User) -> Document:
        invite = await self.get_by_token(token)
        if invite["status"] == InviteStatus.EXPIRED.value:
            raise ValidationError("This invite has expired")
        if invite["status"] != InviteStatus.PENDING.value:
            raise ValidationError("This invite is no longer valid")

        now = utc_now()
        accepted = await self.store.update_if(
            self.collection,
            invite["id"],
            {"status": InviteStatus.PENDING.value},
            {
                "status": InviteStatus.ACCEPTED.value,
                "accepted_at": now,
                "accepted_by": user.id,
                "updated_at": now,
            },
        )
        if not accepted:
            raise ValidationError("This invite is no longer valid")
        logger.info("Invite %s accepted by user %s", invite["id"], user.id)
        return await self.store.get(self.collection, invite["id"]) or invite

    async def cancel(self, owner: User, record_id: str) -> Document:
        invite = await self.get(owner, record_id)
        if invite["status"] != InviteStatus.PENDING.value:
            raise ValidationError("Only pending invites can be cancelled")
        return await self.update(owner, record_id, {"status": InviteStatus.CANCELLED})


def public_invite(invite: Document) -> Document:
    """Invite fields safe to show to whoever holds the token."""
    return {
        key: invite.get(key)
        for key in ("id", "patient_email", "patient_name", "message", "status", "expires_at")
    }
