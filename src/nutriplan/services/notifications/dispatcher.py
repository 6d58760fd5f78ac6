"""NutriPlan - Notification Dispatcher.

Persists notifications, hands them to the delivery queue and serves the
per-user notification inbox. Delivery itself happens in
``NotificationJobProcessor``.
"""

from collections import Counter
from datetime import datetime, timedelta
import logging
from typing import Any
import uuid

from nutriplan.core.exceptions import NotFoundError, QueueError
from nutriplan.models.common import to_document, utc_now
from nutriplan.models.notification import (
    DEFAULT_MAX_RETRIES,
    CreateNotificationRequest,
    Notification,
    NotificationChannel,
    NotificationPriority,
    NotificationStats,
    NotificationStatus,
    NotificationType,
)
from nutriplan.models.user import User
from nutriplan.ports.queue_ports import IDeliveryQueue, QueueStats
from nutriplan.ports.storage import IDocumentStore

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"
REMINDER_LEAD_TIME = timedelta(hours=24)
RETENTION_PERIOD = timedelta(days=30)
# Only delivered notifications can be unread
UNREAD_FILTER: dict[str, Any] = {"read_at": None, "status": NotificationStatus.SENT.value}
ABANDONED_REASON = "Delivery abandoned by worker"


class NotificationDispatcher:
    def __init__(
        self,
        store: IDocumentStore,
        queue: IDeliveryQueue,
        *,
        ttl_days: int = 30,
    ) -> None:
        self.store = store
        self.queue = queue
        self.ttl = timedelta(days=ttl_days)

    async def create(self, request: CreateNotificationRequest) -> Notification:
        """Persist a pending notification and enqueue its delivery.

        A failed enqueue leaves the record pending for the reconciliation
        sweep; the notification is still returned.
        """
        now = utc_now()
        notification = Notification(
            id=uuid.uuid4().hex,
            user_id=request.user_id,
            type=request.type,
            channel=request.channel or NotificationChannel.EMAIL,
            status=NotificationStatus.PENDING,
            title=request.title,
            message=request.message,
            data=request.data or {},
            scheduled_for=request.scheduled_for or now,
            priority=request.priority or NotificationPriority.NORMAL,
            max_retries=request.max_retries or DEFAULT_MAX_RETRIES,
            expires_at=request.expires_at or now + self.ttl,
            created_at=now,
            updated_at=now,
        )
        await self.store.create(
            NOTIFICATIONS, to_document(notification), document_id=notification.id
        )
        await self._enqueue(notification, now)
        logger.info(
            "Notification %s created for user %s (%s via %s)",
            notification.id,
            notification.user_id,
            notification.type.value,
            notification.channel.value,
        )
        return notification

    async def _enqueue(self, notification: Notification, now: datetime) -> bool:
        delay_ms = max(0, int((notification.scheduled_for - now).total_seconds() * 1000))
        try:
            return await self.queue.enqueue(
                notification.id,
                delay_ms=delay_ms,
                priority=notification.priority.queue_priority,
            )
        except QueueError:
            logger.exception(
                "Failed to enqueue notification %s, left pending for reconciliation",
                notification.id,
            )
            return False

    async def get(self, notification_id: str, user_id: str | None = None) -> Notification:
        document = await self.store.get(NOTIFICATIONS, notification_id)
        if document is None or (user_id is not None and document.get("user_id") != user_id):
            raise NotFoundError("Notification", notification_id)
        return Notification.model_validate(document)

    async def get_user_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        *,
        status: NotificationStatus | None = None,
        type: NotificationType | None = None,  # noqa: A002
        unread_only: bool = False,
    ) -> tuple[list[Notification], int, int]:
        """Return ``(page_items, total, unread_count)``, newest first."""
        filters: dict[str, Any] = {"user_id": user_id}
        if status:
            filters["status"] = status.value
        if type:
            filters["type"] = type.value
        if unread_only:
            filters.update(UNREAD_FILTER)

        documents = await self.store.query(
            NOTIFICATIONS,
            filters,
            order_by="created_at",
            descending=True,
            limit=limit,
            offset=(page - 1) * limit,
        )
        total = await self.store.count(NOTIFICATIONS, filters)
        unread = await self.store.count(NOTIFICATIONS, {"user_id": user_id, **UNREAD_FILTER})
        return [Notification.model_validate(d) for d in documents], total, unread

    async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        notification = await self.get(notification_id, user_id)
        if notification.read_at is None:
            now = utc_now()
            await self.store.update_if(
                NOTIFICATIONS,
                notification_id,
                {"user_id": user_id, "read_at": None},
                {"read_at": now, "updated_at": now},
            )
        return await self.get(notification_id, user_id)

    async def mark_all_as_read(self, user_id: str) -> int:
        documents = await self.store.query(NOTIFICATIONS, {"user_id": user_id, **UNREAD_FILTER})
        now = utc_now()
        marked = 0
        for document in documents:
            if await self.store.update_if(
                NOTIFICATIONS,
                document["id"],
                {"read_at": None},
                {"read_at": now, "updated_at": now},
            ):
                marked += 1
        return marked

    async def delete(self, notification_id: str, user_id: str) -> None:
        await self.get(notification_id, user_id)
        await self.store.delete(NOTIFICATIONS, notification_id)

    async def get_stats(self, user_id: str | None = None) -> NotificationStats:
        filters = {"user_id": user_id} if user_id else None
        documents = await self.store.query(NOTIFICATIONS, filters)
        statuses = Counter(d.get("status") for d in documents)
        return NotificationStats(
            total=len(documents),
            sent=statuses[NotificationStatus.SENT.value],
            pending=statuses[NotificationStatus.PENDING.value],
            failed=statuses[NotificationStatus.FAILED.value],
            cancelled=statuses[NotificationStatus.CANCELLED.value],
            by_type=dict(Counter(d.get("type") for d in documents)),
            by_channel=dict(Counter(d.get("channel") for d in documents)),
        )

    async def get_queue_stats(self) -> QueueStats:
        return await self.queue.stats()

    # Convenience senders

    async def send_consultation_reminder(
        self,
        user_id: str,
        consultation_id: str,
        consultation_date: datetime,
        nutritionist_name: str | None = None,
    ) -> Notification:
        # 24h ahead, or right away when that moment has passed
        remind_at = max(consultation_date - REMINDER_LEAD_TIME, utc_now())
        return await self.create(
            CreateNotificationRequest(
                user_id=user_id,
                type=NotificationType.CONSULTATION_REMINDER,
                title="Reminder: upcoming consultation",
                message=(
                    "You have a consultation scheduled for "
                    f"{consultation_date:%d/%m/%Y} at {consultation_date:%H:%M}."
                ),
                data={
                    "consultation_id": consultation_id,
                    "consultation_date": consultation_date.isoformat(),
                    "nutritionist_name": nutritionist_name,
                },
                scheduled_for=remind_at,
                priority=NotificationPriority.HIGH,
            )
        )

    async def send_consultation_scheduled(
        self,
        user_id: str,
        consultation_id: str,
        consultation_date: datetime,
        nutritionist_name: str | None = None,
    ) -> Notification:
        return await self.create(
            CreateNotificationRequest(
                user_id=user_id,
                type=NotificationType.CONSULTATION_SCHEDULED,
                title="Consultation scheduled",
                message="Your consultation was scheduled. You will get a reminder 24 hours before.",
                data={
                    "consultation_id": consultation_id,
                    "consultation_date": consultation_date.isoformat(),
                    "nutritionist_name": nutritionist_name,
                },
            )
        )

    async def send_consultation_cancelled(
        self,
        user_id: str,
        consultation_id: str,
        consultation_date: datetime,
        reason: str | None = None,
    ) -> Notification:
        message = f"Your consultation on {consultation_date:%d/%m/%Y} at {consultation_date:%H:%M} was cancelled."
        if reason:
            message += f" Reason: {reason}"
        return await self.create(
            CreateNotificationRequest(
                user_id=user_id,
                type=NotificationType.CONSULTATION_CANCELLED,
                title="Consultation cancelled",
                message=message,
                data={
                    "consultation_id": consultation_id,
                    "consultation_date": consultation_date.isoformat(),
                    "reason": reason,
                },
                priority=NotificationPriority.HIGH,
            )
        )

    async def send_diet_plan_created(
        self,
        user_id: str,
        diet_plan_id: str,
        plan_title: str,
        nutritionist_name: str | None = None,
    ) -> Notification:
        return await self.create(
            CreateNotificationRequest(
                user_id=user_id,
                type=NotificationType.DIET_PLAN_CREATED,
                title="New diet plan available",
                message="Your nutritionist created a new personalised diet plan for you.",
                data={
                    "diet_plan_id": diet_plan_id,
                    "plan_title": plan_title,
                    "nutritionist_name": nutritionist_name,
                },
            )
        )

    async def send_welcome(self, user: User) -> Notification:
        return await self.create(
            CreateNotificationRequest(
                user_id=user.id,
                type=NotificationType.WELCOME,
                title=f"Welcome to NutriPlan, {user.name}!",
                message="Your account has been created.",
                data={"role": user.role.value},
                priority=NotificationPriority.LOW,
            )
        )

    async def notify_password_reset(self, user_id: str, reset_token: str) -> Notification:
        return await self.create(
            CreateNotificationRequest(
                user_id=user_id,
                type=NotificationType.PASSWORD_RESET,
                title="Password reset",
                message="Use the link in this email to reset your password. It is valid for 1 hour.",
                data={"reset_token": reset_token},
                priority=NotificationPriority.URGENT,
            )
        )

    # Maintenance

    async def cleanup_old_notifications(self, now: datetime | None = None) -> int:
        """Delete expired records and delivered or cancelled ones past retention."""
        now = now or utc_now()
        cutoff = now - RETENTION_PERIOD
        finished = {NotificationStatus.SENT.value, NotificationStatus.CANCELLED.value}
        removed = 0
        for document in await self.store.query(NOTIFICATIONS):
            expired = document["expires_at"] < now
            stale = document["created_at"] < cutoff and document.get("status") in finished
            if expired or stale:
                if await self.store.delete(NOTIFICATIONS, document["id"]):
                    removed += 1
        logger.info("Cleanup removed %d old notifications", removed)
        return removed

    async def reconcile_pending(self, stale_after: timedelta, now: datetime | None = None) -> int:
        """Re-enqueue stale pending notifications and clear abandoned claims.

        An abandoned claim counts as a delivery attempt: it bumps
        ``retry_count`` and fails the record once ``max_retries`` is used up.
        Enqueueing by notification id is idempotent, so a record that is
        still queued is not queued twice.
        """
        now = now or utc_now()
        threshold = now - stale_after
        requeued = 0
        documents = await self.store.query(
            NOTIFICATIONS, {"status": NotificationStatus.PENDING.value}
        )
        for document in documents:
            claimed_by = document.get("claimed_by")
            if claimed_by:
                claimed_at = document.get("claimed_at")
                if claimed_at is not None and claimed_at >= threshold:
                    continue
                # Worker died mid-delivery
                if not await self._release_abandoned(document, claimed_by, now):
                    continue
                document = {**document, "retry_count": document.get("retry_count", 0) + 1}
            elif document["updated_at"] >= threshold:
                continue

            notification = Notification.model_validate({**document, "claimed_by": None})
            if await self._enqueue(notification, now):
                requeued += 1
        if requeued:
            logger.info("Reconciliation re-enqueued %d pending notifications", requeued)
        return requeued

    async def _release_abandoned(
        self, document: dict[str, Any], claimed_by: str, now: datetime
    ) -> bool:
        """Clear a dead worker's claim. Returns True if the record is still pending."""
        attempts = document.get("retry_count", 0) + 1
        exhausted = attempts > document.get("max_retries", DEFAULT_MAX_RETRIES)
        changes: dict[str, Any] = {
            "claimed_by": None,
            "claimed_at": None,
            "retry_count": attempts,
            "failure_reason": ABANDONED_REASON,
            "updated_at": now,
        }
        if exhausted:
            changes["status"] = NotificationStatus.FAILED.value
        released = await self.store.update_if(
            NOTIFICATIONS, document["id"], {"claimed_by": claimed_by}, changes
        )
        if not released:
            return False
        if exhausted:
            logger.error(
                "Notification %s failed after %d abandoned attempts", document["id"], attempts
            )
            return False
        logger.warning("Cleared stale claim on notification %s", document["id"])
        return True
