"""Notification delivery worker.

A job names a notification. The processor claims the record with a
conditional update, delivers it over its channel and writes the outcome
through another conditional update keyed on the claim, so two workers can
never both deliver the same notification.
"""

import asyncio
from datetime import timedelta
import uuid

from nutriplan.core.exceptions import (
    ChannelNotImplementedError,
    DeliveryError,
    QueueError,
    SendError,
)
from nutriplan.core.logging_config import get_logger
from nutriplan.models.common import to_document, utc_now
from nutriplan.models.notification import (
    Notification,
    NotificationChannel,
    NotificationPriority,
    NotificationStatus,
)
from nutriplan.ports.queue_ports import IDeliveryQueue
from nutriplan.ports.storage import IDocumentStore
from nutriplan.services.notifications.email import EmailChannelSender

logger = get_logger(__name__)

NOTIFICATIONS = "notifications"
JOB_SUFFIX_SEPARATOR = ":"
SENT_WRITE_ATTEMPTS = 3
SENT_WRITE_BACKOFF_SECONDS = 0.05


def retry_job_id(notification_id: str, attempt: int) -> str:
    """Job id of a retry; distinct from the active job it is enqueued from."""
    return f"{notification_id}{JOB_SUFFIX_SEPARATOR}retry{JOB_SUFFIX_SEPARATOR}{attempt}"


def deferred_job_id(notification_id: str) -> str:
    return f"{notification_id}{JOB_SUFFIX_SEPARATOR}deferred{JOB_SUFFIX_SEPARATOR}{uuid.uuid4().hex[:8]}"


def notification_id_for_job(job_id: str) -> str:
    return job_id.split(JOB_SUFFIX_SEPARATOR, 1)[0]


def retry_delay_ms(previous_retry_count: int, base_delay_ms: int) -> int:
    return (2**previous_retry_count) * base_delay_ms


class NotificationJobProcessor:
    def __init__(
        self,
        store: IDocumentStore,
        queue: IDeliveryQueue,
        email_sender: EmailChannelSender,
        *,
        base_delay_ms: int = 5000,
    ) -> None:
        self.store = store
        self.queue = queue
        self.email_sender = email_sender
        self.base_delay_ms = base_delay_ms

    async def process(self, job_id: str) -> None:
        notification_id = notification_id_for_job(job_id)
        claim = uuid.uuid4().hex
        claimed = await self.store.update_if(
            NOTIFICATIONS,
            notification_id,
            {"status": NotificationStatus.PENDING.value, "claimed_by": None},
            {"claimed_by": claim, "claimed_at": utc_now()},
        )
        if not claimed:
            logger.info(
                "notification_not_claimable", notification_id=notification_id, job_id=job_id
            )
            return

        document = await self.store.get(NOTIFICATIONS, notification_id)
        if document is None:
            logger.warning("notification_vanished", notification_id=notification_id)
            return
        notification = Notification.model_validate(document)
        now = utc_now()

        if notification.is_expired(now):
            await self._finish(
                notification,
                claim,
                status=NotificationStatus.CANCELLED,
                failure_reason="expired",
            )
            logger.info("notification_expired", notification_id=notification.id)
            return

        if notification.scheduled_for > now + timedelta(seconds=1):
            # Picked up early, e.g. by the reconciliation sweep
            await self._release(notification, claim)
            delay_ms = int((notification.scheduled_for - now).total_seconds() * 1000)
            await self._enqueue(
                deferred_job_id(notification.id),
                delay_ms=delay_ms,
                priority=notification.priority.queue_priority,
            )
            return

        attempt = notification.retry_count + 1
        try:
            await self._deliver(notification)
        except DeliveryError as e:
            await self._handle_failure(notification, claim, e)
            return
        except Exception as e:
            # Anything else still counts as a retryable attempt
            logger.exception(
                "notification_delivery_crashed",
                notification_id=notification.id,
                channel=notification.channel.value,
                attempt=attempt,
            )
            await self._handle_failure(
                notification, claim, SendError(f"Unexpected delivery error: {e}")
            )
            return

        await self._record_sent(notification, claim, attempt)

    async def _record_sent(self, notification: Notification, claim: str, attempt: int) -> None:
        """Write the SENT outcome, retrying transient store failures.

        If every write fails the claim is left in place; the reconciliation
        sweep clears it later and counts the run as an attempt.
        """
        for write in range(1, SENT_WRITE_ATTEMPTS + 1):
            try:
                done = await self._finish(
                    notification, claim, status=NotificationStatus.SENT, sent_at=utc_now()
                )
            except Exception:
                if write == SENT_WRITE_ATTEMPTS:
                    logger.exception(
                        "notification_sent_unrecorded",
                        notification_id=notification.id,
                        attempt=attempt,
                    )
                    return
                await asyncio.sleep(SENT_WRITE_BACKOFF_SECONDS * write)
                continue
            if done:
                logger.info(
                    "notification_sent",
                    notification_id=notification.id,
                    channel=notification.channel.value,
                    attempt=attempt,
                )
            return

    async def _deliver(self, notification: Notification) -> None:
        if notification.channel == NotificationChannel.EMAIL:
            await self.email_sender.send(notification)
        elif notification.channel == NotificationChannel.IN_APP:
            # Stored record is the delivery
            return
        else:
            raise ChannelNotImplementedError(notification.channel.value)

    async def _handle_failure(
        self, notification: Notification, claim: str, error: DeliveryError
    ) -> None:
        previous = notification.retry_count
        if error.retryable and previous < notification.max_retries:
            released = await self.store.update_if(
                NOTIFICATIONS,
                notification.id,
                {"claimed_by": claim},
                {
                    "retry_count": previous + 1,
                    "failure_reason": error.message,
                    "claimed_by": None,
                    "claimed_at": None,
                    "updated_at": utc_now(),
                },
            )
            if not released:
                logger.warning("notification_claim_lost", notification_id=notification.id)
                return
            delay_ms = retry_delay_ms(previous, self.base_delay_ms)
            logger.warning(
                "notification_retry_scheduled",
                notification_id=notification.id,
                channel=notification.channel.value,
                attempt=previous + 1,
                delay_ms=delay_ms,
                reason=error.message,
            )
            await self._enqueue(
                retry_job_id(notification.id, previous + 1),
                delay_ms=delay_ms,
                priority=NotificationPriority.URGENT.queue_priority,
            )
            return

        await self._finish(
            notification,
            claim,
            status=NotificationStatus.FAILED,
            failure_reason=error.message,
        )
        logger.error(
            "notification_failed",
            notification_id=notification.id,
            channel=notification.channel.value,
            retry_count=previous,
            reason=error.message,
        )

    async def _finish(
        self, notification: Notification, claim: str, *, status: NotificationStatus, **fields
    ) -> bool:
        changes = to_document(
            {
                "status": status,
                "claimed_by": None,
                "claimed_at": None,
                "updated_at": utc_now(),
                **fields,
            }
        )
        done = await self.store.update_if(
            NOTIFICATIONS, notification.id, {"claimed_by": claim}, changes
        )
        if not done:
            logger.warning("notification_claim_lost", notification_id=notification.id)
        return done

    async def _release(self, notification: Notification, claim: str) -> None:
        await self.store.update_if(
            NOTIFICATIONS,
            notification.id,
            {"claimed_by": claim},
            {"claimed_by": None, "claimed_at": None},
        )

    async def _enqueue(self, job_id: str, *, delay_ms: int, priority: int) -> None:
        try:
            await self.queue.enqueue(job_id, delay_ms=delay_ms, priority=priority)
        except QueueError:
            # The record stays pending and the reconciliation sweep picks it up
            logger.exception("notification_enqueue_failed", job_id=job_id)
