"""Notification dispatch and delivery."""

from nutriplan.services.notifications.dispatcher import NotificationDispatcher
from nutriplan.services.notifications.processor import NotificationJobProcessor
from nutriplan.services.notifications.queue import (
    InMemoryDeliveryQueue,
    RedisDeliveryQueue,
    create_delivery_queue,
)
from nutriplan.services.notifications.reconciler import NotificationReconciler

__all__ = [
    "InMemoryDeliveryQueue",
    "NotificationDispatcher",
    "NotificationJobProcessor",
    "NotificationReconciler",
    "RedisDeliveryQueue",
    "create_delivery_queue",
]
