"""Ports layer - service interfaces.

The services depend on these abstractions; adapters in ``nutriplan.storage``,
``nutriplan.auth`` and ``nutriplan.services.notifications`` implement them.
"""

from .auth_ports import IIdentityProvider
from .queue_ports import IDeliveryQueue, QueueStats
from .storage import IDocumentStore

__all__ = [
    "IDeliveryQueue",
    "IDocumentStore",
    "IIdentityProvider",
    "QueueStats",
]
