"""Document store selection."""

import logging

from nutriplan.core.config import Settings
from nutriplan.core.exceptions import ConfigurationError
from nutriplan.ports.storage import IDocumentStore
from nutriplan.storage.memory_store import InMemoryDocumentStore

logger = logging.getLogger(__name__)


def create_document_store(settings: Settings) -> IDocumentStore:
    """Build the store named by ``STORAGE_BACKEND``."""
    backend = settings.storage_backend.lower()
    if backend == "memory":
        return InMemoryDocumentStore()
    if backend == "firestore":
        from nutriplan.storage.firestore_client import (  # noqa: PLC0415
            FirestoreDocumentStore,
        )

        return FirestoreDocumentStore(
            project_id=settings.firestore_project_id,
            database_name=settings.firestore_database,
        )
    msg = f"Unknown storage backend: {settings.storage_backend}"
    raise ConfigurationError(msg, config_key="STORAGE_BACKEND")
