"""Document store adapters."""

from nutriplan.storage.factory import create_document_store
from nutriplan.storage.memory_store import InMemoryDocumentStore

__all__ = ["InMemoryDocumentStore", "create_document_store"]
