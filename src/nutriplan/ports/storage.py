"""Document store port.

Services persist plain dictionaries keyed by collection and document id. The
conditional update is the only concurrency primitive the services rely on.
"""

from abc import ABC, abstractmethod
from typing import Any


class IDocumentStore(ABC):
    """Abstract interface for document storage."""

    @abstractmethod
    async def create(
        self,
        collection: str,
        data: dict[str, Any],
        document_id: str | None = None,
    ) -> str:
        """Create a document and return its id.

        Args:
            collection: Name of the collection
            data: Document body; ``id`` is mirrored into the stored body
            document_id: Explicit id, generated when omitted
        """

    @abstractmethod
    async def create_unique(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> bool:
        """Atomically create ``document_id`` only if it does not exist yet.

        Returns:
            False when a document with that id is already stored.
        """

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        """Retrieve a document by id, or None when absent."""

    @abstractmethod
    async def update(
        self, collection: str, document_id: str, changes: dict[str, Any]
    ) -> bool:
        """Merge ``changes`` into a document; False if it does not exist."""

    @abstractmethod
    async def update_if(
        self,
        collection: str,
        document_id: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        """Atomically merge ``changes`` if every ``expected`` field matches.

        A field expected to be None matches when it is None or missing.

        Returns:
            True when the document existed, matched and was modified.
        """

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> bool:
        """Delete a document; False if it did not exist."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Return documents whose fields equal every filter value."""

    @abstractmethod
    async def count(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> int:
        """Count documents matching the equality filters."""

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None
