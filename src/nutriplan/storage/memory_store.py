"""In-memory document store for development and tests."""

import asyncio
import copy
import logging
from typing import Any
import uuid

from nutriplan.ports.storage import IDocumentStore

logger = logging.getLogger(__name__)


def _matches(document: dict[str, Any], expected: dict[str, Any]) -> bool:
    return all(document.get(field) == value for field, value in expected.items())


def _sort_key(field: str):
    def key(document: dict[str, Any]) -> tuple[bool, Any]:
        value = document.get(field)
        return (value is None, value)

    return key


class InMemoryDocumentStore(IDocumentStore):
    """Dict-backed store guarded by a single asyncio lock.

    Documents are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        logger.info("Using in-memory document store (data resets on restart)")

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def create(
        self,
        collection: str,
        data: dict[str, Any],
        document_id: str | None = None,
    ) -> str:
        created_id = document_id or data.get("id") or uuid.uuid4().hex
        async with self._lock:
            body = copy.deepcopy(data)
            body["id"] = created_id
            self._collection(collection)[created_id] = body
        logger.debug("Document created: %s/%s", collection, created_id)
        return created_id

    async def create_unique(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> bool:
        async with self._lock:
            documents = self._collection(collection)
            if document_id in documents:
                return False
            documents[document_id] = {**copy.deepcopy(data), "id": document_id}
        return True

    async def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        async with self._lock:
            document = self._collection(collection).get(document_id)
            return copy.deepcopy(document) if document is not None else None

    async def update(
        self, collection: str, document_id: str, changes: dict[str, Any]
    ) -> bool:
        async with self._lock:
            document = self._collection(collection).get(document_id)
            if document is None:
                return False
            document.update(copy.deepcopy(changes))
            return True

    async def update_if(
        self,
        collection: str,
        document_id: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        async with self._lock:
            document = self._collection(collection).get(document_id)
            if document is None or not _matches(document, expected):
                return False
            document.update(copy.deepcopy(changes))
            return True

    async def delete(self, collection: str, document_id: str) -> bool:
        async with self._lock:
            return self._collection(collection).pop(document_id, None) is not None

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
        async with self._lock:
            results = [
                copy.deepcopy(document)
                for document in self._collection(collection).values()
                if _matches(document, filters or {})
            ]
        if order_by:
            results.sort(key=_sort_key(order_by), reverse=descending)
        end = offset + limit if limit is not None else None
        return results[offset:end]

    async def count(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> int:
        async with self._lock:
            return sum(
                1
                for document in self._collection(collection).values()
                if _matches(document, filters or {})
            )
