"""NutriPlan - Firestore document store.

Async Google Cloud Firestore adapter. The conditional update runs inside an
async transaction so concurrent notification processors cannot both claim
the same document.
"""

import asyncio
import logging
from typing import Any
import uuid

from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore_v1 as firestore  # type: ignore[import-untyped]

from nutriplan.core.exceptions import StorageError
from nutriplan.ports.storage import IDocumentStore

# Configure logger
logger = logging.getLogger(__name__)


class FirestoreDocumentStore(IDocumentStore):
    """Document store backed by ``firestore.AsyncClient``."""

    def __init__(
        self,
        project_id: str,
        database_name: str = "(default)",
    ) -> None:
        """Initialize the Firestore store.

        Args:
            project_id: Google Cloud project ID
            database_name: Firestore database name
        """
        self.project_id = project_id
        self.database_name = database_name
        self._db: firestore.AsyncClient | None = None
        self._connection_lock = asyncio.Lock()

        logger.info("Firestore store initialized for project: %s", project_id)

    async def _get_db(self) -> firestore.AsyncClient:
        """Get or create the async Firestore client."""
        if self._db is None:
            async with self._connection_lock:
                if self._db is None:
                    try:
                        self._db = firestore.AsyncClient(
                            project=self.project_id, database=self.database_name
                        )
                        logger.info("Async Firestore client created")
                    except Exception as e:
                        logger.exception("Failed to create Firestore client")
                        msg = f"Firestore connection failed: {e}"
                        raise StorageError(msg) from e

        return self._db

    @staticmethod
    def _apply_filters(query: Any, filters: dict[str, Any] | None) -> Any:
        for field, value in (filters or {}).items():
            query = query.where(field, "==", value)
        return query

    async def create(
        self,
        collection: str,
        data: dict[str, Any],
        document_id: str | None = None,
    ) -> str:
        created_id = document_id or data.get("id") or uuid.uuid4().hex
        try:
            db = await self._get_db()
            await db.collection(collection).document(created_id).set(
                {**data, "id": created_id}
            )
        except StorageError:
            raise
        except Exception as e:
            logger.exception("Failed to create document in %s", collection)
            msg = f"Document creation failed: {e}"
            raise StorageError(msg, collection=collection) from e
        logger.debug("Document created: %s/%s", collection, created_id)
        return created_id

    async def create_unique(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> bool:
        try:
            db = await self._get_db()
            # Firestore create() fails if the document already exists
            await db.collection(collection).document(document_id).create(
                {**data, "id": document_id}
            )
        except AlreadyExists:
            return False
        except StorageError:
            raise
        except Exception as e:
            logger.exception("Failed to create document %s/%s", collection, document_id)
            msg = f"Document creation failed: {e}"
            raise StorageError(msg, collection=collection) from e
        return True

    async def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        try:
            db = await self._get_db()
            snapshot = await db.collection(collection).document(document_id).get()
        except StorageError:
            raise
        except Exception as e:
            logger.exception("Failed to get document %s/%s", collection, document_id)
            msg = f"Document retrieval failed: {e}"
            raise StorageError(msg, collection=collection) from e
        if not snapshot.exists:
            return None
        document = snapshot.to_dict() or {}
        document["id"] = snapshot.id
        return document

    async def update(
        self, collection: str, document_id: str, changes: dict[str, Any]
    ) -> bool:
        # An empty expectation still checks existence inside the transaction
        return await self.update_if(collection, document_id, {}, changes)

    async def update_if(
        self,
        collection: str,
        document_id: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        db = await self._get_db()
        ref = db.collection(collection).document(document_id)

        @firestore.async_transactional
        async def apply(transaction: firestore.AsyncTransaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            current = snapshot.to_dict() or {}
            if any(current.get(field) != value for field, value in expected.items()):
                return False
            transaction.update(ref, changes)
            return True

        try:
            return await apply(db.transaction())
        except Exception as e:
            logger.exception("Conditional update failed for %s/%s", collection, document_id)
            msg = f"Document update failed: {e}"
            raise StorageError(msg, collection=collection) from e

    async def delete(self, collection: str, document_id: str) -> bool:
        try:
            db = await self._get_db()
            ref = db.collection(collection).document(document_id)
            snapshot = await ref.get()
            if not snapshot.exists:
                return False
            await ref.delete()
        except StorageError:
            raise
        except Exception as e:
            logger.exception("Failed to delete document %s/%s", collection, document_id)
            msg = f"Document deletion failed: {e}"
            raise StorageError(msg, collection=collection) from e
        return True

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
        try:
            db = await self._get_db()
            query: Any = self._apply_filters(db.collection(collection), filters)
            if order_by:
                direction = (
                    firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
                )
                query = query.order_by(order_by, direction=direction)
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)

            results: list[dict[str, Any]] = []
            async for snapshot in query.stream():
                document = snapshot.to_dict()
                if document is not None:
                    document["id"] = snapshot.id
                    results.append(document)
        except StorageError:
            raise
        except Exception as e:
            logger.exception("Failed to query documents in %s", collection)
            msg = f"Query operation failed: {e}"
            raise StorageError(msg, collection=collection) from e
        return results

    async def count(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> int:
        try:
            db = await self._get_db()
            query: Any = self._apply_filters(db.collection(collection), filters)
            result = await query.count().get()
        except StorageError:
            raise
        except Exception as e:
            logger.exception("Failed to count documents in %s", collection)
            msg = f"Count operation failed: {e}"
            raise StorageError(msg, collection=collection) from e
        return int(result[0][0].value)

    async def health_check(self) -> bool:
        try:
            db = await self._get_db()
            await db.collection("__health_check__").document("ping").get()
        except Exception:
            logger.exception("Firestore health check failed")
            return False
        return True

    async def close(self) -> None:
        """Close the Firestore client."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Firestore client closed")
