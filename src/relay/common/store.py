"""
MongoDB client for persisting change events.

Connects with motor, validates with a ping and ensures the lookup indexes
on every (re)connect. A connection-class driver error during an insert
discards the client and reconnects in the background; the insert itself
fails with PersistError so the caller can requeue the message.
"""

import asyncio
import logging
from typing import Any

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
)
from pymongo import ASCENDING

from config.config import StoreSettings
from core.errors.classifiers import StoreErrorClassifier
from core.errors.exceptions import PersistError, StoreConnectionError
from core.resilience.reconnect import ReconnectingResource

logger = logging.getLogger(__name__)

RECEIVED_AT_FIELD = "received_at"


def index_specs(row_id_field: str = "id") -> list[list[tuple[str, int]]]:
    """Indexes ensured on the changes collection."""
    return [
        [("database", ASCENDING), ("table", ASCENDING)],
        [(f"data.{row_id_field}", ASCENDING)],
        [("ts", ASCENDING)],
    ]


class StoreClient(ReconnectingResource):
    """
    Append-only writer (and poll reader) for the changes collection.

    Usage:
        store = StoreClient(config.store)
        await store.connect()
        inserted_id = await store.insert(document)
        await store.close()
    """

    def __init__(self, settings: StoreSettings, name: str = "store"):
        super().__init__(name, reconnect_delay=settings.reconnect_delay_seconds)
        self.settings = settings
        self._classifier = StoreErrorClassifier()
        self._client: AsyncIOMotorClient | None = None
        self._collection: AsyncIOMotorCollection | None = None

        logger.info(
            "Initialized store client",
            extra={
                "store_uri": settings.uri,
                "database": settings.database,
                "collection": settings.collection,
            },
        )

    @property
    def collection(self) -> AsyncIOMotorCollection | None:
        return self._collection

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def _open(self) -> None:
        settings = self.settings
        try:
            client = AsyncIOMotorClient(
                settings.uri,
                serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
            )
            self._client = client
            await client.admin.command("ping")

            collection = client[settings.database][settings.collection]
            for keys in index_specs(settings.row_id_field):
                index_name = await collection.create_index(keys)
                logger.debug(f"Ensured index {index_name}", extra={"index_name": index_name})
            self._collection = collection
        except Exception as e:
            raise self._classifier.classify_connection_error(
                e, context={"database": settings.database, "collection": settings.collection}
            ) from e

        logger.info(
            "Connected to MongoDB",
            extra={"database": settings.database, "collection": settings.collection},
        )

    async def _discard(self) -> None:
        client = self._client
        self._client = None
        self._collection = None
        if client is None:
            return
        try:
            client.close()
        except Exception as e:
            logger.debug(f"Ignoring error while discarding store client: {e}")

    async def _shutdown(self) -> None:
        client = self._client
        self._client = None
        self._collection = None
        if client is not None:
            client.close()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def insert(self, document: dict[str, Any]) -> Any:
        """
        Insert one document atomically.

        Waits for the store to be ready first; callers bound the wait with
        their own deadline.

        Returns:
            The inserted document id

        Raises:
            PersistError: On any store failure
        """
        if not self.is_ready and not await self.wait_ready():
            raise PersistError(
                "Store closed before insert",
                cause=StoreConnectionError("store closed"),
                context={"connection_lost": True},
            )

        collection = self._collection
        try:
            result = await collection.insert_one(document)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._classifier.is_connection_error(e):
                self.mark_failed(e)
            raise self._classifier.classify_write_error(
                e, context={"collection": self.settings.collection}
            ) from e

        return result.inserted_id

    async def find_received_after(self, received_after: float, limit: int = 0) -> list[dict[str, Any]]:
        """
        Documents ingested strictly after received_after, oldest first.

        Raises:
            StoreConnectionError: If the query fails
        """
        if not self.is_ready and not await self.wait_ready():
            raise StoreConnectionError("Store closed before query")

        try:
            cursor = self._collection.find(
                {RECEIVED_AT_FIELD: {"$gt": received_after}}
            ).sort(RECEIVED_AT_FIELD, ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=limit or None)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._classifier.is_connection_error(e):
                self.mark_failed(e)
            raise self._classifier.classify_connection_error(e) from e


__all__ = ["StoreClient", "index_specs", "RECEIVED_AT_FIELD"]
