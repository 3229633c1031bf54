"""Checkpoint persistence for resuming change feed reads across runs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING, IndexModel
from pymongo.errors import PyMongoError

from feedcursor.core.exceptions import CheckpointStoreError
from feedcursor.feed.checkpoint import Checkpoint
from feedcursor.observability.logging import get_logger

logger = get_logger(__name__)


class CheckpointStore:
    """
    Persists change feed checkpoints in MongoDB.

    One document is kept per (namespace, consumer) pair. Partition ids are
    stored as an array of entries rather than as document keys, so ids
    containing dots or dollar signs round-trip unchanged.
    """

    def __init__(
        self,
        client: AsyncIOMotorClient[dict[str, Any]],
        database: str = "feedcursor",
        collection: str = "checkpoints",
    ) -> None:
        self._client = client
        self._database_name = database
        self._collection_name = collection
        self._collection: AsyncIOMotorCollection[dict[str, Any]] | None = None

    @property
    def collection(self) -> AsyncIOMotorCollection[dict[str, Any]]:
        """Get collection instance."""
        if self._collection is None:
            self._collection = self._client[self._database_name][self._collection_name]
        return self._collection

    async def initialize(self) -> None:
        """Initialize indexes for the collection."""
        indexes = [
            IndexModel(
                [("namespace", ASCENDING), ("consumer", ASCENDING)],
                unique=True,
            ),
            IndexModel([("updated_at", ASCENDING)]),
        ]
        await self.collection.create_indexes(indexes)
        logger.debug("Checkpoint store initialized")

    async def save(
        self,
        namespace: str,
        consumer: str,
        checkpoint: Checkpoint,
    ) -> None:
        """
        Save the checkpoint of a consumer.

        Args:
            namespace: The collection namespace (database.collection).
            consumer: The consumer name.
            checkpoint: The checkpoint to persist.

        Raises:
            CheckpointStoreError: If the write fails.
        """
        entries = [
            {"partition_id": partition_id, "token": token}
            for partition_id, token in checkpoint.items()
        ]
        now = datetime.utcnow()

        try:
            await self.collection.update_one(
                {"namespace": namespace, "consumer": consumer},
                {
                    "$set": {"entries": entries, "updated_at": now},
                    "$setOnInsert": {
                        "namespace": namespace,
                        "consumer": consumer,
                        "created_at": now,
                    },
                },
                upsert=True,
            )
        except PyMongoError as e:
            raise CheckpointStoreError(
                f"Failed to save checkpoint for '{namespace}'",
                {"namespace": namespace, "consumer": consumer, "error": str(e)},
            ) from e

        logger.debug(
            "Saved checkpoint",
            namespace=namespace,
            consumer=consumer,
            entries=len(entries),
        )

    async def load(self, namespace: str, consumer: str) -> Checkpoint:
        """
        Load the checkpoint of a consumer.

        Args:
            namespace: The collection namespace.
            consumer: The consumer name.

        Returns:
            The stored checkpoint, or an empty one if none was saved.
        """
        try:
            doc = await self.collection.find_one(
                {"namespace": namespace, "consumer": consumer}
            )
        except PyMongoError as e:
            raise CheckpointStoreError(
                f"Failed to load checkpoint for '{namespace}'",
                {"namespace": namespace, "consumer": consumer, "error": str(e)},
            ) from e

        if not doc:
            return Checkpoint()

        return Checkpoint.from_dict(
            {entry["partition_id"]: entry["token"] for entry in doc.get("entries", [])}
        )

    async def delete(self, namespace: str, consumer: str) -> bool:
        """
        Delete the checkpoint of a consumer.

        Returns:
            True if deleted, False if not found.
        """
        result = await self.collection.delete_one(
            {"namespace": namespace, "consumer": consumer}
        )
        return result.deleted_count > 0

    async def list_all(self) -> list[dict[str, Any]]:
        """
        List all stored checkpoints.

        Returns:
            List of checkpoint summaries with metadata.
        """
        cursor = self.collection.find({})
        checkpoints = []

        async for doc in cursor:
            checkpoints.append({
                "namespace": doc["namespace"],
                "consumer": doc["consumer"],
                "entries": len(doc.get("entries", [])),
                "updated_at": doc.get("updated_at"),
            })

        return checkpoints

    async def get_age_seconds(self, namespace: str, consumer: str) -> float | None:
        """
        Get the age of a stored checkpoint in seconds.

        Returns:
            Age in seconds or None if not found.
        """
        doc = await self.collection.find_one(
            {"namespace": namespace, "consumer": consumer},
            projection={"updated_at": 1},
        )

        if doc and doc.get("updated_at"):
            age = datetime.utcnow() - doc["updated_at"]
            return age.total_seconds()

        return None
