"""Abstract base class for partitioned change feed stores."""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Any

from feedcursor.core.exceptions import InvalidCheckpointEntryError
from feedcursor.core.types import ChangeBatch, ChangeRecord, CollectionRef, RangesPage

# Partition keys hash into [0, HASH_SPACE)
HASH_SPACE = 2**32


def hash_partition_key(value: Any) -> int:
    """Hash a partition key value into the range key space."""
    raw = "" if value is None else str(value)
    digest = hashlib.md5(raw.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big")


def split_key_space(count: int, low: int = 0, high: int = HASH_SPACE) -> list[tuple[int, int]]:
    """Split ``[low, high)`` into ``count`` contiguous, near-equal slices."""
    if count < 1:
        raise ValueError("count must be at least 1")
    width = high - low
    bounds = [low + (width * i) // count for i in range(count + 1)]
    return [(bounds[i], bounds[i + 1]) for i in range(count)]


def get_partition_key(document: dict[str, Any], field_path: str) -> Any:
    """Resolve a dotted partition key field in a document."""
    value: Any = document
    for part in field_path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def parse_sequence_token(partition_id: str, token: str) -> int:
    """
    Decode a continuation token into the last consumed sequence number.

    Raises:
        InvalidCheckpointEntryError: If the token is not a sequence number.
    """
    try:
        position = int(token)
    except (TypeError, ValueError):
        raise InvalidCheckpointEntryError(partition_id, str(token), "not a sequence number")
    if position < 0:
        raise InvalidCheckpointEntryError(partition_id, token, "negative sequence number")
    return position


class FeedStoreBase(ABC):
    """
    Abstract base class for partitioned change feed stores.

    A store keeps documents in partition key ranges, each with its own
    append-only change feed addressed by continuation tokens.
    """

    @abstractmethod
    async def ensure_collection(
        self,
        database_id: str,
        collection_id: str,
        partition_key_path: str,
    ) -> CollectionRef:
        """
        Get or create a partitioned collection.

        Raises:
            CollectionError: If the collection cannot be provisioned.
        """
        pass

    @abstractmethod
    async def list_partition_ranges_page(
        self,
        collection: CollectionRef,
        page_token: str | None = None,
    ) -> RangesPage:
        """
        Fetch one page of the collection's active partition ranges.

        Args:
            collection: The collection to list.
            page_token: Token of the previous page, None for the first.

        Returns:
            The page of ranges; next_page_token is None on the last page.
        """
        pass

    @abstractmethod
    async def read_partition_changes(
        self,
        collection: CollectionRef,
        partition_id: str,
        continuation: str | None,
        start_from_beginning: bool = True,
        max_item_count: int | None = None,
    ) -> ChangeBatch:
        """
        Read the next batch of a partition's change feed.

        Raises:
            InvalidCheckpointEntryError: If the continuation is rejected.
            PartitionNotFoundError: If the partition does not exist.
        """
        pass

    @abstractmethod
    async def insert_document(
        self,
        collection: CollectionRef,
        document: dict[str, Any],
    ) -> ChangeRecord:
        """Insert a document, appending it to its partition's change feed."""
        pass

    @abstractmethod
    async def drop_collection(self, collection: CollectionRef) -> None:
        """Delete a collection together with its ranges and feeds."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        pass
