"""Protocols and type definitions for feedcursor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from feedcursor.feed.checkpoint import Checkpoint


# Type aliases for common structures
PartitionId = str
ContinuationToken = str
PageToken = str


@dataclass(frozen=True)
class CollectionRef:
    """Reference to a partitioned collection."""

    database: str
    collection: str
    partition_key_path: str = "/id"

    @property
    def namespace(self) -> str:
        """Get the full namespace (database.collection)."""
        return f"{self.database}.{self.collection}"

    @property
    def partition_key_field(self) -> str:
        """Get the partition key path as a dotted field name."""
        return self.partition_key_path.strip("/").replace("/", ".")


@dataclass(frozen=True)
class PartitionRange:
    """A contiguous slice of a collection's partition key space."""

    id: PartitionId
    min_inclusive: int | None = None
    max_exclusive: int | None = None
    parents: tuple[PartitionId, ...] = ()

    def contains(self, key_hash: int) -> bool:
        """Check whether a partition key hash falls inside this range."""
        if self.min_inclusive is not None and key_hash < self.min_inclusive:
            return False
        if self.max_exclusive is not None and key_hash >= self.max_exclusive:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "min_inclusive": self.min_inclusive,
            "max_exclusive": self.max_exclusive,
            "parents": list(self.parents),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PartitionRange:
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            min_inclusive=data.get("min_inclusive"),
            max_exclusive=data.get("max_exclusive"),
            parents=tuple(data.get("parents") or ()),
        )


@dataclass(frozen=True)
class ChangeRecord:
    """One observed change read from a partition's change feed."""

    id: str
    partition_id: PartitionId
    sequence: int
    document: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "partition_id": self.partition_id,
            "sequence": self.sequence,
            "document": self.document,
        }


@dataclass(frozen=True)
class RangesPage:
    """One page of a partition range listing."""

    ranges: list[PartitionRange]
    next_page_token: PageToken | None = None


@dataclass(frozen=True)
class ChangeBatch:
    """One response of a per-partition change read."""

    records: list[ChangeRecord]
    has_more: bool
    continuation: ContinuationToken | None


@dataclass
class ReadResult:
    """Outcome of a checkpointed read over all partitions."""

    checkpoint: Checkpoint
    change_count: int = 0
    partitions_read: int = 0
    batches_read: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "checkpoint": self.checkpoint.to_dict(),
            "change_count": self.change_count,
            "partitions_read": self.partitions_read,
            "batches_read": self.batches_read,
            "cancelled": self.cancelled,
            "duration_seconds": self.duration_seconds,
        }


@runtime_checkable
class PartitionRangeLister(Protocol):
    """Protocol for the paged partition range listing capability."""

    async def list_partition_ranges_page(
        self,
        collection: CollectionRef,
        page_token: PageToken | None = None,
    ) -> RangesPage:
        """
        Fetch one page of partition ranges.

        Args:
            collection: The collection to list.
            page_token: Continuation from the previous page, None for the first.

        Returns:
            The page, with next_page_token None when the listing is exhausted.
        """
        ...


@runtime_checkable
class PartitionChangeSource(Protocol):
    """Protocol for the per-partition change read capability."""

    async def read_partition_changes(
        self,
        collection: CollectionRef,
        partition_id: PartitionId,
        continuation: ContinuationToken | None,
        start_from_beginning: bool = True,
        max_item_count: int | None = None,
    ) -> ChangeBatch:
        """
        Read the next batch of changes from one partition.

        Args:
            collection: The collection to read.
            partition_id: The partition range id.
            continuation: Token to resume after, None to start fresh.
            start_from_beginning: Without a token, start at the beginning
                of the partition instead of its current end.
            max_item_count: Batch size cap, None to let the store decide.

        Returns:
            The batch of records with its continuation token.

        Raises:
            InvalidCheckpointEntryError: If the token is rejected.
        """
        ...


@runtime_checkable
class CollectionProvisioner(Protocol):
    """Protocol for idempotent collection get-or-create."""

    async def ensure_collection(
        self,
        database_id: str,
        collection_id: str,
        partition_key_path: str,
    ) -> CollectionRef:
        """Get or create a partitioned collection."""
        ...


@runtime_checkable
class FeedStore(PartitionRangeLister, PartitionChangeSource, CollectionProvisioner, Protocol):
    """Protocol for a complete partitioned change feed store."""

    async def insert_document(
        self,
        collection: CollectionRef,
        document: dict[str, Any],
    ) -> ChangeRecord:
        """Insert a document, appending it to its partition's feed."""
        ...
