"""In-memory partitioned change feed store."""

from __future__ import annotations

import uuid
from typing import Any

from feedcursor.core.exceptions import (
    CollectionError,
    InvalidCheckpointEntryError,
    PartitionNotFoundError,
)
from feedcursor.core.types import ChangeBatch, ChangeRecord, CollectionRef, PartitionRange, RangesPage
from feedcursor.observability.logging import get_logger
from feedcursor.store.base import (
    FeedStoreBase,
    get_partition_key,
    hash_partition_key,
    parse_sequence_token,
    split_key_space,
)

logger = get_logger(__name__)


class _RangeState:
    """A partition range and its change feed."""

    def __init__(self, partition: PartitionRange) -> None:
        self.partition = partition
        self.records: list[ChangeRecord] = []
        self.retired = False


class _CollectionState:
    """Ranges of one collection, in creation order."""

    def __init__(self, ref: CollectionRef) -> None:
        self.ref = ref
        self.ranges: dict[str, _RangeState] = {}
        self.next_range_id = 0

    def new_range_id(self) -> str:
        range_id = str(self.next_range_id)
        self.next_range_id += 1
        return range_id

    def active(self) -> list[_RangeState]:
        return [state for state in self.ranges.values() if not state.retired]


class InMemoryFeedStore(FeedStoreBase):
    """
    Partitioned change feed store kept in process memory.

    Continuation tokens are the number of records consumed from a range.
    Splitting a range retires it and creates two children whose feeds
    replay the parent's records, re-sequenced from the child's beginning.
    """

    def __init__(
        self,
        partition_count: int = 4,
        range_page_size: int = 100,
        batch_size: int = 100,
    ) -> None:
        if partition_count < 1 or range_page_size < 1 or batch_size < 1:
            raise ValueError("partition_count, range_page_size and batch_size must be positive")
        self._partition_count = partition_count
        self._range_page_size = range_page_size
        self._batch_size = batch_size
        self._collections: dict[str, _CollectionState] = {}

    async def ensure_collection(
        self,
        database_id: str,
        collection_id: str,
        partition_key_path: str,
    ) -> CollectionRef:
        """Get or create a collection with the configured number of ranges."""
        ref = CollectionRef(database_id, collection_id, partition_key_path)
        existing = self._collections.get(ref.namespace)

        if existing is not None:
            if existing.ref.partition_key_path != partition_key_path:
                raise CollectionError(
                    ref.namespace,
                    f"exists with partition key '{existing.ref.partition_key_path}'",
                )
            return existing.ref

        state = _CollectionState(ref)
        for low, high in split_key_space(self._partition_count):
            range_id = state.new_range_id()
            state.ranges[range_id] = _RangeState(PartitionRange(range_id, low, high))
        self._collections[ref.namespace] = state

        logger.info(
            "Created collection",
            namespace=ref.namespace,
            partitions=self._partition_count,
        )
        return ref

    async def list_partition_ranges_page(
        self,
        collection: CollectionRef,
        page_token: str | None = None,
    ) -> RangesPage:
        """List active ranges; the page token is the offset of the next page."""
        active = self._collection(collection).active()
        offset = int(page_token) if page_token else 0
        end = offset + self._range_page_size
        page = [state.partition for state in active[offset:end]]
        return RangesPage(ranges=page, next_page_token=str(end) if end < len(active) else None)

    async def read_partition_changes(
        self,
        collection: CollectionRef,
        partition_id: str,
        continuation: str | None,
        start_from_beginning: bool = True,
        max_item_count: int | None = None,
    ) -> ChangeBatch:
        """Read up to one batch of records after the continuation."""
        state = self._range(collection, partition_id)
        records = state.records

        if continuation is None:
            position = 0 if start_from_beginning else len(records)
        else:
            position = parse_sequence_token(partition_id, continuation)
            if position > len(records):
                raise InvalidCheckpointEntryError(
                    partition_id, continuation, "ahead of the partition's feed"
                )

        limit = max_item_count if max_item_count and max_item_count > 0 else self._batch_size
        batch = records[position:position + limit]
        next_position = position + len(batch)

        return ChangeBatch(
            records=list(batch),
            has_more=next_position < len(records),
            continuation=str(next_position),
        )

    async def insert_document(
        self,
        collection: CollectionRef,
        document: dict[str, Any],
    ) -> ChangeRecord:
        """Append a document to the feed of the range owning its key."""
        state = self._collection(collection)
        key_hash = hash_partition_key(get_partition_key(document, collection.partition_key_field))

        for range_state in state.active():
            if range_state.partition.contains(key_hash):
                break
        else:
            raise CollectionError(collection.namespace, "no range owns the partition key")

        doc = dict(document)
        doc.setdefault("id", uuid.uuid4().hex)
        record = ChangeRecord(
            id=str(doc["id"]),
            partition_id=range_state.partition.id,
            sequence=len(range_state.records) + 1,
            document=doc,
        )
        range_state.records.append(record)
        return record

    async def drop_collection(self, collection: CollectionRef) -> None:
        """Forget a collection and all of its ranges."""
        self._collections.pop(collection.namespace, None)

    def split_range(
        self,
        collection: CollectionRef,
        range_id: str,
    ) -> tuple[PartitionRange, PartitionRange]:
        """
        Split an active range in two.

        Returns:
            The two child ranges, which replace the parent in listings.
        """
        state = self._collection(collection)
        parent = self._range(collection, range_id)
        low = parent.partition.min_inclusive or 0
        high = parent.partition.max_exclusive
        if high is None or high - low < 2:
            raise ValueError(f"Range '{range_id}' is too narrow to split")

        children: list[_RangeState] = []
        for child_low, child_high in split_key_space(2, low, high):
            child = _RangeState(
                PartitionRange(state.new_range_id(), child_low, child_high, parents=(range_id,))
            )
            for record in parent.records:
                key_hash = hash_partition_key(
                    get_partition_key(record.document, collection.partition_key_field)
                )
                if child.partition.contains(key_hash):
                    child.records.append(
                        ChangeRecord(
                            id=record.id,
                            partition_id=child.partition.id,
                            sequence=len(child.records) + 1,
                            document=record.document,
                        )
                    )
            state.ranges[child.partition.id] = child
            children.append(child)

        parent.retired = True
        logger.info(
            "Split partition range",
            namespace=collection.namespace,
            parent=range_id,
            children=[c.partition.id for c in children],
        )
        return children[0].partition, children[1].partition

    def count(self, collection: CollectionRef, partition_id: str | None = None) -> int:
        """Count records in one range, or in all active ranges."""
        if partition_id is not None:
            return len(self._range(collection, partition_id).records)
        return sum(len(s.records) for s in self._collection(collection).active())

    def _collection(self, collection: CollectionRef) -> _CollectionState:
        state = self._collections.get(collection.namespace)
        if state is None:
            raise CollectionError(collection.namespace, "does not exist")
        return state

    def _range(self, collection: CollectionRef, partition_id: str) -> _RangeState:
        state = self._collection(collection).ranges.get(partition_id)
        if state is None or state.retired:
            raise PartitionNotFoundError(collection.namespace, partition_id)
        return state
