"""MongoDB-backed partitioned change feed store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING, IndexModel, ReturnDocument
from pymongo.errors import CollectionInvalid, DuplicateKeyError, PyMongoError

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

# Internal fields stamped on every stored document
RANGE_FIELD = "_range"
SEQUENCE_FIELD = "_seq"
HOLE_FIELD = "_hole"


class MongoFeedStore(FeedStoreBase):
    """
    Partitioned change feed store on top of plain MongoDB collections.

    Each collection's partition ranges are described by documents in a
    metadata collection, one per range, carrying a sequence counter.
    Inserted documents are stamped with their range id and the next
    sequence number of that range; a range's feed is its documents in
    sequence order, and continuation tokens are the last sequence read.

    Sequence numbers are allocated before the insert, so concurrent
    writers to the same range can commit out of order. Reads therefore
    stop at the first missing sequence number and pick it up on a later
    call. An insert that fails after allocating its number fills the
    number with a hole marker, which reads skip.
    """

    def __init__(
        self,
        client: AsyncIOMotorClient[dict[str, Any]],
        database: str = "feedcursor",
        ranges_collection: str = "partition_ranges",
        partition_count: int = 4,
        range_page_size: int = 100,
        batch_size: int = 100,
    ) -> None:
        self._client = client
        self._database_name = database
        self._ranges_collection_name = ranges_collection
        self._partition_count = partition_count
        self._range_page_size = range_page_size
        self._batch_size = batch_size
        self._ranges: AsyncIOMotorCollection[dict[str, Any]] | None = None

    @property
    def ranges(self) -> AsyncIOMotorCollection[dict[str, Any]]:
        """Get the range metadata collection."""
        if self._ranges is None:
            self._ranges = self._client[self._database_name][self._ranges_collection_name]
        return self._ranges

    def data_collection(self, collection: CollectionRef) -> AsyncIOMotorCollection[dict[str, Any]]:
        """Get the collection holding a feed's documents."""
        return self._client[collection.database][collection.collection]

    async def ensure_collection(
        self,
        database_id: str,
        collection_id: str,
        partition_key_path: str,
    ) -> CollectionRef:
        """Get or create the collection, its indexes and its range metadata."""
        ref = CollectionRef(database_id, collection_id, partition_key_path)
        db = self._client[database_id]

        try:
            if collection_id not in await db.list_collection_names():
                try:
                    await db.create_collection(collection_id)
                    logger.info("Created collection", namespace=ref.namespace)
                except CollectionInvalid:
                    # Created concurrently
                    pass

            await db[collection_id].create_indexes([
                IndexModel([(RANGE_FIELD, ASCENDING), (SEQUENCE_FIELD, ASCENDING)], unique=True),
            ])
            await self.ranges.create_indexes([
                IndexModel([("namespace", ASCENDING), ("range_id", ASCENDING)], unique=True),
                IndexModel([("namespace", ASCENDING), ("status", ASCENDING)]),
            ])

            existing = await self.ranges.find_one({"namespace": ref.namespace})
            if existing is None:
                await self._create_ranges(ref)
            elif existing.get("partition_key_path", partition_key_path) != partition_key_path:
                raise CollectionError(
                    ref.namespace,
                    f"exists with partition key '{existing['partition_key_path']}'",
                )

        except PyMongoError as e:
            raise CollectionError(ref.namespace, str(e)) from e

        return ref

    async def _create_ranges(self, ref: CollectionRef) -> None:
        """Write the initial range metadata of a collection."""
        now = datetime.utcnow()
        for index, (low, high) in enumerate(split_key_space(self._partition_count)):
            range_id = str(index)
            try:
                await self.ranges.update_one(
                    {"namespace": ref.namespace, "range_id": range_id},
                    {
                        "$setOnInsert": {
                            "namespace": ref.namespace,
                            "range_id": range_id,
                            "partition_key_path": ref.partition_key_path,
                            "min_inclusive": low,
                            "max_exclusive": high,
                            "parents": [],
                            "status": "active",
                            "seq": 0,
                            "created_at": now,
                        }
                    },
                    upsert=True,
                )
            except DuplicateKeyError:
                # Another process created the same range
                continue

        logger.info(
            "Created partition ranges",
            namespace=ref.namespace,
            partitions=self._partition_count,
        )

    async def list_partition_ranges_page(
        self,
        collection: CollectionRef,
        page_token: str | None = None,
    ) -> RangesPage:
        """List active ranges; the page token is the last range id returned."""
        query: dict[str, Any] = {"namespace": collection.namespace, "status": "active"}
        if page_token is not None:
            query["range_id"] = {"$gt": page_token}

        cursor = (
            self.ranges.find(query)
            .sort("range_id", ASCENDING)
            .limit(self._range_page_size + 1)
        )
        docs = await cursor.to_list(length=self._range_page_size + 1)

        has_next = len(docs) > self._range_page_size
        docs = docs[: self._range_page_size]
        ranges = [
            PartitionRange(
                id=doc["range_id"],
                min_inclusive=doc.get("min_inclusive"),
                max_exclusive=doc.get("max_exclusive"),
                parents=tuple(doc.get("parents") or ()),
            )
            for doc in docs
        ]

        return RangesPage(
            ranges=ranges,
            next_page_token=ranges[-1].id if has_next and ranges else None,
        )

    async def read_partition_changes(
        self,
        collection: CollectionRef,
        partition_id: str,
        continuation: str | None,
        start_from_beginning: bool = True,
        max_item_count: int | None = None,
    ) -> ChangeBatch:
        """Read documents of a range with a sequence after the continuation."""
        range_doc = await self.ranges.find_one(
            {"namespace": collection.namespace, "range_id": partition_id}
        )
        if range_doc is None:
            raise PartitionNotFoundError(collection.namespace, partition_id)

        head = int(range_doc.get("seq", 0))

        if continuation is None:
            position = 0 if start_from_beginning else head
        else:
            position = parse_sequence_token(partition_id, continuation)
            if position > head:
                raise InvalidCheckpointEntryError(
                    partition_id, continuation, "ahead of the partition's feed"
                )

        limit = max_item_count if max_item_count and max_item_count > 0 else self._batch_size
        cursor = (
            self.data_collection(collection)
            .find({RANGE_FIELD: partition_id, SEQUENCE_FIELD: {"$gt": position}})
            .sort(SEQUENCE_FIELD, ASCENDING)
            .limit(limit + 1)
        )
        docs = await cursor.to_list(length=limit + 1)

        # Keep the run of consecutive sequences; a gap is an insert still in flight
        run: list[dict[str, Any]] = []
        for doc in docs:
            if int(doc[SEQUENCE_FIELD]) != position + len(run) + 1:
                break
            run.append(doc)

        has_more = len(run) > limit
        run = run[:limit]
        records = [self._to_record(doc) for doc in run if not doc.get(HOLE_FIELD)]
        last = int(run[-1][SEQUENCE_FIELD]) if run else position

        if len(run) < len(docs[:limit]):
            logger.debug(
                "Stopped at sequence gap",
                namespace=collection.namespace,
                partition_id=partition_id,
                sequence=last + 1,
            )

        return ChangeBatch(records=records, has_more=has_more, continuation=str(last))

    async def insert_document(
        self,
        collection: CollectionRef,
        document: dict[str, Any],
    ) -> ChangeRecord:
        """Allocate the next sequence of the owning range and insert."""
        key_hash = hash_partition_key(get_partition_key(document, collection.partition_key_field))

        range_doc = await self.ranges.find_one_and_update(
            {
                "namespace": collection.namespace,
                "status": "active",
                "min_inclusive": {"$lte": key_hash},
                "max_exclusive": {"$gt": key_hash},
            },
            {"$inc": {"seq": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if range_doc is None:
            raise CollectionError(collection.namespace, "no range owns the partition key")

        doc = dict(document)
        doc[RANGE_FIELD] = range_doc["range_id"]
        doc[SEQUENCE_FIELD] = range_doc["seq"]

        try:
            await self.data_collection(collection).insert_one(doc)
        except PyMongoError as e:
            await self._fill_hole(collection, range_doc["range_id"], range_doc["seq"])
            raise CollectionError(collection.namespace, f"insert failed: {e}") from e

        return self._to_record(doc)

    async def _fill_hole(self, collection: CollectionRef, range_id: str, sequence: int) -> None:
        """Mark an allocated sequence number whose document was never stored."""
        try:
            await self.data_collection(collection).insert_one(
                {RANGE_FIELD: range_id, SEQUENCE_FIELD: sequence, HOLE_FIELD: True}
            )
        except DuplicateKeyError:
            # The failed insert was stored after all
            return
        except PyMongoError as e:
            logger.error(
                "Could not mark failed insert; reads of the range stop before it",
                namespace=collection.namespace,
                partition_id=range_id,
                sequence=sequence,
                error=str(e),
            )
            return

        logger.warning(
            "Marked failed insert as a hole",
            namespace=collection.namespace,
            partition_id=range_id,
            sequence=sequence,
        )

    async def drop_collection(self, collection: CollectionRef) -> None:
        """Drop the data collection and its range metadata."""
        try:
            await self.data_collection(collection).drop()
            await self.ranges.delete_many({"namespace": collection.namespace})
        except PyMongoError as e:
            raise CollectionError(collection.namespace, str(e)) from e

        logger.info("Dropped collection", namespace=collection.namespace)

    def _to_record(self, doc: dict[str, Any]) -> ChangeRecord:
        """Convert a stored document into a change record."""
        payload = {k: v for k, v in doc.items() if k not in (RANGE_FIELD, SEQUENCE_FIELD)}
        if "_id" in payload:
            payload["_id"] = str(payload["_id"])
        record_id = payload.get("id", payload.get("_id", ""))
        return ChangeRecord(
            id=str(record_id),
            partition_id=doc[RANGE_FIELD],
            sequence=int(doc[SEQUENCE_FIELD]),
            document=payload,
        )
