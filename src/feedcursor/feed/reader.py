"""Checkpointed change feed reader."""

from __future__ import annotations

import asyncio
import inspect
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from feedcursor.core.config import Settings, get_settings
from feedcursor.core.exceptions import (
    InvalidCheckpointEntryError,
    PartitionReadFailedError,
)
from feedcursor.core.types import (
    ChangeBatch,
    ChangeRecord,
    CollectionRef,
    PartitionChangeSource,
    PartitionRange,
    PartitionRangeLister,
    ReadResult,
)
from feedcursor.feed.checkpoint import Checkpoint
from feedcursor.feed.topology import PartitionTopologyResolver
from feedcursor.observability.logging import get_logger, get_partition_logger
from feedcursor.observability.metrics import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

ChangeHandler = Callable[[ChangeRecord], Union[Awaitable[Any], Any]]


class ChangeFeedReader:
    """
    Reads every change made to a partitioned collection since a checkpoint.

    Each call resolves the current partition ranges, then drains every
    range from the token stored for it (or from the beginning when there
    is none) until the store reports no more results. The checkpoint is
    advanced after each batch, so a failed call keeps the progress made
    up to the last consumed batch and a retried call resumes from there.

    Ranges are drained as independent tasks, at most ``max_concurrency``
    at a time. The reader keeps no state between calls.
    """

    def __init__(
        self,
        store: Any,
        settings: Settings | None = None,
        max_concurrency: int | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize the reader.

        Args:
            store: Object implementing both PartitionRangeLister and
                PartitionChangeSource.
            settings: Settings, the global ones by default.
            max_concurrency: Partitions drained at once, from settings by default.
            metrics: Metrics collector, None to follow settings.
        """
        if not isinstance(store, PartitionRangeLister) or not isinstance(
            store, PartitionChangeSource
        ):
            raise TypeError("store must provide range listing and change reads")

        self._settings = settings or get_settings()
        self._source: PartitionChangeSource = store
        self._resolver = PartitionTopologyResolver(store)
        self._max_concurrency = max_concurrency or self._settings.feed.max_concurrency

        if metrics is None and self._settings.observability.metrics_enabled:
            metrics = get_metrics_collector()
        self._metrics = metrics

    @property
    def resolver(self) -> PartitionTopologyResolver:
        """Get the topology resolver."""
        return self._resolver

    @property
    def max_concurrency(self) -> int:
        """Get the partition drain concurrency limit."""
        return self._max_concurrency

    async def read_changes(
        self,
        collection: CollectionRef,
        checkpoint: Checkpoint | dict[str, str] | None = None,
        *,
        on_change: ChangeHandler | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ReadResult:
        """
        Read all changes made since the checkpoint.

        Args:
            collection: The collection to read.
            checkpoint: Partition tokens from the previous call. A plain dict
                is updated in place.
            on_change: Optional callback (sync or async) invoked per record.
            cancel_event: When set, draining stops before the next batch.

        Returns:
            The updated checkpoint and read totals.

        Raises:
            TopologyUnavailableError: If the partition ranges cannot be listed.
            PartitionReadFailedError: If draining a partition fails.
            InvalidCheckpointEntryError: If the store rejects a stored token.
        """
        started = time.monotonic()
        cp = Checkpoint.coerce(checkpoint)
        result = ReadResult(checkpoint=cp)

        logger.debug(
            "Reading change feed",
            namespace=collection.namespace,
            checkpoint_entries=len(cp),
        )

        try:
            ranges = await self._resolver.list_partition_ranges(collection)
            if self._metrics:
                self._metrics.set_partition_count(collection.namespace, len(ranges))

            await self._drain_all(collection, ranges, cp, result, on_change, cancel_event)

        except Exception as e:
            result.duration_seconds = time.monotonic() - started
            if self._metrics:
                self._metrics.record_read_call(
                    collection.namespace, "failure", result.duration_seconds
                )
            logger.error(
                "Change feed read failed",
                namespace=collection.namespace,
                changes_read=result.change_count,
                error=str(e),
            )
            raise

        # Only a drain cut short by the event counts as cancelled
        result.cancelled = (
            cancel_event is not None
            and cancel_event.is_set()
            and result.partitions_read < len(ranges)
        )
        result.duration_seconds = time.monotonic() - started

        if self._metrics:
            status = "cancelled" if result.cancelled else "success"
            self._metrics.record_read_call(
                collection.namespace, status, result.duration_seconds
            )
            self._metrics.set_checkpoint_entries(collection.namespace, len(cp))

        logger.info(
            "Read changes from the change feed",
            namespace=collection.namespace,
            changes=result.change_count,
            partitions=result.partitions_read,
            batches=result.batches_read,
            cancelled=result.cancelled,
        )
        return result

    async def iter_changes(
        self,
        collection: CollectionRef,
        checkpoint: Checkpoint | dict[str, str] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[ChangeRecord]:
        """
        Lazily yield every change made since the checkpoint.

        Partitions are visited one after the other. A batch's token is
        committed when the consumer asks for the record following the
        batch's last one, so stopping early re-reads at most one batch.

        Args:
            collection: The collection to read.
            checkpoint: Partition tokens, updated as records are consumed.
            cancel_event: When set, iteration ends before the next batch.

        Yields:
            Change records in per-partition order.
        """
        cp = Checkpoint.coerce(checkpoint)
        ranges = await self._resolver.list_partition_ranges(collection)

        for partition in ranges:
            if cancel_event is not None and cancel_event.is_set():
                return
            async with aclosing(
                self.iter_partition(collection, partition.id, cp, cancel_event=cancel_event)
            ) as records:
                async for record in records:
                    yield record

    async def iter_partition(
        self,
        collection: CollectionRef,
        partition_id: str,
        checkpoint: Checkpoint,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[ChangeRecord]:
        """Lazily yield the new changes of one partition."""
        async with aclosing(
            self._batches(collection, partition_id, checkpoint, cancel_event)
        ) as stream:
            async for batch in stream:
                for record in batch.records:
                    yield record

    async def read_partition(
        self,
        collection: CollectionRef,
        partition_id: str,
        checkpoint: Checkpoint | dict[str, str],
        *,
        on_change: ChangeHandler | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """
        Drain a single partition from its checkpointed position.

        Returns:
            Number of changes read.
        """
        cp = Checkpoint.coerce(checkpoint)
        result = ReadResult(checkpoint=cp)
        await self._drain_partition(collection, partition_id, cp, result, on_change, cancel_event)
        return result.change_count

    async def _drain_all(
        self,
        collection: CollectionRef,
        ranges: list[PartitionRange],
        checkpoint: Checkpoint,
        result: ReadResult,
        on_change: ChangeHandler | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        """Drain all ranges as bounded concurrent tasks, failing fast."""
        if not ranges:
            return

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def drain(partition: PartitionRange) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return
                await self._drain_partition(
                    collection, partition.id, checkpoint, result, on_change, cancel_event
                )

        tasks = [
            asyncio.create_task(drain(partition), name=f"drain_{partition.id}")
            for partition in ranges
        ]

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            # Abort siblings on the first failure (or on outer cancellation)
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        for task in tasks:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                raise error

    async def _drain_partition(
        self,
        collection: CollectionRef,
        partition_id: str,
        checkpoint: Checkpoint,
        result: ReadResult,
        on_change: ChangeHandler | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        """Read one partition until the store reports no more results."""
        log = get_partition_logger(collection.namespace, partition_id)
        count = 0
        batches = 0
        drained = False

        async with aclosing(
            self._batches(collection, partition_id, checkpoint, cancel_event)
        ) as stream:
            async for batch in stream:
                for record in batch.records:
                    if on_change is not None:
                        await self._emit(collection, partition_id, record, on_change)
                    count += 1
                    result.change_count += 1
                batches += 1
                result.batches_read += 1
                drained = not batch.has_more

        if not drained:
            log.info("Partition drain cancelled", changes=count, batches=batches)
            return

        result.partitions_read += 1
        log.debug("Partition drained", changes=count, batches=batches)

    async def _batches(
        self,
        collection: CollectionRef,
        partition_id: str,
        checkpoint: Checkpoint,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[ChangeBatch]:
        """
        Yield the partition's batches, committing each token after its batch.

        The token of a yielded batch is stored once the consumer resumes the
        generator, i.e. after it has handled every record of the batch.
        """
        token = checkpoint.get(partition_id)

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return

            batch = await self._read_batch(collection, partition_id, token)
            if self._metrics:
                self._metrics.record_batch(collection.namespace, len(batch.records))

            yield batch

            await checkpoint.advance(partition_id, batch.continuation)
            if batch.continuation is not None:
                token = batch.continuation

            if not batch.has_more:
                return

    async def _read_batch(
        self,
        collection: CollectionRef,
        partition_id: str,
        token: str | None,
    ) -> ChangeBatch:
        """Read one batch, translating store failures."""
        try:
            return await self._source.read_partition_changes(
                collection,
                partition_id,
                token,
                start_from_beginning=True,
                max_item_count=None,
            )
        except (InvalidCheckpointEntryError, PartitionReadFailedError):
            if self._metrics:
                self._metrics.record_partition_failure(collection.namespace)
            raise
        except Exception as e:
            if self._metrics:
                self._metrics.record_partition_failure(collection.namespace)
            logger.warning(
                "Partition read failed",
                namespace=collection.namespace,
                partition_id=partition_id,
                error=str(e),
            )
            raise PartitionReadFailedError(partition_id, e, collection.namespace) from e

    async def _emit(
        self,
        collection: CollectionRef,
        partition_id: str,
        record: ChangeRecord,
        on_change: ChangeHandler,
    ) -> None:
        """Hand a record to the caller's handler."""
        try:
            outcome = on_change(record)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            raise PartitionReadFailedError(partition_id, e, collection.namespace) from e
