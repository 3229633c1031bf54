"""Test doubles and helpers for change feed tests."""

from __future__ import annotations

import asyncio
from typing import Any

from feedcursor.core.types import ChangeBatch, CollectionRef, PartitionRange, RangesPage
from feedcursor.store.base import hash_partition_key
from feedcursor.store.memory import InMemoryFeedStore


def keys_in_range(partition: PartitionRange, count: int, prefix: str = "xsensr") -> list[str]:
    """Find partition key values that hash into a range."""
    keys: list[str] = []
    i = 0
    while len(keys) < count:
        candidate = f"{prefix}-{i}"
        if partition.contains(hash_partition_key(candidate)):
            keys.append(candidate)
        i += 1
    return keys


def reading(device_id: str, value: float = 990.0) -> dict[str, Any]:
    """Build a device reading document."""
    return {
        "deviceId": device_id,
        "metricType": "Temperature",
        "unit": "Celsius",
        "metricValue": value,
    }


async def insert_into(
    store: Any,
    collection: CollectionRef,
    partition: PartitionRange,
    count: int,
    prefix: str = "xsensr",
) -> list[str]:
    """Insert ``count`` readings that all land in ``partition``."""
    ids = []
    for key in keys_in_range(partition, count, prefix=prefix):
        record = await store.insert_document(collection, reading(key))
        assert record.partition_id == partition.id
        ids.append(record.id)
    return ids


class FlakyStore(InMemoryFeedStore):
    """In-memory store whose reads and listings fail on demand."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.fail_reads: dict[str, int] = {}
        self.reads: dict[str, int] = {}
        self.fail_listing: bool = False
        self.read_delay: float = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    async def list_partition_ranges_page(
        self,
        collection: CollectionRef,
        page_token: str | None = None,
    ) -> RangesPage:
        if self.fail_listing:
            raise ConnectionError("listing connection reset")
        return await super().list_partition_ranges_page(collection, page_token)

    async def read_partition_changes(
        self,
        collection: CollectionRef,
        partition_id: str,
        continuation: str | None,
        start_from_beginning: bool = True,
        max_item_count: int | None = None,
    ) -> ChangeBatch:
        self.reads[partition_id] = self.reads.get(partition_id, 0) + 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.read_delay:
                await asyncio.sleep(self.read_delay)
            if self.fail_reads.get(partition_id) == self.reads[partition_id]:
                raise ConnectionError(f"read of partition {partition_id} reset")
            return await super().read_partition_changes(
                collection, partition_id, continuation, start_from_beginning, max_item_count
            )
        finally:
            self.in_flight -= 1


class StaticLister:
    """Range lister serving prepared pages keyed by the token requesting them."""

    def __init__(self, pages: list[RangesPage], fail_on_call: int | None = None) -> None:
        self.pages: dict[str | None, RangesPage] = {None: pages[0]}
        for previous, page in zip(pages, pages[1:]):
            self.pages[previous.next_page_token] = page
        self.calls: list[str | None] = []
        self.fail_on_call = fail_on_call

    async def list_partition_ranges_page(
        self,
        collection: CollectionRef,
        page_token: str | None = None,
    ) -> RangesPage:
        self.calls.append(page_token)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise TimeoutError("listing timed out")
        return self.pages[page_token]


class StallingStore(InMemoryFeedStore):
    """
    In-memory store that fails one partition while another is mid-read.

    The ``stall_on``-th read of ``stalled`` never returns; the
    ``fail_on``-th read of ``failing`` waits for that stall, then raises.
    """

    def __init__(
        self,
        failing: str,
        stalled: str,
        fail_on: int,
        stall_on: int,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.failing = failing
        self.stalled = stalled
        self.fail_on = fail_on
        self.stall_on = stall_on
        self.armed = True
        self.reads: dict[str, int] = {}
        self._stall_reached = asyncio.Event()

    async def read_partition_changes(
        self,
        collection: CollectionRef,
        partition_id: str,
        continuation: str | None,
        start_from_beginning: bool = True,
        max_item_count: int | None = None,
    ) -> ChangeBatch:
        count = self.reads[partition_id] = self.reads.get(partition_id, 0) + 1
        if self.armed and partition_id == self.stalled and count == self.stall_on:
            self._stall_reached.set()
            await asyncio.Event().wait()
        if self.armed and partition_id == self.failing and count == self.fail_on:
            await self._stall_reached.wait()
            raise ConnectionError(f"read of partition {partition_id} reset")
        return await super().read_partition_changes(
            collection, partition_id, continuation, start_from_beginning, max_item_count
        )
