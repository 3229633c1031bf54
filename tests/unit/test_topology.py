"""Unit tests for partition topology resolution."""

from __future__ import annotations

import pytest

from feedcursor.core.exceptions import TopologyUnavailableError
from feedcursor.core.types import CollectionRef, PartitionRange, RangesPage
from feedcursor.feed.topology import PartitionTopologyResolver

from fakes import StaticLister

COLLECTION = CollectionRef("feeddb", "readings", "/deviceId")


def _pages() -> list[RangesPage]:
    return [
        RangesPage([PartitionRange("0"), PartitionRange("1")], next_page_token="a"),
        RangesPage([PartitionRange("2")], next_page_token="b"),
        RangesPage([PartitionRange("3")], next_page_token=None),
    ]


@pytest.mark.asyncio
class TestPartitionTopologyResolver:
    """Tests for PartitionTopologyResolver."""

    async def test_concatenates_pages_in_order(self):
        """Test all pages are fetched and concatenated."""
        lister = StaticLister(_pages())

        ranges = await PartitionTopologyResolver(lister).list_partition_ranges(COLLECTION)

        assert [r.id for r in ranges] == ["0", "1", "2", "3"]
        assert lister.calls == [None, "a", "b"]

    async def test_single_page(self):
        """Test a listing that fits one page."""
        lister = StaticLister([RangesPage([PartitionRange("0")])])

        ranges = await PartitionTopologyResolver(lister).list_partition_ranges(COLLECTION)

        assert ranges == [PartitionRange("0")]
        assert lister.calls == [None]

    async def test_empty_listing(self):
        """Test a collection without ranges resolves to an empty list."""
        lister = StaticLister([RangesPage([])])

        assert await PartitionTopologyResolver(lister).list_partition_ranges(COLLECTION) == []

    async def test_failed_page_fails_resolution(self):
        """Test a failure on a later page discards earlier pages."""
        lister = StaticLister(_pages(), fail_on_call=2)

        with pytest.raises(TopologyUnavailableError) as exc_info:
            await PartitionTopologyResolver(lister).list_partition_ranges(COLLECTION)

        assert exc_info.value.namespace == "feeddb.readings"
        assert isinstance(exc_info.value.cause, TimeoutError)
        assert lister.calls == [None, "a"]
