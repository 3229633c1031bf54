"""Partition topology resolution."""

from __future__ import annotations

from feedcursor.core.exceptions import TopologyUnavailableError
from feedcursor.core.types import CollectionRef, PartitionRange, PartitionRangeLister
from feedcursor.observability.logging import get_logger

logger = get_logger(__name__)


class PartitionTopologyResolver:
    """
    Enumerates the partition key ranges of a collection.

    Pages through the store's range listing until it reports no further
    page. The result is all or nothing: a failed page fails the whole
    resolution, and no retries are attempted here.
    """

    def __init__(self, lister: PartitionRangeLister) -> None:
        self._lister = lister

    async def list_partition_ranges(self, collection: CollectionRef) -> list[PartitionRange]:
        """
        List every partition range of a collection.

        Args:
            collection: The collection to resolve.

        Returns:
            The ranges, in the order the store returned them.

        Raises:
            TopologyUnavailableError: If any page request fails.
        """
        ranges: list[PartitionRange] = []
        page_token: str | None = None
        pages = 0

        while True:
            try:
                page = await self._lister.list_partition_ranges_page(collection, page_token)
            except TopologyUnavailableError:
                raise
            except Exception as e:
                logger.warning(
                    "Partition range listing failed",
                    namespace=collection.namespace,
                    pages_read=pages,
                    error=str(e),
                )
                raise TopologyUnavailableError(collection.namespace, e) from e

            pages += 1
            ranges.extend(page.ranges)
            page_token = page.next_page_token
            if page_token is None:
                break

        logger.debug(
            "Resolved partition topology",
            namespace=collection.namespace,
            ranges=len(ranges),
            pages=pages,
        )
        return ranges
