"""Device reading walkthrough of checkpointed change feed reads."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from feedcursor.core.types import ChangeRecord, CollectionRef
from feedcursor.feed.checkpoint import Checkpoint
from feedcursor.feed.reader import ChangeFeedReader
from feedcursor.observability.logging import get_logger
from feedcursor.store.base import FeedStoreBase

logger = get_logger(__name__)


class DeviceReading(BaseModel):
    """A sensor reading stored in the demo collection."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    device_id: str = Field(..., alias="deviceId")
    reading_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="readingTime",
    )
    metric_type: str = Field(..., alias="metricType")
    unit: str
    metric_value: float = Field(..., alias="metricValue")

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape."""
        return self.model_dump(mode="json", by_alias=True)


class DemoReport(BaseModel):
    """Outcome of a demo run."""

    initial_changes: int
    incremental_changes: int
    checkpoint: dict[str, str]


async def run_demo(
    store: FeedStoreBase,
    collection: CollectionRef,
    reader: ChangeFeedReader,
    reading_count: int = 100,
    echo: Callable[[str], None] | None = None,
) -> DemoReport:
    """
    Insert readings, read them all, insert two more, then read only those.

    Args:
        store: Store holding the collection.
        collection: The demo collection.
        reader: Change feed reader over the store.
        reading_count: Readings inserted before the first read.
        echo: Optional sink for progress lines.

    Returns:
        Change counts of both reads and the final checkpoint.
    """
    say = echo or (lambda line: None)

    def on_change(record: ChangeRecord) -> None:
        say(f"\tRead document {record.id} from the change feed.")

    say(f"Inserting {reading_count} documents")
    await asyncio.gather(*[
        store.insert_document(
            collection,
            DeviceReading(
                device_id=f"xsensr-{i}",
                metric_type="Temperature",
                unit="Celsius",
                metric_value=990,
            ).to_document(),
        )
        for i in range(reading_count)
    ])

    say("Reading all changes from the beginning")
    checkpoint = Checkpoint()
    first = await reader.read_changes(collection, checkpoint, on_change=on_change)
    say(f"Read {first.change_count} documents from the change feed")

    say("Inserting 2 new documents")
    await store.insert_document(
        collection,
        DeviceReading(
            device_id="xsensr-201", metric_type="Temperature", unit="Celsius", metric_value=1000
        ).to_document(),
    )
    await store.insert_document(
        collection,
        DeviceReading(
            device_id="xsensr-212", metric_type="Pressure", unit="psi", metric_value=1000
        ).to_document(),
    )

    say("Reading changes using the change feed from the last checkpoint")
    second = await reader.read_changes(collection, checkpoint, on_change=on_change)
    say(f"Read {second.change_count} documents from the change feed")

    logger.info(
        "Demo finished",
        namespace=collection.namespace,
        initial_changes=first.change_count,
        incremental_changes=second.change_count,
    )
    return DemoReport(
        initial_changes=first.change_count,
        incremental_changes=second.change_count,
        checkpoint=checkpoint.to_dict(),
    )
