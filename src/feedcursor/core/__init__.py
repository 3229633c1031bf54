"""Core module for feedcursor."""

from feedcursor.core.config import Settings
from feedcursor.core.exceptions import FeedCursorError
from feedcursor.core.types import (
    ChangeBatch,
    ChangeRecord,
    CollectionRef,
    FeedStore,
    PartitionRange,
    RangesPage,
    ReadResult,
)

__all__ = [
    "Settings",
    "FeedCursorError",
    "ChangeBatch",
    "ChangeRecord",
    "CollectionRef",
    "FeedStore",
    "PartitionRange",
    "RangesPage",
    "ReadResult",
]
