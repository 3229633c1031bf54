"""Change feed traversal module."""

from feedcursor.feed.checkpoint import Checkpoint
from feedcursor.feed.checkpoint_store import CheckpointStore
from feedcursor.feed.reader import ChangeFeedReader
from feedcursor.feed.topology import PartitionTopologyResolver

__all__ = ["Checkpoint", "CheckpointStore", "ChangeFeedReader", "PartitionTopologyResolver"]
