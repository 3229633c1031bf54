"""Partitioned change feed stores."""

from feedcursor.store.base import FeedStoreBase
from feedcursor.store.memory import InMemoryFeedStore
from feedcursor.store.mongo import MongoFeedStore

__all__ = ["FeedStoreBase", "InMemoryFeedStore", "MongoFeedStore"]
