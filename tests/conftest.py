"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import uuid
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

# Set test environment
os.environ.setdefault("FEEDCURSOR_ENVIRONMENT", "test")

from feedcursor.core.config import Settings, configure_settings
from feedcursor.core.types import CollectionRef, PartitionRange
from feedcursor.observability.logging import configure_logging
from feedcursor.store.memory import InMemoryFeedStore

from fakes import FlakyStore


@pytest.fixture(scope="session", autouse=True)
def _configure_logging() -> None:
    """Configure quiet logging once for the session."""
    configure_logging(level="WARNING", format_type="console", force=True)


@pytest.fixture(autouse=True)
def test_settings() -> Generator[Settings, None, None]:
    """Install fresh settings for every test."""
    settings = Settings()
    configure_settings(settings)
    yield settings
    configure_settings(None)


@pytest.fixture
def memory_store() -> InMemoryFeedStore:
    """Two-partition in-memory store, one range per listing page."""
    return InMemoryFeedStore(partition_count=2, range_page_size=1, batch_size=10)


@pytest.fixture
def flaky_store() -> FlakyStore:
    """Two-partition flaky store with small batches."""
    return FlakyStore(partition_count=2, range_page_size=10, batch_size=5)


@pytest_asyncio.fixture
async def collection(memory_store: InMemoryFeedStore) -> CollectionRef:
    """Device readings collection in the memory store."""
    return await memory_store.ensure_collection("feeddb", "readings", "/deviceId")


@pytest_asyncio.fixture
async def flaky_collection(flaky_store: FlakyStore) -> CollectionRef:
    """Device readings collection in the flaky store."""
    return await flaky_store.ensure_collection("feeddb", "readings", "/deviceId")


@pytest_asyncio.fixture
async def ranges(
    memory_store: InMemoryFeedStore, collection: CollectionRef
) -> list[PartitionRange]:
    """The memory collection's ranges, in listing order."""
    page = await memory_store.list_partition_ranges_page(collection)
    first = page.ranges
    page = await memory_store.list_partition_ranges_page(collection, page.next_page_token)
    return first + page.ranges


@pytest_asyncio.fixture
async def flaky_ranges(
    flaky_store: FlakyStore, flaky_collection: CollectionRef
) -> list[PartitionRange]:
    """The flaky collection's ranges, in listing order."""
    page = await flaky_store.list_partition_ranges_page(flaky_collection)
    return page.ranges


@pytest_asyncio.fixture
async def mongo_client() -> AsyncGenerator:
    """Create a MongoDB client for testing, skipping when no server answers."""
    from motor.motor_asyncio import AsyncIOMotorClient
    from pymongo.errors import PyMongoError

    settings = Settings()
    client = AsyncIOMotorClient(
        settings.mongodb.uri.get_secret_value(),
        serverSelectionTimeoutMS=1000,
    )
    try:
        await client.admin.command("ping")
    except PyMongoError:
        client.close()
        pytest.skip("MongoDB is not available")

    yield client

    client.close()


@pytest_asyncio.fixture
async def test_database(mongo_client) -> AsyncGenerator[str, None]:
    """Unique database for an integration test, dropped afterwards."""
    name = f"feedcursor_test_{uuid.uuid4().hex[:8]}"
    yield name
    await mongo_client.drop_database(name)
