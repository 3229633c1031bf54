"""Runtime orchestrator for checkpointed change feed reads."""

from __future__ import annotations

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from motor.motor_asyncio import AsyncIOMotorClient

from feedcursor import __version__
from feedcursor.core.config import Settings, get_settings
from feedcursor.core.types import CollectionRef, ReadResult
from feedcursor.feed.checkpoint import Checkpoint
from feedcursor.feed.checkpoint_store import CheckpointStore
from feedcursor.feed.reader import ChangeFeedReader, ChangeHandler
from feedcursor.observability.logging import LogContext, configure_logging, get_logger
from feedcursor.observability.metrics import get_metrics_collector
from feedcursor.resilience.retry import RetryPolicy, create_tenacity_retry
from feedcursor.store.base import FeedStoreBase

logger = get_logger(__name__)


class FeedRuntime:
    """
    Wires a store, a reader and checkpoint persistence together.

    Manages the lifecycle of:
    - the MongoDB connection (unless a store is injected)
    - the configured collection
    - persisted checkpoints
    - signal-driven cancellation of follow loops
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: FeedStoreBase | None = None,
        checkpoint_store: CheckpointStore | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._checkpoint_store = checkpoint_store
        self._running = False
        self._shutdown_event = asyncio.Event()

        self._mongo_client: AsyncIOMotorClient[dict[str, Any]] | None = None
        self._reader: ChangeFeedReader | None = None
        self._collection: CollectionRef | None = None

    @property
    def settings(self) -> Settings:
        """Get the runtime settings."""
        return self._settings

    @property
    def is_running(self) -> bool:
        """Check if runtime is running."""
        return self._running

    @property
    def store(self) -> FeedStoreBase:
        """Get the feed store."""
        if self._store is None:
            raise RuntimeError("Runtime not started")
        return self._store

    @property
    def reader(self) -> ChangeFeedReader:
        """Get the change feed reader."""
        if self._reader is None:
            raise RuntimeError("Runtime not started")
        return self._reader

    @property
    def collection(self) -> CollectionRef:
        """Get the configured collection."""
        if self._collection is None:
            raise RuntimeError("Runtime not started")
        return self._collection

    @property
    def checkpoint_store(self) -> CheckpointStore | None:
        """Get the checkpoint store, if checkpoints are persisted."""
        return self._checkpoint_store

    @property
    def shutdown_event(self) -> asyncio.Event:
        """Get the event that cancels in-flight reads between batches."""
        return self._shutdown_event

    async def start(self) -> None:
        """
        Start the runtime.

        Connects to MongoDB when no store was injected and provisions the
        configured collection.
        """
        if self._running:
            logger.warning("Runtime already running")
            return

        feed = self._settings.feed
        logger.info(
            "Starting feedcursor runtime",
            environment=self._settings.environment,
            database=feed.database_id,
            collection=feed.collection_id,
        )

        try:
            configure_logging(
                level=self._settings.observability.log_level,
                format_type=self._settings.observability.log_format,
            )
            if self._settings.observability.metrics_enabled:
                get_metrics_collector().initialize(__version__)

            if self._store is None:
                await self._init_mongodb()

            self._collection = await self.store.ensure_collection(
                feed.database_id,
                feed.collection_id,
                feed.partition_key_path,
            )
            self._reader = ChangeFeedReader(self.store, settings=self._settings)

            self._shutdown_event.clear()
            self._running = True
            logger.info("feedcursor runtime started", namespace=self._collection.namespace)

        except Exception as e:
            logger.error("Failed to start runtime", error=str(e))
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the runtime and close connections."""
        self._shutdown_event.set()

        if self._store is not None:
            await self._store.close()

        if self._mongo_client:
            self._mongo_client.close()
            self._mongo_client = None
            self._store = None
            self._checkpoint_store = None

        if self._running:
            self._running = False
            logger.info("feedcursor runtime stopped")

    @asynccontextmanager
    async def context(self) -> AsyncIterator[FeedRuntime]:
        """
        Context manager for runtime lifecycle.

        Usage:
            async with runtime.context() as rt:
                result = await rt.read_once()
        """
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    async def _init_mongodb(self) -> None:
        """Initialize MongoDB connection, store and checkpoint store."""
        from feedcursor.store.mongo import MongoFeedStore

        mongodb = self._settings.mongodb
        feed = self._settings.feed
        logger.debug("Connecting to MongoDB")

        self._mongo_client = AsyncIOMotorClient(
            mongodb.uri.get_secret_value(),
            maxPoolSize=mongodb.max_pool_size,
            minPoolSize=mongodb.min_pool_size,
            serverSelectionTimeoutMS=mongodb.server_selection_timeout_ms,
        )

        # Verify connection
        await self._mongo_client.admin.command("ping")
        logger.info("Connected to MongoDB")

        self._store = MongoFeedStore(
            client=self._mongo_client,
            database=mongodb.database,
            ranges_collection=mongodb.ranges_collection,
            partition_count=feed.partition_count,
            range_page_size=feed.range_page_size,
            batch_size=feed.batch_size,
        )

        if self._checkpoint_store is None:
            self._checkpoint_store = CheckpointStore(
                client=self._mongo_client,
                database=mongodb.database,
                collection=mongodb.checkpoints_collection,
            )
            await self._checkpoint_store.initialize()

    async def load_checkpoint(self, consumer: str | None = None) -> Checkpoint:
        """Load the persisted checkpoint, or an empty one."""
        if self._checkpoint_store is None:
            return Checkpoint()
        return await self._checkpoint_store.load(
            self.collection.namespace,
            consumer or self._settings.feed.consumer_name,
        )

    async def save_checkpoint(self, checkpoint: Checkpoint, consumer: str | None = None) -> None:
        """Persist a checkpoint when a checkpoint store is configured."""
        if self._checkpoint_store is None:
            return
        await self._checkpoint_store.save(
            self.collection.namespace,
            consumer or self._settings.feed.consumer_name,
            checkpoint,
        )

    async def read_once(
        self,
        checkpoint: Checkpoint | None = None,
        on_change: ChangeHandler | None = None,
        consumer: str | None = None,
        persist: bool = True,
    ) -> ReadResult:
        """
        Read all new changes, retrying whole calls per the retry settings.

        The checkpoint is persisted even when the read fails, so progress
        made before the failure is kept.

        Args:
            checkpoint: Checkpoint to read from, the persisted one by default.
            on_change: Optional per-record callback.
            consumer: Consumer name, from settings by default.
            persist: Save the checkpoint to the checkpoint store afterwards.

        Returns:
            The read result.
        """
        cp = checkpoint if checkpoint is not None else await self.load_checkpoint(consumer)
        retrying = create_tenacity_retry(RetryPolicy.from_settings(self._settings.retry))

        with LogContext(consumer=consumer or self._settings.feed.consumer_name):
            try:
                return await retrying(
                    self.reader.read_changes,
                    self.collection,
                    cp,
                    on_change=on_change,
                    cancel_event=self._shutdown_event,
                )
            finally:
                if persist:
                    await self.save_checkpoint(cp, consumer)

    async def follow(
        self,
        interval: float = 5.0,
        on_change: ChangeHandler | None = None,
        consumer: str | None = None,
    ) -> int:
        """
        Read new changes repeatedly until a shutdown signal arrives.

        Args:
            interval: Seconds to wait between read calls.
            on_change: Optional per-record callback.
            consumer: Consumer name, from settings by default.

        Returns:
            Total number of changes read.
        """
        self._register_signal_handlers()
        checkpoint = await self.load_checkpoint(consumer)
        total = 0

        while not self._shutdown_event.is_set():
            result = await self.read_once(checkpoint, on_change=on_change, consumer=consumer)
            total += result.change_count

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        logger.info("Follow loop stopped", total_changes=total)
        return total

    def _register_signal_handlers(self) -> None:
        """Register signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(self._handle_signal(s)),
            )

    async def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signal."""
        logger.info("Received signal", signal=sig.name)
        self._shutdown_event.set()
