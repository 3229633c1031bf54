"""Exception hierarchy for feedcursor."""

from __future__ import annotations

from typing import Any


class FeedCursorError(Exception):
    """Base exception for all feedcursor errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# Configuration Errors
class ConfigurationError(FeedCursorError):
    """Error in configuration."""

    pass


# Change Feed Errors
class ChangeFeedError(FeedCursorError):
    """Base error for change feed traversal."""

    pass


class TopologyUnavailableError(ChangeFeedError):
    """The partition range listing could not be completed."""

    def __init__(self, namespace: str, cause: BaseException) -> None:
        super().__init__(
            f"Partition topology unavailable for '{namespace}'",
            {"namespace": namespace, "cause": str(cause)},
        )
        self.namespace = namespace
        self.cause = cause


class PartitionReadFailedError(ChangeFeedError):
    """Draining a partition's change feed failed mid-stream."""

    def __init__(
        self,
        partition_id: str,
        cause: BaseException,
        namespace: str | None = None,
    ) -> None:
        details: dict[str, Any] = {"partition_id": partition_id, "cause": str(cause)}
        if namespace:
            details["namespace"] = namespace
        super().__init__(f"Reading partition '{partition_id}' failed", details)
        self.partition_id = partition_id
        self.cause = cause
        self.namespace = namespace


class InvalidCheckpointEntryError(ChangeFeedError):
    """A stored continuation token was rejected as malformed or expired."""

    def __init__(self, partition_id: str, token: str, reason: str) -> None:
        super().__init__(
            f"Invalid continuation token for partition '{partition_id}': {reason}",
            {"partition_id": partition_id, "token": token[:100], "reason": reason},
        )
        self.partition_id = partition_id
        self.token = token
        self.reason = reason


# Storage Errors
class StorageError(FeedCursorError):
    """Base error for collaborator storage operations."""

    pass


class CollectionError(StorageError):
    """Collection could not be created or resolved."""

    def __init__(self, namespace: str, reason: str) -> None:
        super().__init__(
            f"Collection '{namespace}' unavailable: {reason}",
            {"namespace": namespace, "reason": reason},
        )
        self.namespace = namespace


class PartitionNotFoundError(StorageError):
    """A partition range id is unknown or retired."""

    def __init__(self, namespace: str, partition_id: str) -> None:
        super().__init__(
            f"Partition '{partition_id}' not found in '{namespace}'",
            {"namespace": namespace, "partition_id": partition_id},
        )
        self.partition_id = partition_id


class CheckpointStoreError(StorageError):
    """Checkpoint persistence failed."""

    pass
