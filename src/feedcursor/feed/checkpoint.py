"""Per-partition continuation token map."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from feedcursor.core.exceptions import ConfigurationError


class Checkpoint(Mapping[str, str]):
    """
    Maps partition range ids to the continuation token of their change feed.

    A missing entry means the partition has not been read yet and is read
    from the beginning. Entries only ever move forward: they are replaced by
    the token of a later batch of the same partition and never removed by
    the reader. Entries for partitions that no longer exist stay in place
    until the owner calls ``prune``.

    The checkpoint wraps the dict it is given without copying it, so a
    caller passing a plain dict sees it updated in place.
    """

    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self._tokens: dict[str, str] = tokens if tokens is not None else {}
        self._lock = asyncio.Lock()

    def __getitem__(self, partition_id: str) -> str:
        return self._tokens[partition_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def __repr__(self) -> str:
        return f"Checkpoint({self._tokens!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Checkpoint):
            return self._tokens == other._tokens
        if isinstance(other, Mapping):
            return self._tokens == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    @property
    def tokens(self) -> dict[str, str]:
        """Get the underlying token dict."""
        return self._tokens

    async def advance(self, partition_id: str, token: str | None) -> bool:
        """
        Store the continuation token returned by a read of a partition.

        Args:
            partition_id: The partition range id.
            token: The token returned with the batch, or None.

        Returns:
            True if the stored entry changed.
        """
        if token is None:
            return False

        async with self._lock:
            if self._tokens.get(partition_id) == token:
                return False
            self._tokens[partition_id] = token
            return True

    def prune(self, active_ids: Iterable[str]) -> list[str]:
        """
        Remove entries for partitions that are not in ``active_ids``.

        Args:
            active_ids: Ids of the partition ranges that currently exist.

        Returns:
            The removed partition ids.
        """
        keep = set(active_ids)
        removed = [pid for pid in self._tokens if pid not in keep]
        for pid in removed:
            del self._tokens[pid]
        return removed

    def copy(self) -> Checkpoint:
        """Create an independent copy."""
        return Checkpoint(dict(self._tokens))

    def to_dict(self) -> dict[str, str]:
        """Convert to a JSON-compatible dict."""
        return dict(self._tokens)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Checkpoint:
        """
        Create from a persisted partition-id to token mapping.

        Raises:
            ConfigurationError: If an entry is not a string pair.
        """
        tokens: dict[str, str] = {}
        for partition_id, token in (data or {}).items():
            if not isinstance(partition_id, str) or not isinstance(token, str):
                raise ConfigurationError(
                    "Checkpoint entries must map string ids to string tokens",
                    {"partition_id": repr(partition_id)},
                )
            tokens[partition_id] = token
        return cls(tokens)

    @classmethod
    def coerce(cls, value: Checkpoint | dict[str, str] | None) -> Checkpoint:
        """Wrap a plain dict (in place) or pass a Checkpoint through."""
        if isinstance(value, Checkpoint):
            return value
        if value is None:
            return cls()
        return cls(value)
