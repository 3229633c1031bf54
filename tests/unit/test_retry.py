"""Unit tests for retry policies."""

from __future__ import annotations

import pytest

from feedcursor.core.config import RetrySettings
from feedcursor.core.exceptions import (
    InvalidCheckpointEntryError,
    PartitionReadFailedError,
    TopologyUnavailableError,
)
from feedcursor.resilience.retry import RetryPolicy, create_tenacity_retry, retry_with_policy


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_from_settings(self):
        """Test building a policy from settings."""
        policy = RetryPolicy.from_settings(
            RetrySettings(max_attempts=5, base_delay=0.5, max_delay=4.0)
        )
        assert policy.max_attempts == 5
        assert policy.base_delay == 0.5
        assert policy.max_delay == 4.0

    def test_feed_errors_are_retryable(self):
        """Test transient feed errors trigger retries."""
        policy = RetryPolicy()
        assert policy.is_retryable(TopologyUnavailableError("db.c", TimeoutError()))
        assert policy.is_retryable(PartitionReadFailedError("0", ConnectionError()))
        assert policy.is_retryable(ConnectionError())

    def test_rejected_token_not_retryable(self):
        """Test a rejected checkpoint token is never retried."""
        policy = RetryPolicy()
        assert not policy.is_retryable(InvalidCheckpointEntryError("0", "x", "bad"))
        assert not policy.is_retryable(ValueError())


@pytest.mark.asyncio
class TestRetryExecution:
    """Tests for retrying calls."""

    async def test_retry_with_policy_recovers(self):
        """Test a call succeeding after transient failures."""
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        policy = RetryPolicy(max_attempts=3, base_delay=0.001)
        assert await retry_with_policy(flaky, policy) == "ok"
        assert len(calls) == 3

    async def test_retry_with_policy_gives_up(self):
        """Test the last error is raised after the final attempt."""
        async def broken():
            raise ConnectionError("reset")

        policy = RetryPolicy(max_attempts=2, base_delay=0.001)
        with pytest.raises(ConnectionError):
            await retry_with_policy(broken, policy)

    async def test_retry_with_policy_skips_non_retryable(self):
        """Test a rejected token fails without further attempts."""
        calls = []

        async def rejected():
            calls.append(1)
            raise InvalidCheckpointEntryError("0", "x", "bad")

        policy = RetryPolicy(max_attempts=3, base_delay=0.001)
        with pytest.raises(InvalidCheckpointEntryError):
            await retry_with_policy(rejected, policy)
        assert len(calls) == 1

    async def test_tenacity_reraises_after_attempts(self):
        """Test tenacity retries then re-raises the original error."""
        attempts = 0
        policy = RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=0.01)

        with pytest.raises(TopologyUnavailableError):
            async for attempt in create_tenacity_retry(policy):
                with attempt:
                    attempts += 1
                    raise TopologyUnavailableError("db.c", TimeoutError())

        assert attempts == 3

    async def test_tenacity_skips_non_retryable(self):
        """Test non-retryable errors are raised on the first attempt."""
        attempts = 0
        policy = RetryPolicy(max_attempts=3, base_delay=0.001)

        with pytest.raises(InvalidCheckpointEntryError):
            async for attempt in create_tenacity_retry(policy):
                with attempt:
                    attempts += 1
                    raise InvalidCheckpointEntryError("0", "x", "bad")

        assert attempts == 1
