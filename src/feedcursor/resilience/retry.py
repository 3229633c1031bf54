"""Retry logic with exponential backoff for whole read calls."""

from __future__ import annotations

from typing import Any, Callable, Sequence

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from feedcursor.core.config import RetrySettings
from feedcursor.core.exceptions import (
    InvalidCheckpointEntryError,
    PartitionReadFailedError,
    TopologyUnavailableError,
)
from feedcursor.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (
    TopologyUnavailableError,
    PartitionReadFailedError,
    ConnectionError,
    TimeoutError,
)
DEFAULT_NON_RETRYABLE: tuple[type[Exception], ...] = (InvalidCheckpointEntryError,)


class RetryPolicy:
    """
    Configurable retry policy.

    Retrying a checkpointed read is safe: each batch advances the
    checkpoint, so a retried call resumes near the point of failure.
    A rejected checkpoint token is never retried.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        retryable_exceptions: Sequence[type[Exception]] | None = None,
        non_retryable_exceptions: Sequence[type[Exception]] | None = None,
    ) -> None:
        """
        Initialize retry policy.

        Args:
            max_attempts: Maximum attempts, including the first one.
            base_delay: Multiplier of the randomized exponential backoff, in seconds.
            max_delay: Maximum delay in seconds.
            retryable_exceptions: Exceptions that trigger retry.
            non_retryable_exceptions: Exceptions that never retry.
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

        self.retryable_exceptions = tuple(retryable_exceptions or DEFAULT_RETRYABLE)
        self.non_retryable_exceptions = tuple(
            DEFAULT_NON_RETRYABLE if non_retryable_exceptions is None else non_retryable_exceptions
        )

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        """Create a policy from retry settings."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
        )

    def is_retryable(self, exception: BaseException) -> bool:
        """Check whether an exception type is eligible for retry."""
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    """Log a tenacity retry."""
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    logger.warning(
        "Retrying after error",
        attempt=retry_state.attempt_number,
        error=str(error),
        delay=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
    )


def create_tenacity_retry(policy: RetryPolicy) -> AsyncRetrying:
    """
    Create a tenacity retry configuration from a policy.

    Args:
        policy: The retry policy.

    Returns:
        AsyncRetrying instance, usable with ``async for`` or as a callable.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_random_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception(policy.is_retryable),
        before_sleep=_log_before_sleep,
        reraise=True,
    )


async def retry_with_policy(
    func: Callable[..., Any],
    policy: RetryPolicy,
    *args: Any,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function under a retry policy.

    Args:
        func: Async function to execute.
        policy: Retry policy to use.
        *args: Function arguments.
        **kwargs: Function keyword arguments.

    Returns:
        Function result.

    Raises:
        The last exception if all attempts fail.
    """
    return await create_tenacity_retry(policy)(func, *args, **kwargs)
