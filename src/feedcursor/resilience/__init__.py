"""Resilience module for fault tolerance."""

from feedcursor.resilience.retry import RetryPolicy, create_tenacity_retry, retry_with_policy

__all__ = ["RetryPolicy", "create_tenacity_retry", "retry_with_policy"]
