"""Shared utilities for configuration, logging, and error handling"""

from transit_snapshot.utils.retry import (
    NO_RETRY,
    RetryPolicy,
    exponential_backoff_retry,
    retry_call,
)

__all__ = ["NO_RETRY", "RetryPolicy", "exponential_backoff_retry", "retry_call"]
