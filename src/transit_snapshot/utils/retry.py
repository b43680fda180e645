"""Retry utilities with exponential backoff."""

import time
from functools import wraps
from typing import Any, Callable, Tuple, Type

import structlog
from pydantic import BaseModel, Field

log = structlog.stdlib.get_logger()


class RetryPolicy(BaseModel):
    """How often and how patiently to retry a failing call."""

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=60.0, ge=0.0)

    model_config = {"frozen": True}

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt + 1``."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    @property
    def worst_case_seconds(self) -> float:
        """Total time spent sleeping if every attempt fails."""
        return sum(self.delay_for(attempt) for attempt in range(self.max_retries))


NO_RETRY = RetryPolicy(max_retries=0, base_delay=0.0, max_delay=0.0)


def retry_call(
    func: Callable[..., Any],
    *args: Any,
    policy: RetryPolicy,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    logger: Any = None,
    **kwargs: Any,
) -> Any:
    """Call ``func`` and retry it with exponential backoff.

    Args:
        func: Callable to invoke
        policy: Retry limits and delays
        exceptions: Exception types that trigger a retry
        logger: Optional bound logger; defaults to the module logger

    Returns:
        Whatever ``func`` returns

    Raises:
        The last exception raised by ``func`` once retries are exhausted
    """
    logger = logger or log
    name = getattr(func, "__name__", repr(func))

    for attempt in range(policy.max_retries + 1):
        try:
            return func(*args, **kwargs)
        except exceptions as e:
            if attempt == policy.max_retries:
                if policy.max_retries:
                    logger.error(
                        "max_retries_reached",
                        function=name,
                        max_retries=policy.max_retries,
                        error=str(e),
                    )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                "retrying_after_error",
                function=name,
                attempt=attempt + 1,
                max_retries=policy.max_retries,
                delay_seconds=delay,
                error=str(e),
            )
            time.sleep(delay)


def exponential_backoff_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated function with retry logic
    """
    policy = RetryPolicy(max_retries=max_retries, base_delay=base_delay, max_delay=max_delay)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return retry_call(func, *args, policy=policy, exceptions=exceptions, **kwargs)

        return wrapper

    return decorator
