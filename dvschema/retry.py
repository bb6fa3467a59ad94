"""
Retry policy for remote registry calls.

Classification (is_retryable) is kept apart from timing
(RetryPolicy.delays) so each can be tested on its own. Only
RateLimitedError is retried; every other exception propagates
immediately and untouched.
"""

import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, TypeVar

from dvschema import constants
from dvschema.errors import ErrorClass, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff timing.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry (seconds)
        multiplier: Factor applied to each subsequent delay
    """
    max_retries: int = constants.MAX_RETRY_ATTEMPTS
    base_delay: float = constants.RETRY_BASE_DELAY
    multiplier: float = 2.0

    def delays(self) -> Iterator[float]:
        """Yield the wait before each retry: 1s, 2s, 4s with the defaults."""
        delay = self.base_delay
        for _ in range(self.max_retries):
            yield delay
            delay *= self.multiplier


DEFAULT_POLICY = RetryPolicy()

# No retries, no waiting - for tests and dry runs
NO_RETRY = RetryPolicy(max_retries=0)


def is_retryable(exc: BaseException) -> bool:
    return classify(exc) is ErrorClass.RATE_LIMITED


def with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    sleep: Optional[Callable[[float], Any]] = None,
) -> T:
    """
    Run operation, retrying on rate limiting.

    Args:
        operation: Zero-argument callable wrapping one remote call
        policy: Backoff timing (defaults to 3 retries at 1s, 2s, 4s)
        sleep: Defaults to time.sleep; injected for tests

    Returns:
        Result of the first successful attempt

    Raises:
        RateLimitedError: If every retry was rate limited
        Exception: Any non-retryable error, on first occurrence
    """
    policy = policy or DEFAULT_POLICY
    sleep = sleep or time.sleep
    delays = policy.delays()
    attempt = 1

    while True:
        try:
            return operation()
        except Exception as e:
            if not is_retryable(e):
                raise
            delay = next(delays, None)
            if delay is None:
                logger.error(f"Rate limited after {attempt} attempts: {e}")
                raise
            if getattr(e, "retry_after", None):
                delay = max(delay, e.retry_after)
            logger.warning(
                f"Rate limited (attempt {attempt}/{policy.max_retries + 1}). "
                f"Retrying in {delay:g}s..."
            )
            sleep(delay)
            attempt += 1


def retrying(policy: Optional[RetryPolicy] = None, sleep: Optional[Callable[[float], Any]] = None):
    """
    Decorator form of with_retry.

    Example:
        @retrying(RetryPolicy(max_retries=5))
        def publish():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return with_retry(lambda: func(*args, **kwargs), policy=policy, sleep=sleep)
        return wrapper
    return decorator
