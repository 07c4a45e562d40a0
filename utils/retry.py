"""
Retry logic with exponential backoff.

Handles transient failures when calling model providers. Model calls are
awaited, so the backoff sleeps with asyncio rather than blocking the loop.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def delay_for(self, attempt: int) -> float:
        """Backoff delay (seconds) after the given 1-based attempt."""
        delay = min(self.initial_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(0.0, delay)


TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
)


class RetryableError(Exception):
    """Mark an error as retryable."""

    pass


class NonRetryableError(Exception):
    """Mark an error as non-retryable (fail immediately)."""

    pass


async def async_retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    args: tuple = (),
    kwargs: Optional[dict] = None,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    """
    Await a coroutine function with exponential backoff retry.

    Args:
        func: Coroutine function to execute
        args: Positional arguments
        kwargs: Keyword arguments
        config: Retry behavior (attempts, delays, jitter)
        retryable_exceptions: Exception types that trigger retry
        on_retry: Callback on each retry (exception, attempt_number)

    Returns:
        Result of func

    Raises:
        Last exception if all retries exhausted
    """
    kwargs = kwargs or {}
    config = config or RetryConfig()
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except NonRetryableError:
            raise

        except (RetryableError, *retryable_exceptions) as e:
            if attempt >= config.max_attempts:
                logger.error(f"All {config.max_attempts} attempts failed for {name}: {e}")
                raise

            delay = config.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt}/{config.max_attempts} failed for {name}: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            if on_retry:
                on_retry(e, attempt)
            await asyncio.sleep(delay)

    raise RuntimeError(f"{name} was not attempted (max_attempts={config.max_attempts})")
