"""Retry utilities with exponential backoff and jitter."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional

import structlog

from utils.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    ) -> None:
        """Initialize retry configuration.

        Args:
            max_attempts: Total number of attempts, including the first one
            initial_delay: Delay before the second attempt in seconds (0 disables waiting)
            max_delay: Maximum delay in seconds
            exponential_base: Base for exponential backoff
            jitter: Whether to add random jitter to delays
            retryable_exceptions: Tuple of exception types to retry on
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions


def calculate_backoff_delay(
    attempt: int,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Calculate delay for exponential backoff with optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Whether to add random jitter

    Returns:
        Delay in seconds
    """
    delay = min(initial_delay * (exponential_base**attempt), max_delay)

    # Up to 10% on top of the computed delay
    if jitter:
        delay += delay * 0.1 * random.random()

    return delay


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    logger: Optional[structlog.BoundLogger] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    **kwargs: Any,
) -> Any:
    """Retry an async function with exponential backoff and jitter.

    Args:
        func: Async function to retry
        *args: Positional arguments for function
        config: Retry configuration (uses defaults if None)
        logger: Optional logger instance
        on_retry: Called with (attempt, error) after every failed attempt but the last
        **kwargs: Keyword arguments for function

    Returns:
        Function result

    Raises:
        The last exception once all attempts are exhausted
    """
    if config is None:
        config = RetryConfig()

    logger = logger or get_logger("retry")

    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt == config.max_attempts - 1:
                logger.error(
                    "All retry attempts exhausted",
                    max_attempts=config.max_attempts,
                    error=str(e),
                )
                raise

            delay = calculate_backoff_delay(
                attempt=attempt,
                initial_delay=config.initial_delay,
                max_delay=config.max_delay,
                exponential_base=config.exponential_base,
                jitter=config.jitter,
            )
            logger.warning(
                "Retry attempt failed, retrying",
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                delay=delay,
                error=str(e),
            )
            if on_retry is not None:
                on_retry(attempt + 1, e)
            if delay > 0:
                await asyncio.sleep(delay)

    raise RuntimeError("Retry logic error")
