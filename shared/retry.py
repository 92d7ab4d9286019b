"""
Bounded retries for storage calls that fail before reaching the database.

Only the exceptions named by the caller are retried. Anything else, such as
a constraint violation or a bad query, surfaces on the first attempt.
"""

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


class RetryConfig:
    """Attempt budget and backoff shape for one kind of call."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.1,
                 max_delay: float = 2.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential"):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        if self.backoff_strategy == "exponential":
            delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        elif self.backoff_strategy == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)
        if self.jitter:
            delay += random.uniform(-0.1 * delay, 0.1 * delay)
        return max(0.0, delay)


class RetryError(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, message: str, last_exception: BaseException, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Retry an async callable on ``exceptions``; raise ``RetryError`` when the budget runs out."""
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        logger = get_logger(f"retry.{func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == config.max_attempts:
                        logger.error(
                            "Giving up after retryable failures",
                            attempts=attempt,
                            error_type=type(e).__name__,
                            error=str(e)
                        )
                        raise RetryError(
                            f"{func.__name__} failed after {attempt} attempts",
                            last_exception=e,
                            attempts=attempt
                        ) from e

                    delay = config.delay_for(attempt)
                    logger.warning(
                        "Retryable failure",
                        attempt=attempt,
                        max_attempts=config.max_attempts,
                        delay=round(delay, 3),
                        error_type=type(e).__name__,
                        error=str(e)
                    )
                    await asyncio.sleep(delay)
                    continue

                if attempt > 1:
                    logger.info("Succeeded after retry", attempt=attempt)
                return result

        return wrapper

    return decorator
