"""Async retry with a fixed pause between attempts.

Provider rate limits are the usual reason a call fails, so the pause between
attempts is constant by default rather than growing: the provider asks for
"slower", not "exponentially slower". A multiplier is still available.

Example:
    >>> from diet_parser.exceptions import RetryableError
    >>>
    >>> @with_retry(max_attempts=3, delay=1.0, retryable=(RetryableError,))
    ... async def call_provider():
    ...     return await capability.invoke(prompt)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import wraps
from typing import ParamSpec, TypeVar

from .exceptions import RetryableError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def with_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    retryable: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator retrying an async function on the given exceptions.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        delay: Pause in seconds before the first retry
        backoff: Multiplier applied to the pause after each retry (1.0 = fixed)
        retryable: Exception types that trigger a retry
        on_retry: Called with (attempt number, error) before each pause

    Returns:
        Decorated async function; the last error is re-raised when all
        attempts fail

    A ``RetryableError`` gets its ``attempt`` and ``max_attempts`` set before
    it is logged or re-raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            pause = delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable as e:
                    if isinstance(e, RetryableError):
                        e.attempt = attempt
                        e.max_attempts = max_attempts
                    if attempt == max_attempts:
                        logger.error(
                            f"All {max_attempts} attempts failed for {func.__name__}: {e}"
                        )
                        raise
                    logger.warning(
                        f"Attempt {attempt}/{max_attempts} failed for "
                        f"{func.__name__}: {e}. Retrying in {pause:.1f}s..."
                    )
                    if on_retry is not None:
                        on_retry(attempt, e)
                    await asyncio.sleep(pause)
                    pause *= backoff
            raise AssertionError("unreachable")

        return wrapper

    return decorator


@dataclass
class RetryConfig:
    """Retry parameters as a value object.

    Example:
        >>> config = RetryConfig(max_attempts=5, delay=0.5)
        >>> @with_retry(**config.to_kwargs())
        ... async def my_function():
        ...     pass
    """

    max_attempts: int = 3
    delay: float = 1.0
    backoff: float = 1.0

    def to_kwargs(self) -> dict[str, float | int]:
        """Convert to kwargs for the with_retry decorator."""
        return {
            "max_attempts": self.max_attempts,
            "delay": self.delay,
            "backoff": self.backoff,
        }
