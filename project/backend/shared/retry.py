"""
Retry logic with exponential backoff.

Decorator and call helper for automatic retry with exponential backoff on
retryable errors. Delay before retry n (0-based) is base_delay * 2**n.
"""

import asyncio
import functools
import time
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from shared.errors import RetryableError
from shared.logging import get_logger

T = TypeVar("T")
logger = get_logger("retry")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay in seconds before the retry that follows `attempt` (0-based)."""
    return base_delay * (2 ** attempt)


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 2,
    retryable_exceptions: Tuple[Type[Exception], ...] = (RetryableError,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    **kwargs: Any
) -> T:
    """
    Await `func(*args, **kwargs)`, retrying on retryable exceptions.

    Args:
        func: Coroutine function to call
        max_attempts: Total number of attempts (default: 3)
        base_delay: Base delay in seconds (default: 2)
        retryable_exceptions: Exception types that trigger a retry
        on_retry: Optional callback invoked with (attempt, error) before sleeping

    Returns:
        Result of the first successful call

    Raises:
        The last retryable exception once attempts are exhausted, or any
        non-retryable exception immediately.
    """
    name = getattr(func, "__name__", repr(func))
    last_exception: Optional[Exception] = None

    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            last_exception = e
            if attempt < max_attempts - 1:
                delay = backoff_delay(attempt, base_delay)
                logger.warning(
                    f"Retry attempt {attempt + 1}/{max_attempts} for {name} "
                    f"after {delay}s delay",
                    extra={"error": str(e), "attempt": attempt + 1}
                )
                if on_retry:
                    on_retry(attempt + 1, e)
                await asyncio.sleep(delay)
            else:
                logger.error(
                    f"All {max_attempts} retry attempts failed for {name}",
                    extra={"error": str(e)}
                )

    if last_exception:
        raise last_exception
    raise RuntimeError(f"Function {name} failed after {max_attempts} attempts")


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 2,
    retryable_exceptions: Tuple[Type[Exception], ...] = (RetryableError,)
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 2)
        retryable_exceptions: Tuple of exception types to retry on

    Returns:
        Decorated function

    Example:
        @retry_with_backoff(max_attempts=3, base_delay=2)
        async def upload():
            # Will retry on RetryableError
            return await store.upload(...)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> T:
                return await call_with_retry(
                    func,
                    *args,
                    max_attempts=max_attempts,
                    base_delay=base_delay,
                    retryable_exceptions=retryable_exceptions,
                    **kwargs
                )

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_exception = e
                    if attempt < max_attempts - 1:
                        delay = backoff_delay(attempt, base_delay)
                        logger.warning(
                            f"Retry attempt {attempt + 1}/{max_attempts} for {func.__name__} "
                            f"after {delay}s delay",
                            extra={"error": str(e), "attempt": attempt + 1}
                        )
                        time.sleep(delay)
                    else:
                        logger.error(
                            f"All {max_attempts} retry attempts failed for {func.__name__}",
                            extra={"error": str(e)}
                        )

            if last_exception:
                raise last_exception
            raise RuntimeError(f"Function {func.__name__} failed after {max_attempts} attempts")

        return sync_wrapper

    return decorator
