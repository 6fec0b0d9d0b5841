"""
Retry decorators for awaited RPC operations.
"""

import asyncio
import functools
import logging
from typing import Any, Callable

from .chain import TRANSPORT_ERRORS


def async_retry(logger: logging.Logger, max_retries: int = 3, delay: float = 1) -> Callable:
    """
    Decorator to retry a coroutine function on transport errors.

    The last error is re-raised once all attempts fail.

    Args:
        logger: Logger instance for retry logging.
        max_retries: Maximum number of attempts.
        delay: Delay between attempts in seconds.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except TRANSPORT_ERRORS as e:
                    if attempt == max_retries:
                        logger.error("%s failed after %s attempts.", func.__name__, max_retries)
                        raise
                    logger.warning(
                        "Error in %s (%s), waiting %s seconds before retrying. Attempt %s/%s",
                        func.__name__, type(e).__name__, delay, attempt, max_retries,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
