"""Retry helpers using tenacity.

Remote calls to tool gateways and text-generation services are retried
with exponential backoff and jitter when they fail transiently.
"""

from collections.abc import Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from abap_migration.client.exceptions import NetworkError, RateLimitError, ServerError
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (NetworkError, ServerError, RateLimitError)


async def call_with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    **kwargs: Any,
) -> Any:
    """Await ``func(*args, **kwargs)`` retrying transient failures.

    Args:
        func: Coroutine function to call
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds

    Returns:
        Result of the coroutine

    Raises:
        The last transient error once attempts are exhausted, or any
        non-transient error immediately.
    """
    async for attempt_obj in AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    ):
        with attempt_obj:
            attempt = attempt_obj.retry_state.attempt_number
            if attempt > 1:
                logger.warning(
                    "transient_error_retrying",
                    function=getattr(func, "__name__", repr(func)),
                    attempt=attempt,
                    max_attempts=max_attempts,
                )
            return await func(*args, **kwargs)
