"""Async retry with exponential backoff on top of tenacity."""

import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    multiplier: float = 2.0,
    retryable: Callable[[BaseException], bool] | None = None,
    on_retry: Callable[[BaseException, int, float], None] | None = None,
) -> T:
    """Call ``fn`` until it succeeds or ``max_attempts`` is reached.

    Args:
        fn: Zero-argument coroutine factory.
        max_attempts: Total number of calls, including the first one.
        initial_delay: Seconds to wait after the first failure.
        max_delay: Upper bound for a single wait.
        multiplier: Backoff growth factor.
        retryable: Predicate; non-retryable errors are raised immediately.
        on_retry: Called with (error, attempt, delay) before each wait.
    """

    def _before_sleep(state: RetryCallState):
        error = state.outcome.exception()
        delay = state.next_action.sleep
        logger.warning(f"Attempt {state.attempt_number} failed, retrying in {delay:.2f}s: {error}")
        if on_retry is not None:
            on_retry(error, state.attempt_number, delay)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=initial_delay, max=max_delay, exp_base=multiplier),
        retry=retry_if_exception(retryable) if retryable else retry_if_exception_type(Exception),
        before_sleep=_before_sleep,
        reraise=True,
    )
    return await retrying(fn)
