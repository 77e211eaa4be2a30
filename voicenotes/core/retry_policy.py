"""Retry policy with exponential backoff, and time-bounded provider calls."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar
import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from voicenotes.core.errors import ProviderError, wrap_exception

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: Optional[float],
    provider_id: str,
    operation: str = "request"
) -> T:
    """
    Await a provider call under a time bound.

    Args:
        awaitable: Provider coroutine
        timeout_seconds: Bound in seconds (None or <= 0 disables it)
        provider_id: Provider id for the error
        operation: Operation name for the error

    Returns:
        Provider result

    Raises:
        ProviderError: CONNECTION_TIMEOUT on timeout, INTERNAL_ERROR for untyped failures
    """
    try:
        if timeout_seconds and timeout_seconds > 0:
            return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
        return await awaitable
    except asyncio.TimeoutError:
        raise ProviderError.connection_timeout(provider_id, timeout_seconds, operation)
    except ProviderError:
        raise
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"Untyped error from provider {provider_id} during {operation}: {e}", exc_info=True)
        raise wrap_exception(e, operation, provider_id) from e


def _is_retryable(exception: BaseException) -> bool:
    return isinstance(exception, ProviderError) and exception.is_retryable


class RetryPolicy:
    """Retry policy with exponential backoff and jitter for retryable provider errors."""

    def __init__(
        self,
        max_retries: int = 2,
        initial_wait: float = 1.0,
        max_wait: float = 10.0,
        jitter: bool = True
    ):
        """
        Initialize retry policy.

        Args:
            max_retries: Maximum number of retry attempts (0 disables retries)
            initial_wait: Initial wait time in seconds
            max_wait: Maximum wait time in seconds
            jitter: Whether to add random jitter
        """
        self.max_retries = max(0, max_retries)
        self.initial_wait = initial_wait
        self.max_wait = max_wait
        self.jitter = jitter

    def _wait(self):
        wait = wait_exponential(multiplier=self.initial_wait, min=0, max=self.max_wait)
        if self.jitter:
            wait = wait + wait_random(0, self.initial_wait / 2)

        def honour_retry_after(retry_state: RetryCallState) -> float:
            backoff = wait(retry_state)
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            retry_after = exception.metadata.get("retry_after") if isinstance(exception, ProviderError) else None
            if not retry_after:
                return backoff
            # Server-requested delay, still bounded by max_wait
            return min(max(backoff, float(retry_after)), self.max_wait)

        return honour_retry_after

    @staticmethod
    def _log_retry(retry_state: RetryCallState):
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        sleep = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(f"Retry attempt {retry_state.attempt_number} after {sleep:.2f}s: {exception}")

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any
    ) -> T:
        """
        Execute an async function, retrying only on retryable ProviderErrors.

        Args:
            func: Async function to execute
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Function result

        Raises:
            ProviderError: Last error once retries are exhausted, or any non-retryable error
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait(),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await func(*args, **kwargs)
