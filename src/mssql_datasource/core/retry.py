# src/mssql_datasource/core/retry.py
"""
Retry with exponential backoff for database operations.

Built on tenacity's AsyncRetrying. The policy itself is stateless: every
run() call gets its own RetryCallState, so one RetryPolicy can be shared by
any number of operations.

Delay after attempt n (1-based), in ms:

    min(max_delay, base_delay * 2 ** (n - 1) * jitter),  jitter ~ U[1.0, 1.2)

`max_retries` bounds the total number of invocations: the first attempt
counts, and the error of the last attempt is re-raised unchanged.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from mssql_datasource.domain.credentials import RetryOptions
from mssql_datasource.domain.errors import is_transient, normalize_error
from mssql_datasource.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """
    Retry transient failures of an async operation.

    Example usage:
        policy = RetryPolicy(RetryOptions(max_retries=5))
        connection = await policy.run(driver.connect, config)
    """

    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        classify: Callable[[BaseException], bool] = is_transient,
        sleep: Sleep = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        operation: str = "Database operation"
    ):
        """
        Args:
            options: Retry limits (default: 3 attempts, 1000 ms base, 10000 ms cap)
            classify: Returns True for errors worth retrying
            sleep: Awaitable sleep taking seconds (injectable for tests)
            rng: Source of uniform [0, 1) numbers for the jitter
            operation: Label used in retry log lines
        """
        self.options = options or RetryOptions()
        self._classify = classify
        self._sleep = sleep
        self._rng = rng
        self._operation = operation

    @property
    def max_attempts(self) -> int:
        # A policy always runs the operation at least once
        return max(1, self.options.max_retries)

    def compute_delay(self, attempt: int) -> float:
        """Delay in ms to wait after the given failed attempt (1-based)."""
        jitter = 1 + self._rng() * 0.2
        return min(
            self.options.max_delay,
            self.options.base_delay * (2 ** (attempt - 1)) * jitter,
        )

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.compute_delay(retry_state.attempt_number) / 1000

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay_ms = retry_state.next_action.sleep * 1000 if retry_state.next_action else 0
        logger.warning(
            f"{self._operation} failed (attempt {retry_state.attempt_number}/{self.max_attempts}). "
            f"Retrying in {round(delay_ms)}ms. Error: {normalize_error(error)}"
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(self._classify),
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Call `fn(*args, **kwargs)` until it succeeds, fails with a
        non-transient error, or the attempts are used up.

        Raises:
            The exception of the last attempt, unchanged.
        """
        return await self._retrying()(fn, *args, **kwargs)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    **policy_kwargs: Any
) -> T:
    """Convenience wrapper: run a zero-argument coroutine function under a RetryPolicy."""
    return await RetryPolicy(options, **policy_kwargs).run(fn)
