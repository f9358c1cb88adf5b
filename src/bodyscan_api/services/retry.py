"""Retry policy for pipeline stage calls.

Exponential backoff with a cap and a bounded number of attempts. Only
transient failures consume retry budget; everything else propagates on
the first occurrence.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx
from pymongo.errors import ConnectionFailure, ExecutionTimeout

from bodyscan_api.core.config import Settings
from bodyscan_api.core.exceptions import PipelineError, TransientInfraError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """
    Classify an exception as transient (worth retrying) or permanent.

    Transient: our own retryable errors, timeouts, HTTP transport errors,
    MongoDB connection loss and server-side timeouts.
    """
    if isinstance(exc, PipelineError):
        return exc.retryable
    return isinstance(
        exc,
        (
            asyncio.TimeoutError,
            TimeoutError,
            httpx.TransportError,
            ConnectionFailure,
            ExecutionTimeout,
        ),
    )


@dataclass
class RetryPolicy:
    """
    Exponential backoff policy.

    Attributes:
        initial_interval: Delay before the second attempt (seconds)
        backoff_coefficient: Multiplier applied to each following delay
        maximum_interval: Upper bound on any single delay (seconds)
        maximum_attempts: Total attempts including the first
        sleep: Awaitable sleep function (swapped out in tests)
    """

    initial_interval: float = 1.0
    backoff_coefficient: float = 2.0
    maximum_interval: float = 30.0
    maximum_attempts: int = 3
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.maximum_attempts < 1:
            raise ValueError("maximum_attempts must be at least 1")
        if self.initial_interval < 0 or self.backoff_coefficient < 1:
            raise ValueError("backoff must be non-negative and non-decreasing")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        """Build the policy from application settings."""
        return cls(
            initial_interval=settings.retry_initial_interval,
            backoff_coefficient=settings.retry_backoff_coefficient,
            maximum_interval=settings.retry_maximum_interval,
            maximum_attempts=settings.retry_maximum_attempts,
        )

    def backoff(self, attempt: int) -> float:
        """
        Delay to wait after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed

        Returns:
            Seconds to sleep before the next attempt
        """
        delay = self.initial_interval * (self.backoff_coefficient ** (attempt - 1))
        return min(delay, self.maximum_interval)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        stage: str,
        timeout: float | None = None,
    ) -> T:
        """
        Run an operation under this policy.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            stage: Stage name for logging and error attribution
            timeout: Start-to-close timeout per attempt (seconds)

        Returns:
            The operation's result

        Raises:
            TransientInfraError: When every attempt failed transiently
            Exception: Any permanent failure, unchanged, on first occurrence
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                if timeout is not None:
                    return await asyncio.wait_for(operation(), timeout=timeout)
                return await operation()
            except Exception as e:
                if not is_transient(e):
                    raise

                if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
                    reason = f"timed out after {timeout}s"
                else:
                    reason = str(e) or type(e).__name__

                if attempt >= self.maximum_attempts:
                    logger.error(
                        f"Stage '{stage}' failed after {attempt} attempts: {reason}"
                    )
                    raise TransientInfraError(
                        f"{reason} (gave up after {attempt} attempts)",
                        stage=stage,
                        details={"attempts": attempt},
                    ) from e

                delay = self.backoff(attempt)
                logger.warning(
                    f"Stage '{stage}' attempt {attempt}/{self.maximum_attempts} "
                    f"failed: {reason}; retrying in {delay:.1f}s"
                )
                await self.sleep(delay)
