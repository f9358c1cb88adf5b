"""Unit tests for the stage retry policy."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
from pymongo.errors import AutoReconnect

from bodyscan_api.core.exceptions import (
    BusinessRejection,
    TransientInfraError,
    ValidationError,
)
from bodyscan_api.services.retry import RetryPolicy, is_transient


class TestIsTransient:
    """Tests for error classification."""

    @pytest.mark.parametrize(
        "exc",
        [
            TransientInfraError("storage down"),
            asyncio.TimeoutError(),
            httpx.ConnectError("refused"),
            AutoReconnect("primary stepped down"),
        ],
    )
    def test_transient_errors(self, exc):
        assert is_transient(exc) is True

    @pytest.mark.parametrize(
        "exc",
        [
            ValidationError("bad json"),
            BusinessRejection(["too dark"]),
            ValueError("bug"),
        ],
    )
    def test_permanent_errors(self, exc):
        assert is_transient(exc) is False


class TestBackoff:
    """Tests for delay computation."""

    def test_exponential_with_cap(self):
        policy = RetryPolicy(initial_interval=1.0, backoff_coefficient=2.0, maximum_interval=30.0)

        assert [policy.backoff(n) for n in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(maximum_attempts=0)


class TestRun:
    """Tests for RetryPolicy.run."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        sleep = AsyncMock()
        policy = RetryPolicy(sleep=sleep)
        operation = AsyncMock(return_value="ok")

        assert await policy.run(operation, stage="qc") == "ok"
        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        sleep = AsyncMock()
        policy = RetryPolicy(sleep=sleep)
        operation = AsyncMock(side_effect=[TransientInfraError("503"), "ok"])

        assert await policy.run(operation, stage="estimate") == "ok"
        assert operation.await_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_exhaustion_makes_exactly_max_attempts(self):
        """Always-failing dependency: N attempts, strictly increasing delays, then failure."""
        sleep = AsyncMock()
        policy = RetryPolicy(maximum_attempts=4, sleep=sleep)
        operation = AsyncMock(side_effect=TransientInfraError("unavailable"))

        with pytest.raises(TransientInfraError) as exc_info:
            await policy.run(operation, stage="estimate")

        assert operation.await_count == 4
        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == [1.0, 2.0, 4.0]
        assert all(a < b for a, b in zip(delays, delays[1:]))
        assert exc_info.value.stage == "estimate"
        assert exc_info.value.details == {"attempts": 4}

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        sleep = AsyncMock()
        policy = RetryPolicy(sleep=sleep)
        operation = AsyncMock(side_effect=ValidationError("bf out of range"))

        with pytest.raises(ValidationError):
            await policy.run(operation, stage="estimate")

        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        sleep = AsyncMock()
        policy = RetryPolicy(maximum_attempts=2, sleep=sleep)

        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(TransientInfraError) as exc_info:
            await policy.run(hang, stage="insight", timeout=0.01)

        assert "timed out" in exc_info.value.message
        sleep.assert_awaited_once_with(1.0)
