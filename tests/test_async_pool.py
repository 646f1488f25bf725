"""
Tests for bounded-concurrency execution and retry.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from imagedeck.core.exceptions import (
    ContentPolicyError,
    InvalidCredentialsError,
    NotFoundError,
    TerminalProviderError,
    TransientProviderError,
)
from imagedeck.services.async_pool import (
    execute_in_parallel,
    execute_with_progress,
    is_retryable,
    retry_with_backoff,
)


def _task(value, fail=False, delay=0.0):
    async def run():
        await asyncio.sleep(delay)
        if fail:
            raise RuntimeError(f"task {value} failed")
        return value
    return run


class TestExecuteInParallel:
    """Tests for execute_in_parallel."""

    @pytest.mark.asyncio
    async def test_results_index_aligned_with_failures(self):
        """Test 5 tasks with 2 failures keep input order and never raise."""
        tasks = [
            _task(0, delay=0.03),
            _task(1, fail=True),
            _task(2, delay=0.01),
            _task(3, fail=True, delay=0.02),
            _task(4),
        ]
        results = await execute_in_parallel(tasks, concurrency=2)

        assert [r.index for r in results] == [0, 1, 2, 3, 4]
        assert [r.status for r in results] == ["success", "failed", "success", "failed", "success"]
        assert [r.data for r in results if r.ok] == [0, 2, 4]
        assert results[1].error == "task 1 failed"

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        """Test no more than `concurrency` tasks run at once."""
        running = 0
        peak = 0

        async def tracked():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await execute_in_parallel([tracked] * 8, concurrency=3)
        assert peak == 3

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await execute_in_parallel([], concurrency=2) == []

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            await execute_with_progress([_task(1)], None, concurrency=0)


class TestExecuteWithProgress:
    """Tests for progress callbacks."""

    @pytest.mark.asyncio
    async def test_callback_per_completion(self):
        calls = []
        await execute_with_progress(
            [_task(1), _task(2, fail=True), _task(3)],
            lambda completed, total, result: calls.append((completed, total, result.status)),
            concurrency=1,
        )
        assert calls == [(1, 3, "success"), (2, 3, "failed"), (3, 3, "success")]

    @pytest.mark.asyncio
    async def test_async_callback(self):
        callback = AsyncMock()
        await execute_with_progress([_task(1), _task(2)], callback, concurrency=2)
        assert callback.await_count == 2

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_results(self):
        """Test a raising callback is logged and every result is still returned."""
        def callback(completed, total, result):
            raise RuntimeError("callback")

        results = await execute_with_progress(
            [_task(1), _task(2, fail=True), _task(3)], callback, concurrency=2
        )

        assert [r.index for r in results] == [0, 1, 2]
        assert [r.status for r in results] == ["success", "failed", "success"]
        assert results[0].data == 1

    @pytest.mark.asyncio
    async def test_failing_async_callback_keeps_results(self):
        callback = AsyncMock(side_effect=RuntimeError("callback"))
        results = await execute_with_progress([_task(1), _task(2)], callback, concurrency=1)
        assert [r.ok for r in results] == [True, True]
        assert callback.await_count == 2


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_errors(self):
        """Test transient errors are retried with doubling delays."""
        fn = AsyncMock(side_effect=[
            TransientProviderError("rate limited"),
            TransientProviderError("rate limited"),
            b"image",
        ])
        sleep = AsyncMock()

        result = await retry_with_backoff(fn, max_retries=3, initial_delay=1.0, sleep=sleep)

        assert result == b"image"
        assert fn.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Test at most max_retries + 1 calls are made."""
        fn = AsyncMock(side_effect=TransientProviderError("503"))
        sleep = AsyncMock()

        with pytest.raises(TransientProviderError):
            await retry_with_backoff(fn, max_retries=3, initial_delay=0.5, sleep=sleep)

        assert fn.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ContentPolicyError(),
        InvalidCredentialsError(),
        NotFoundError("model missing"),
        TerminalProviderError("bad request"),
    ])
    async def test_terminal_errors_not_retried(self, error):
        fn = AsyncMock(side_effect=error)
        sleep = AsyncMock()

        with pytest.raises(type(error)):
            await retry_with_backoff(fn, max_retries=3, initial_delay=1.0, sleep=sleep)

        assert fn.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_message_based_terminal_errors(self):
        """Test plain exceptions with terminal messages are not retried."""
        fn = AsyncMock(side_effect=RuntimeError("Content Policy Violation: rejected"))
        with pytest.raises(RuntimeError):
            await retry_with_backoff(fn, max_retries=3, initial_delay=0.0, sleep=AsyncMock())
        assert fn.await_count == 1


class TestIsRetryable:
    """Tests for retry classification."""

    def test_transient_is_retryable(self):
        assert is_retryable(TransientProviderError("timeout"))
        assert is_retryable(RuntimeError("connection reset"))

    def test_not_found_message(self):
        assert not is_retryable(RuntimeError("Slide not found"))

    def test_api_key_message(self):
        assert not is_retryable(ValueError("API key invalid"))
