"""
Bounded-concurrency execution helpers for image generation.

- execute_in_parallel: run awaitable factories under a semaphore, never raising
- execute_with_progress: same, with a callback after each completion
- retry_with_backoff: exponential backoff that gives up at once on terminal errors
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from imagedeck.core.config import settings
from imagedeck.core.exceptions import (
    ContentPolicyError,
    InvalidCredentialsError,
    NotFoundError,
    TerminalProviderError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[T]]

NON_RETRYABLE_ERRORS = (InvalidCredentialsError, ContentPolicyError, TerminalProviderError, NotFoundError)
NON_RETRYABLE_MESSAGES = ("api key invalid", "content policy violation", "not found")


@dataclass
class TaskResult(Generic[T]):
    """Outcome of one task, aligned to its position in the input list."""
    index: int
    status: str  # "success" | "failed"
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


async def _run_task(index: int, task: TaskFactory, semaphore: asyncio.Semaphore) -> TaskResult:
    async with semaphore:
        try:
            return TaskResult(index=index, status="success", data=await task())
        except Exception as e:
            logger.warning(f"Task {index} failed: {_error_message(e)}")
            return TaskResult(index=index, status="failed", error=_error_message(e))


async def execute_in_parallel(
    tasks: Sequence[TaskFactory],
    concurrency: Optional[int] = None,
) -> List[TaskResult]:
    """
    Run tasks with at most `concurrency` in flight.

    A failing task never cancels its siblings; its exception is captured in
    the corresponding TaskResult.

    Args:
        tasks: Zero-argument callables returning awaitables
        concurrency: Max in-flight tasks (default MAX_CONCURRENT_GENERATIONS)

    Returns:
        One TaskResult per task, in input order
    """
    return await execute_with_progress(tasks, None, concurrency)


async def execute_with_progress(
    tasks: Sequence[TaskFactory],
    on_progress: Optional[Callable[[int, int, TaskResult], Any]],
    concurrency: Optional[int] = None,
) -> List[TaskResult]:
    """
    Like execute_in_parallel, calling `on_progress(completed, total, result)`
    as each task finishes. The callback may be sync or async.
    """
    limit = settings.MAX_CONCURRENT_GENERATIONS if concurrency is None else concurrency
    if limit < 1:
        raise ValueError("concurrency must be at least 1")

    semaphore = asyncio.Semaphore(limit)
    total = len(tasks)
    completed = 0

    async def _tracked(index: int, task: TaskFactory) -> TaskResult:
        nonlocal completed
        result = await _run_task(index, task, semaphore)
        completed += 1
        if on_progress is not None:
            try:
                outcome = on_progress(completed, total, result)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"Progress callback failed after task {index}: {_error_message(e)}")
        return result

    return list(await asyncio.gather(*(_tracked(i, t) for i, t in enumerate(tasks))))


def is_retryable(exc: BaseException) -> bool:
    """False for terminal provider errors, not-found, and their messages."""
    if isinstance(exc, NON_RETRYABLE_ERRORS):
        return False
    message = str(exc).lower()
    return not any(marker in message for marker in NON_RETRYABLE_MESSAGES)


async def retry_with_backoff(
    fn: TaskFactory,
    max_retries: Optional[int] = None,
    initial_delay: Optional[float] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Call `fn` until it succeeds, at most `max_retries + 1` times.

    The wait between attempts starts at `initial_delay` seconds and doubles
    after every failure. Non-retryable errors are re-raised immediately.

    Args:
        fn: Zero-argument async callable
        max_retries: Retries after the first attempt (default GENERATION_MAX_RETRIES)
        initial_delay: First backoff delay in seconds (default GENERATION_RETRY_INITIAL_DELAY)
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The value returned by `fn`
    """
    retries = settings.GENERATION_MAX_RETRIES if max_retries is None else max_retries
    delay = settings.GENERATION_RETRY_INITIAL_DELAY if initial_delay is None else initial_delay

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt >= retries:
                logger.error(f"Giving up after {attempt + 1} attempts: {_error_message(e)}")
                raise
            logger.warning(
                f"Attempt {attempt + 1}/{retries + 1} failed ({_error_message(e)}), "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)
            delay *= 2
            attempt += 1
