"""Error classification and exponential backoff for generation calls"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED", "quota")
RETRYABLE_STATUS_CODES = frozenset({429, 500, 503})

SleepFn = Callable[[float], Awaitable[None]]


class GenerationError(Exception):
    """Base error for generation work above the provider layer"""


class FatalGenerationError(GenerationError):
    """A non-transient failure; retrying cannot help"""


class MissingPrerequisiteError(FatalGenerationError):
    """Required input (e.g. the scene's storyboard image) is missing"""


class GenerationTimeoutError(GenerationError):
    """One attempt exceeded its time budget"""


def is_rate_limit_error(error: BaseException) -> bool:
    if getattr(error, "status_code", None) == 429:
        return True
    text = str(error)
    return any(marker.lower() in text.lower() for marker in RATE_LIMIT_MARKERS)


def is_retryable_error(error: BaseException) -> bool:
    """Transient network, server or rate-limit failures"""
    if isinstance(error, FatalGenerationError):
        return False
    if isinstance(error, (GenerationTimeoutError, asyncio.TimeoutError, httpx.TransportError)):
        return True
    if getattr(error, "status_code", None) in RETRYABLE_STATUS_CODES:
        return True
    return is_rate_limit_error(error) or "timed out" in str(error).lower()


def backoff_delay(attempt: int, base_delay: float, error: Optional[BaseException] = None) -> float:
    """
    Delay before retrying after failed attempt number `attempt` (1-based).

    base * 2^(attempt-1), doubled when the failure was a rate limit.
    """
    delay = base_delay * (2 ** (attempt - 1))
    if error is not None and is_rate_limit_error(error):
        delay *= 2
    return delay


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 2.0,
    timeout: Optional[float] = None,
    label: str = "request",
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """
    Run `operation`, retrying retryable errors with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory (called once per attempt)
        max_retries: Retries after the first attempt
        initial_delay: Delay before the first retry; doubles each retry
        timeout: Per-attempt time budget in seconds
        label: Name used in log messages
        sleep: Injectable sleep (tests pass a recorder)
    """
    retry = 0
    while True:
        try:
            if timeout:
                try:
                    return await asyncio.wait_for(operation(), timeout)
                except asyncio.TimeoutError as e:
                    raise GenerationTimeoutError(f"{label} timed out after {timeout:.0f}s") from e
            return await operation()
        except Exception as e:
            if retry >= max_retries or not is_retryable_error(e):
                raise
            delay = initial_delay * (2 ** retry)
            retry += 1
            logger.warning(f"{label} failed ({e}), retry {retry}/{max_retries} in {delay:.1f}s")
            await sleep(delay)
