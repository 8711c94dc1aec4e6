"""
Long-running video operations: submit, poll to a terminal state, retry.

The retry loop wraps the whole submit-to-terminal sequence. A job that fails
or times out is submitted again after an exponential backoff (doubled for
rate limits). Fatal errors are raised immediately; running out of attempts
is logged and reported as None so sibling tasks in a batch keep going.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.providers import OperationStatus, VideoOperation
from core.retry import (
    FatalGenerationError,
    GenerationError,
    GenerationTimeoutError,
    SleepFn,
    backoff_delay,
    is_rate_limit_error,
)

logger = logging.getLogger(__name__)


class VideoJobFailedError(GenerationError):
    """The backend reported the job as failed"""


class OperationPoller:
    """
    Drives video operations to completion.

    Args:
        get_operation: Poll function (usually ModelRouter.get_operation)
        max_attempts: Submit-to-terminal attempts before giving up
        base_delay: Backoff before the second attempt, doubling afterwards
        poll_interval: Seconds between status polls
        max_polls: Polls per attempt before the attempt times out
        sleep: Injectable sleep used for both polling and backoff
    """

    def __init__(
        self,
        get_operation: Callable[[VideoOperation], Awaitable[VideoOperation]],
        max_attempts: int = 5,
        base_delay: float = 2.0,
        poll_interval: float = 5.0,
        max_polls: int = 60,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.get_operation = get_operation
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.sleep = sleep

    @classmethod
    def from_settings(cls, router, settings, sleep: SleepFn = asyncio.sleep) -> "OperationPoller":
        return cls(
            router.get_operation,
            max_attempts=settings.video_max_attempts,
            base_delay=settings.video_base_delay,
            poll_interval=settings.video_poll_interval,
            max_polls=settings.video_max_polls,
            sleep=sleep,
        )

    async def wait(self, operation: VideoOperation) -> str:
        """Poll until terminal; return the result URI or raise"""
        polls = 0
        while not operation.done:
            if polls >= self.max_polls:
                raise GenerationTimeoutError(
                    f"Video job {operation.operation_id} timed out after {polls} polls"
                )
            await self.sleep(self.poll_interval)
            operation = await self.get_operation(operation)
            polls += 1
            logger.debug(f"Video job {operation.operation_id}: {operation.status.value} (poll {polls})")

        if operation.status == OperationStatus.FAILED:
            raise VideoJobFailedError(operation.error or f"Video job {operation.operation_id} failed")
        if not operation.result_uri:
            raise VideoJobFailedError(f"Video job {operation.operation_id} finished without a URI")
        return operation.result_uri

    async def run(
        self,
        submit: Callable[[], Awaitable[VideoOperation]],
        label: str = "video",
    ) -> Optional[str]:
        """
        Submit and wait, retrying the whole sequence.

        Returns:
            The media URI, or None once every attempt has failed

        Raises:
            FatalGenerationError: immediately, without retrying
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                operation = await submit()
                return await self.wait(operation)
            except FatalGenerationError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"{label} failed (attempt {attempt}/{self.max_attempts}): {e}")
                if attempt < self.max_attempts:
                    delay = backoff_delay(attempt, self.base_delay, e)
                    if is_rate_limit_error(e):
                        logger.info(f"{label} rate limited, waiting {delay:.1f}s")
                    await self.sleep(delay)

        logger.error(f"Final failure for {label} after {self.max_attempts} attempts: {last_error}")
        return None
