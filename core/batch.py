"""
Concurrency-limited batch execution of independent generation tasks.

Used for missing asset images, missing scene images, missing scene videos and
narration. Each task is fault isolated: an exception is logged and recorded
in the report, it never cancels siblings. Cancellation is cooperative: tasks
that have not started yet are skipped, running tasks finish normally.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Union

logger = logging.getLogger(__name__)


class CancellationToken:
    """Shared flag checked by batch tasks before they start"""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class BatchTask:
    """One unit of generation work and the entity it targets"""
    target_id: str
    run: Callable[[], Awaitable[Any]]


@dataclass
class TaskOutcome:
    """Result of one task"""
    target_id: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class BatchReport:
    """Summary of a batch invocation"""
    name: str
    outcomes: List[TaskOutcome] = field(default_factory=list)
    cancelled: bool = False
    # True when the work list was empty (the completion callback still fires)
    nothing_to_do: bool = False
    peak_in_flight: int = 0

    @property
    def succeeded(self) -> List[TaskOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[TaskOutcome]:
        return [o for o in self.outcomes if not o.success and not o.skipped]

    @property
    def skipped(self) -> List[TaskOutcome]:
        return [o for o in self.outcomes if o.skipped]


CompletionCallback = Callable[[BatchReport], Union[None, Awaitable[None]]]


class BatchRunner:
    """
    Runs BatchTasks with at most `concurrency` in flight.

    Args:
        concurrency: In-flight ceiling (e.g. 10 for images, 3 for video)
        name: Label for logs and the report
    """

    def __init__(self, concurrency: int, name: str = "batch"):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.name = name

    async def run(
        self,
        tasks: List[BatchTask],
        cancel_token: Optional[CancellationToken] = None,
        on_complete: Optional[CompletionCallback] = None,
    ) -> BatchReport:
        """
        Execute tasks and return a BatchReport.

        on_complete is called once every task has settled, unless the
        cancellation token was set during the batch.
        """
        report = BatchReport(name=self.name, nothing_to_do=not tasks)
        semaphore = asyncio.Semaphore(self.concurrency)
        in_flight = 0

        async def run_single(task: BatchTask) -> TaskOutcome:
            nonlocal in_flight
            if cancel_token is not None and cancel_token.cancelled:
                return TaskOutcome(task.target_id, success=False, skipped=True)

            in_flight += 1
            report.peak_in_flight = max(report.peak_in_flight, in_flight)
            try:
                result = await task.run()
                return TaskOutcome(task.target_id, success=True, result=result)
            except Exception as e:
                logger.warning(f"[{self.name}] task {task.target_id} failed: {e}")
                return TaskOutcome(task.target_id, success=False, error=str(e))
            finally:
                in_flight -= 1

        async def run_with_limit(task: BatchTask) -> TaskOutcome:
            async with semaphore:
                return await run_single(task)

        if tasks:
            logger.info(f"[{self.name}] starting {len(tasks)} tasks (concurrency {self.concurrency})")
            report.outcomes = list(await asyncio.gather(*[run_with_limit(t) for t in tasks]))

        report.cancelled = cancel_token is not None and cancel_token.cancelled
        cancelled_note = " (cancelled)" if report.cancelled else ""
        logger.info(
            f"[{self.name}] done: {len(report.succeeded)} ok, {len(report.failed)} failed, "
            f"{len(report.skipped)} skipped{cancelled_note}"
        )

        if on_complete is not None and not report.cancelled:
            result = on_complete(report)
            if inspect.isawaitable(result):
                await result
        return report
