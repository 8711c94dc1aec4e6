"""Unit tests for the long-running video operation poller"""

import logging

import pytest

from core.lro import OperationPoller
from core.providers import OperationStatus, ProviderHTTPError, VideoOperation
from core.retry import MissingPrerequisiteError
from tests.mocks.fixtures import SleepRecorder


def submitted(op_id="job_1"):
    return VideoOperation(op_id, status=OperationStatus.SUBMITTED)


def succeeded(op_id="job_1", uri="https://cdn.test/v.mp4"):
    return VideoOperation(op_id, status=OperationStatus.SUCCEEDED, result_uri=uri)


class ScriptedBackend:
    """submit() raises or returns the queued results in order; polls follow a script"""

    def __init__(self, submits, polls=()):
        self.submits = list(submits)
        self.polls = list(polls)
        self.submit_calls = 0
        self.poll_calls = 0

    async def submit(self):
        self.submit_calls += 1
        result = self.submits.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def get_operation(self, operation):
        self.poll_calls += 1
        return self.polls.pop(0)


class TestOperationPoller:

    @pytest.mark.asyncio
    async def test_rate_limited_submits_back_off_doubled(self):
        sleep = SleepRecorder()
        backend = ScriptedBackend(
            [ProviderHTTPError(429, "RESOURCE_EXHAUSTED") for _ in range(4)] + [succeeded()]
        )
        poller = OperationPoller(backend.get_operation, max_attempts=5, base_delay=2.0, sleep=sleep)

        uri = await poller.run(backend.submit)

        assert uri == "https://cdn.test/v.mp4"
        assert backend.submit_calls == 5
        assert sleep.delays == [4.0, 8.0, 16.0, 32.0]

    @pytest.mark.asyncio
    async def test_terminal_operation_is_not_polled(self):
        sleep = SleepRecorder()
        backend = ScriptedBackend([succeeded()])
        poller = OperationPoller(backend.get_operation, sleep=sleep)

        assert await poller.run(backend.submit) == "https://cdn.test/v.mp4"
        assert backend.poll_calls == 0
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_polls_at_interval_until_done(self):
        sleep = SleepRecorder()
        backend = ScriptedBackend(
            [submitted()],
            polls=[VideoOperation("job_1", status=OperationStatus.IN_PROGRESS), succeeded()],
        )
        poller = OperationPoller(backend.get_operation, poll_interval=5.0, sleep=sleep)

        assert await poller.run(backend.submit) == "https://cdn.test/v.mp4"
        assert backend.poll_calls == 2
        assert sleep.delays == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_failed_job_is_resubmitted(self):
        sleep = SleepRecorder()
        backend = ScriptedBackend(
            [submitted("job_1"), submitted("job_2")],
            polls=[
                VideoOperation("job_1", status=OperationStatus.FAILED, error="moderation"),
                succeeded("job_2", "https://cdn.test/2.mp4"),
            ],
        )
        poller = OperationPoller(backend.get_operation, base_delay=2.0, poll_interval=1.0, sleep=sleep)

        assert await poller.run(backend.submit) == "https://cdn.test/2.mp4"
        assert backend.submit_calls == 2
        # poll, backoff, poll
        assert sleep.delays == [1.0, 2.0, 1.0]

    @pytest.mark.asyncio
    async def test_exhaustion_returns_none_and_logs_error(self, caplog):
        sleep = SleepRecorder()
        backend = ScriptedBackend([ProviderHTTPError(500, "boom") for _ in range(3)])
        poller = OperationPoller(backend.get_operation, max_attempts=3, base_delay=1.0, sleep=sleep)

        with caplog.at_level(logging.ERROR, logger="core.lro"):
            assert await poller.run(backend.submit, label="video scene_1") is None

        assert sleep.delays == [1.0, 2.0]
        assert any("Final failure for video scene_1" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_fatal_error_is_raised_without_retry(self):
        sleep = SleepRecorder()
        backend = ScriptedBackend([MissingPrerequisiteError("no frame"), succeeded()])
        poller = OperationPoller(backend.get_operation, sleep=sleep)

        with pytest.raises(MissingPrerequisiteError):
            await poller.run(backend.submit)
        assert backend.submit_calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_poll_budget_times_out_an_attempt(self):
        sleep = SleepRecorder()
        in_progress = VideoOperation("job_1", status=OperationStatus.IN_PROGRESS)
        backend = ScriptedBackend([submitted()], polls=[in_progress] * 3)
        poller = OperationPoller(backend.get_operation, max_attempts=1, max_polls=3,
                                 poll_interval=5.0, sleep=sleep)

        assert await poller.run(backend.submit) is None
        assert backend.poll_calls == 3

    @pytest.mark.asyncio
    async def test_success_without_uri_counts_as_failure(self):
        sleep = SleepRecorder()
        backend = ScriptedBackend([VideoOperation("job_1", status=OperationStatus.SUCCEEDED)])
        poller = OperationPoller(backend.get_operation, max_attempts=1, sleep=sleep)

        assert await poller.run(backend.submit) is None
