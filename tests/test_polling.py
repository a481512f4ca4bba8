"""Tests for the bounded polling engine and its cancellation token.

Covers:
  - Terminal status ends the loop; every tick reaches the callback
  - Attempt budget: exactly N fetches, then PollingTimeout
  - Fetch errors stop polling immediately (no retry)
  - Cancellation between ticks stops further fetches
  - poll.tick spans
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import make_job
from imgflow.exceptions import Cancelled, NetworkError, PollingTimeout, ServerError
from imgflow.models import JobStatus
from imgflow.polling import CancellationToken, PollingEngine


# ======================================================================
# Loop termination
# ======================================================================


class TestPollingTermination:
    async def test_stops_at_first_terminal_status(self):
        fetch = AsyncMock(
            side_effect=[
                make_job(JobStatus.QUEUED),
                make_job(JobStatus.PROCESSING, progress=50, processed=1),
                make_job(JobStatus.COMPLETED, progress=100, processed=2),
            ]
        )
        ticks = []
        engine = PollingEngine(fetch, interval_ms=0, max_attempts=10)

        job = await engine.poll("job-1", on_tick=ticks.append)

        assert job.status is JobStatus.COMPLETED
        assert fetch.await_count == 3
        assert [t.status for t in ticks] == [JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.COMPLETED]
        fetch.assert_awaited_with("job-1")

    async def test_remote_failure_is_a_terminal_result(self):
        fetch = AsyncMock(return_value=make_job(JobStatus.FAILED, error_message="bad pixels"))
        engine = PollingEngine(fetch, interval_ms=0, max_attempts=5)

        job = await engine.poll("job-1")

        assert job.status is JobStatus.FAILED
        assert job.error_message == "bad pixels"
        assert fetch.await_count == 1

    @pytest.mark.parametrize("max_attempts", [1, 3, 7])
    async def test_timeout_after_exactly_max_attempts(self, max_attempts):
        fetch = AsyncMock(return_value=make_job(JobStatus.PROCESSING, progress=10))
        engine = PollingEngine(fetch, interval_ms=0, max_attempts=max_attempts)

        with pytest.raises(PollingTimeout) as exc_info:
            await engine.poll("job-1")

        assert fetch.await_count == max_attempts
        assert exc_info.value.attempts == max_attempts

    async def test_scenario_c_three_attempts_ten_ms(self):
        fetch = AsyncMock(return_value=make_job(JobStatus.PROCESSING))
        engine = PollingEngine(fetch, interval_ms=10, max_attempts=3)

        with pytest.raises(PollingTimeout):
            await engine.poll("job-1")

        assert fetch.await_count == 3

    @pytest.mark.parametrize("error", [NetworkError("unreachable"), ServerError("500", status_code=500)])
    async def test_fetch_error_is_not_retried(self, error):
        fetch = AsyncMock(side_effect=[make_job(JobStatus.PROCESSING), error, make_job(JobStatus.COMPLETED)])
        engine = PollingEngine(fetch, interval_ms=0, max_attempts=10)

        with pytest.raises(type(error)) as exc_info:
            await engine.poll("job-1")

        assert exc_info.value is error
        assert fetch.await_count == 2


class TestPollingValidation:
    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            PollingEngine(AsyncMock(), max_attempts=0)

    def test_rejects_negative_interval(self):
        with pytest.raises(ValueError):
            PollingEngine(AsyncMock(), interval_ms=-1)


# ======================================================================
# Cancellation
# ======================================================================


class TestCancellation:
    async def test_cancel_after_second_tick_stops_fetching(self):
        fetch = AsyncMock(return_value=make_job(JobStatus.PROCESSING))
        token = CancellationToken()
        engine = PollingEngine(fetch, interval_ms=0, max_attempts=10)

        def on_tick(job):
            if fetch.await_count == 2:
                token.cancel()

        with pytest.raises(Cancelled):
            await engine.poll("job-1", on_tick=on_tick, token=token)

        assert fetch.await_count == 2

    async def test_cancel_wakes_the_inter_tick_wait(self):
        fetch = AsyncMock(return_value=make_job(JobStatus.PROCESSING))
        token = CancellationToken()
        engine = PollingEngine(fetch, interval_ms=60_000, max_attempts=10)

        task = asyncio.create_task(engine.poll("job-1", token=token))
        while fetch.await_count < 1:
            await asyncio.sleep(0)
        token.cancel()

        with pytest.raises(Cancelled):
            await asyncio.wait_for(task, timeout=5)
        assert fetch.await_count == 1

    async def test_cancelled_before_start_makes_no_fetch(self):
        fetch = AsyncMock()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(Cancelled):
            await PollingEngine(fetch, interval_ms=0).poll("job-1", token=token)

        fetch.assert_not_awaited()

    async def test_token_sleep_returns_after_timeout(self):
        token = CancellationToken()
        await token.sleep(0.001)
        assert token.cancelled is False


# ======================================================================
# Tracing
# ======================================================================


class TestPollingSpans:
    async def test_one_span_per_tick(self, telemetry):
        tel, exporter = telemetry
        fetch = AsyncMock(side_effect=[make_job(JobStatus.PROCESSING), make_job(JobStatus.COMPLETED)])
        engine = PollingEngine(fetch, interval_ms=0, max_attempts=5, telemetry=tel)

        await engine.poll("job-1")

        spans = exporter.get_finished_spans()
        assert [s.name for s in spans] == ["poll.tick", "poll.tick"]
        assert spans[1].attributes["poll.attempt"] == 2
        assert spans[1].attributes["poll.status"] == "completed"
        assert spans[0].attributes["poll.job_id"] == "job-1"

    async def test_tick_span_records_job_progress(self, telemetry):
        tel, exporter = telemetry
        fetch = AsyncMock(return_value=make_job(JobStatus.COMPLETED, progress=100, processed=2, total=2))
        engine = PollingEngine(fetch, interval_ms=0, max_attempts=5, telemetry=tel)

        await engine.poll("job-1")

        (span,) = exporter.get_finished_spans()
        assert span.attributes["poll.progress"] == 100
        assert span.attributes["poll.processed_operations"] == 2
        assert span.attributes["poll.total_operations"] == 2
