"""Bounded fixed-interval polling of a job's status.

The loop is a tenacity ``AsyncRetrying`` that retries on *result* (status
not yet terminal), never on exceptions: a failed status fetch stops polling
immediately and propagates unchanged.  The inter-tick wait goes through a
:class:`CancellationToken`, so cancellation is observed at that single
suspension point and never interrupts a fetch in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from imgflow.exceptions import Cancelled, PollingTimeout
from imgflow.models import Job
from imgflow.tracing import Telemetry, get_telemetry

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 2000
DEFAULT_MAX_ATTEMPTS = 60

StatusFetcher = Callable[[str], Awaitable[Job]]
TickCallback = Callable[[Job], None]


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a poll."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("Polling cancelled by caller")

    async def sleep(self, seconds: float) -> None:
        """Wait *seconds*, waking early and raising :class:`Cancelled` on cancel."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise Cancelled("Polling cancelled by caller")


class PollingEngine:
    """Polls ``fetch_status(job_id)`` until a terminal status or the budget runs out.

    Usage::

        engine = PollingEngine(client.fetch_status, interval_ms=2000, max_attempts=60)
        job = await engine.poll(job_id, on_tick=render)

    Raises from :meth:`poll`:
        PollingTimeout: ``max_attempts`` fetches without a terminal status.
        Cancelled: the token was cancelled between ticks.
        NetworkError / ServerError: a status fetch failed (not retried).
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        telemetry: Telemetry | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval_ms < 0:
            raise ValueError("interval_ms must not be negative")
        self._fetch_status = fetch_status
        self.interval_ms = interval_ms
        self.max_attempts = max_attempts
        self._telemetry = telemetry

    @property
    def telemetry(self) -> Telemetry:
        return self._telemetry or get_telemetry()

    async def poll(
        self,
        job_id: str,
        on_tick: TickCallback | None = None,
        token: CancellationToken | None = None,
    ) -> Job:
        """Run the polling loop and return the terminal job.

        Args:
            job_id: Remote job identifier.
            on_tick: Called synchronously with every fetched status,
                including the terminal one.
            token: Optional cancellation token checked between ticks.
        """
        token = token or CancellationToken()
        attempts = 0

        async def _tick() -> Job:
            nonlocal attempts
            token.raise_if_cancelled()
            attempts += 1
            with self.telemetry.span("poll.tick", **{"poll.job_id": job_id, "poll.attempt": attempts}) as span:
                job = await self._fetch_status(job_id)
                span.record_job(job, "poll")
            logger.debug(
                "Poll %s attempt %d/%d: %s %d%%",
                job_id,
                attempts,
                self.max_attempts,
                job.status.value,
                job.progress,
            )
            if on_tick is not None:
                on_tick(job)
            return job

        retrying = AsyncRetrying(
            sleep=token.sleep,
            wait=wait_fixed(self.interval_ms / 1000),
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_result(lambda job: not job.status.is_terminal),
        )
        try:
            job = await retrying(_tick)
        except RetryError as exc:
            raise PollingTimeout(
                f"Job {job_id} still not finished after {attempts} status checks",
                attempts=attempts,
            ) from exc

        logger.info("Job %s reached %s after %d attempt(s)", job_id, job.status.value, attempts)
        return job
