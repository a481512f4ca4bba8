"""Shared pytest fixtures for imgflow tests.

Provides a fast-polling config, sample image selections, an in-memory
telemetry exporter, a fake transport client for workflow tests, and an
``httpx.MockTransport`` router for client tests.
"""

from __future__ import annotations

from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from imgflow.config import ImgflowConfig
from imgflow.models import Job, JobStatus, SelectedResource
from imgflow.tracing import Telemetry

BASE_URL = "http://imgsvc.test/api/v1"


def make_job(
    status: JobStatus | str = JobStatus.PROCESSING,
    progress: int = 0,
    processed: int = 0,
    total: int = 2,
    job_id: str = "job-1",
    error_message: str | None = None,
) -> Job:
    """Build a Job the way a status response would produce it."""
    return Job(
        id=job_id,
        status=JobStatus(status),
        progress=progress,
        processed_operations=processed,
        total_operations=total,
        error_message=error_message,
    )


@pytest.fixture
def config() -> ImgflowConfig:
    """Config with a zero poll interval and a small attempt budget."""
    return ImgflowConfig(base_url=BASE_URL, poll_interval_ms=0, poll_max_attempts=5)


@pytest.fixture
def png_resource() -> SelectedResource:
    return SelectedResource(filename="cat.png", content_type="image/png", data=b"\x89PNG\r\n" + bytes(1024))


@pytest.fixture
def jpeg_5mb() -> SelectedResource:
    return SelectedResource(
        filename="holiday.jpg",
        content_type="image/jpeg",
        data=b"\xff\xd8\xff" + bytes(5 * 1024 * 1024 - 3),
    )


@pytest.fixture
def telemetry():
    """``(Telemetry, InMemorySpanExporter)`` pair for span assertions."""
    return Telemetry.for_testing()


@pytest.fixture
def fake_client() -> MagicMock:
    """Client double: ``submit`` returns a queued job; set ``fetch_status`` per test."""
    client = MagicMock()

    async def _submit(resource, operations):
        return Job(
            id="job-1",
            status=JobStatus.QUEUED,
            total_operations=len(operations),
            requested_operations=tuple(operations),
        )

    client.submit = AsyncMock(side_effect=_submit)
    client.fetch_status = AsyncMock(return_value=make_job(JobStatus.COMPLETED, progress=100, processed=1, total=1))
    return client


Handler = Callable[[httpx.Request], httpx.Response]


class Router:
    """Minimal request router for ``httpx.MockTransport``.

    Routes are keyed by ``(method, path)``; every request is recorded in
    :attr:`requests` so tests can assert what was sent.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, handler: Handler | httpx.Response | dict) -> None:
        if isinstance(handler, dict):
            body = handler
            handler = lambda request: httpx.Response(200, json=body)  # noqa: E731
        elif isinstance(handler, httpx.Response):
            response = handler
            handler = lambda request: response  # noqa: E731
        self.routes[(method.upper(), path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url.path}"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def router() -> Router:
    return Router()
