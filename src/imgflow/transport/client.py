"""HTTP client for the remote image processing service.

Wraps one ``httpx.AsyncClient`` and maps every endpoint to a typed result:

  1. ``submit()`` -- multipart upload of the image plus an ordered
     operations descriptor; the service assigns the job id.
  2. ``fetch_status()`` -- progress of a submitted job.
  3. ``fetch_resource_at()`` / ``fetch_temporary_access_url()`` -- results.
  4. ``list_resources()``, ``remove()``, ``fetch_aggregate_telemetry()``.

Every failure leaves this module as a :class:`NetworkError` (no response)
or :class:`ServerError` (error status or malformed body).  ``health_check()``
never raises.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence, TypeVar

import httpx
import pydantic

from imgflow.exceptions import NetworkError, ServerError
from imgflow.models import (
    AccessUrl,
    DeleteAck,
    Job,
    ResourceContent,
    ResourcePage,
    SelectedResource,
)
from imgflow.operations import Operation, OperationType, operations_to_wire
from imgflow.transport.schemas import (
    AccessUrlResponse,
    DeleteResponse,
    ListResponse,
    StatusResponse,
    TelemetrySnapshot,
    UploadResponse,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=pydantic.BaseModel)

_API_PREFIX = re.compile(r"/api/v\d+/?$")


def service_root(base_url: str) -> str:
    """Strip the versioned API prefix: ``http://h/api/v1`` -> ``http://h``."""
    return _API_PREFIX.sub("", base_url.rstrip("/"))


def _operation_name(operation: OperationType | str) -> str:
    return operation.value if isinstance(operation, OperationType) else str(operation)


class ImageProcessorClient:
    """Async client for the image processing REST API.

    Usage::

        async with ImageProcessorClient("http://localhost:8080/api/v1") as client:
            job = await client.submit(resource, [Thumbnail(size=128)])
            job = await client.fetch_status(job.id)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        api_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Any, transport: httpx.AsyncBaseTransport | None = None) -> ImageProcessorClient:
        """Build a client from an :class:`~imgflow.config.ImgflowConfig`."""
        return cls(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            api_token=config.api_token,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def submit(self, resource: SelectedResource, operations: Sequence[Operation]) -> Job:
        """Upload *resource* with its ordered operations and create a job.

        Returns:
            A queued :class:`Job` carrying the requested operations.
        """
        files = {"image": (resource.filename, resource.data, resource.content_type)}
        form = {"operations": json.dumps(operations_to_wire(list(operations)))}
        response = await self._send("POST", "/images", files=files, data=form)
        body = self._parse(UploadResponse, response)
        logger.info(
            "Submitted %s (%d bytes, %d operations) -> job %s",
            resource.filename,
            resource.size_bytes,
            len(operations),
            body.id,
        )
        return Job(
            id=body.id,
            status=body.status,
            total_operations=body.operations_count or len(operations),
            requested_operations=tuple(operations),
        )

    async def fetch_status(self, job_id: str) -> Job:
        response = await self._send("GET", f"/images/{job_id}/status")
        job = self._parse(StatusResponse, response).to_job(job_id)
        logger.debug(
            "Job %s: %s %d%% (%d/%d)",
            job_id,
            job.status.value,
            job.progress,
            job.processed_operations,
            job.total_operations,
        )
        return job

    def resource_url(self, job_id: str, operation: OperationType | str = OperationType.ORIGINAL) -> str:
        """Direct download URL for one version of an image (no request made)."""
        return f"{self.base_url}/images/{job_id}?operation={_operation_name(operation)}"

    async def fetch_resource_at(
        self, job_id: str, operation: OperationType | str = OperationType.ORIGINAL
    ) -> ResourceContent:
        """Download the bytes of the original or a processed version."""
        name = _operation_name(operation)
        response = await self._send("GET", f"/images/{job_id}", params={"operation": name})
        return ResourceContent(
            job_id=job_id,
            operation=name,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            data=response.content,
        )

    async def fetch_temporary_access_url(
        self,
        job_id: str,
        operation: OperationType | str = OperationType.ORIGINAL,
        expiry_seconds: int = 3600,
    ) -> AccessUrl:
        """Ask the service for a pre-signed URL valid for *expiry_seconds*."""
        response = await self._send(
            "GET",
            f"/images/{job_id}/url",
            params={"operation": _operation_name(operation), "expiry": expiry_seconds},
        )
        return self._parse(AccessUrlResponse, response).to_domain()

    async def remove(self, job_id: str) -> DeleteAck:
        """Delete a job and all its versions.

        Idempotent: a 404 means the job is already gone and counts as
        success.
        """
        try:
            response = await self._send("DELETE", f"/images/{job_id}")
        except ServerError as exc:
            if exc.status_code == 404:
                logger.info("Job %s already removed (404)", job_id)
                return DeleteAck(id=job_id, success=True, message="already removed")
            raise
        ack = self._parse(DeleteResponse, response).to_domain(job_id)
        logger.info("Removed job %s", job_id)
        return ack

    # ------------------------------------------------------------------
    # Collection + telemetry
    # ------------------------------------------------------------------

    async def list_resources(self, limit: int, offset: int) -> ResourcePage:
        response = await self._send("GET", "/images", params={"limit": limit, "offset": offset})
        page = self._parse(ListResponse, response).to_page(limit=limit, offset=offset)
        logger.debug(
            "Listed %d records (offset=%d, limit=%d, total=%d)",
            len(page.records),
            offset,
            limit,
            page.total_count,
        )
        return page

    async def fetch_aggregate_telemetry(self) -> TelemetrySnapshot:
        response = await self._send("GET", "/statistics")
        return self._parse(TelemetrySnapshot, response)

    async def health_check(self) -> bool:
        """Probe ``/health`` outside the versioned API.  Never raises."""
        url = f"{service_root(self.base_url)}/health"
        try:
            response = await self._http.get(url)
        except Exception as exc:
            logger.warning("Health check failed: %s", exc)
            return False
        return response.is_success

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ImageProcessorClient:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal: request + normalization
    # ------------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Perform one exchange, mapping transport faults and error statuses.

        Raises:
            NetworkError: No response was received (connect error, timeout).
            ServerError: The service answered with a non-success status.
        """
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            logger.warning("%s %s: no response (%s)", method, path, exc)
            raise NetworkError(f"{method} {path}: {str(exc) or type(exc).__name__}") from exc

        if response.is_error:
            message = self._error_message(response)
            logger.warning("%s %s -> %d: %s", method, path, response.status_code, message)
            raise ServerError(message, status_code=response.status_code)
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("message", "error"):
                if body.get(key):
                    return str(body[key])
        return f"HTTP {response.status_code} {response.reason_phrase}".strip()

    @staticmethod
    def _parse(model: type[RecordT], response: httpx.Response) -> RecordT:
        """Validate a JSON body against *model*; shape errors are ServerErrors."""
        try:
            payload = response.json()
        except ValueError as exc:
            raise ServerError(
                f"Malformed response from {response.request.url.path}: not JSON",
                status_code=response.status_code,
            ) from exc
        try:
            return model.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise ServerError(
                f"Unexpected response shape from {response.request.url.path}: "
                f"{exc.error_count()} invalid field(s)",
                status_code=response.status_code,
            ) from exc
