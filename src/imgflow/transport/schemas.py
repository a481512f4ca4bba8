"""Pydantic v2 records for the image processing service's JSON responses.

One model per endpoint with required and optional fields spelled out.
Separate from :mod:`imgflow.models` (dataclasses); each record converts to
its domain counterpart.  Any validation failure here is reported to callers
as a ``ServerError`` by the transport client.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from imgflow.models import (
    AccessUrl,
    DeleteAck,
    Job,
    JobStatus,
    PageWindow,
    ResourcePage,
    ResourceRecord,
)


class _Record(BaseModel):
    # The service adds fields over time; only the ones named here are read.
    model_config = ConfigDict(extra="ignore")


def _parse_status(value: object) -> JobStatus:
    if not isinstance(value, str):
        raise ValueError(f"status must be a string, got {type(value).__name__}")
    return JobStatus.from_wire(value)


WireStatus = Annotated[JobStatus, BeforeValidator(_parse_status)]


class UploadResponse(_Record):
    """``POST /images`` body."""

    id: str = Field(min_length=1)
    status: WireStatus = JobStatus.QUEUED
    filename: str | None = None
    size: int | None = None
    mime_type: str | None = None
    created_at: datetime | None = None
    operations_count: int = 0


class StatusResponse(_Record):
    """``GET /images/{id}/status`` body."""

    id: str | None = None
    status: WireStatus
    progress: int = Field(ge=0, le=100)
    processed_operations: int = Field(ge=0)
    total_operations: int = Field(ge=0)
    error_message: str | None = None

    def to_job(self, job_id: str) -> Job:
        return Job(
            id=self.id or job_id,
            status=self.status,
            progress=self.progress,
            processed_operations=self.processed_operations,
            total_operations=self.total_operations,
            error_message=self.error_message or None,
        )


class AccessUrlResponse(_Record):
    url: str = Field(min_length=1)
    expiry: int = Field(validation_alias=AliasChoices("expiry", "expires_in"), ge=0)

    def to_domain(self) -> AccessUrl:
        return AccessUrl(url=self.url, expiry=self.expiry)


class DeleteResponse(_Record):
    id: str | None = None
    success: bool = True
    message: str = ""

    def to_domain(self, job_id: str) -> DeleteAck:
        return DeleteAck(id=self.id or job_id, success=self.success, message=self.message)


class ImageItem(_Record):
    id: str = Field(min_length=1)
    filename: str
    size: int = Field(ge=0)
    created_at: datetime | None = None
    status: WireStatus

    def to_record(self) -> ResourceRecord:
        return ResourceRecord(
            id=self.id,
            filename=self.filename,
            size_bytes=self.size,
            created_at=self.created_at,
            status=self.status,
        )


class ListResponse(_Record):
    """``GET /images`` body.

    Older service builds only report ``count`` (the length of this page);
    ``total_count`` is preferred whenever it is present.
    """

    images: list[ImageItem]
    total_count: int | None = Field(default=None, ge=0)
    count: int | None = Field(default=None, ge=0)

    def to_page(self, limit: int, offset: int) -> ResourcePage:
        records = tuple(item.to_record() for item in self.images)
        if self.total_count is not None:
            total = self.total_count
        else:
            total = offset + (self.count if self.count is not None else len(records))
        return ResourcePage(
            records=records,
            total_count=total,
            window=PageWindow(offset=offset, limit=limit, total_count=total),
        )


class OperationStatistic(_Record):
    operation_type: str
    total_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    average_processing_time_ms: float = 0.0


class TelemetrySnapshot(_Record):
    """Read-only aggregate counters from ``GET /statistics``."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    total_images_uploaded: int = 0
    total_images_processed: int = 0
    total_images_failed: int = 0
    total_data_processed_bytes: int = 0
    average_processing_time_ms: float = 0.0
    operation_statistics: list[OperationStatistic] = Field(default_factory=list)
    last_updated: datetime | None = None

    @field_validator("operation_statistics", mode="before")
    @classmethod
    def null_to_empty(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def total_data_processed_mb(self) -> float:
        return self.total_data_processed_bytes / (1024 * 1024)
