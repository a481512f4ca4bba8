"""Data models and enums for jobs, gallery records, and workflow snapshots."""

from __future__ import annotations

import math
import mimetypes
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path

from imgflow.exceptions import ErrorEnvelope
from imgflow.operations import Operation


class JobStatus(str, Enum):
    """Remote processing status of a job."""

    QUEUED = "queued"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position in the forward-only status order (terminals share a rank)."""
        return _STATUS_RANK[self]

    @classmethod
    def from_wire(cls, value: str) -> JobStatus:
        """Parse a status tag, accepting the service's legacy aliases.

        Raises:
            ValueError: If *value* is not a known status or alias.
        """
        value = value.strip().lower()
        if value in _STATUS_ALIASES:
            return _STATUS_ALIASES[value]
        return cls(value)


_STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.UPLOADING: 1,
    JobStatus.PROCESSING: 2,
    JobStatus.COMPLETED: 3,
    JobStatus.FAILED: 3,
}

_STATUS_ALIASES = {
    "pending": JobStatus.QUEUED,
    "uploaded": JobStatus.QUEUED,
    "cancelled": JobStatus.FAILED,
}


@dataclass(frozen=True)
class Job:
    """Server-tracked unit of work: one uploaded image plus its operations.

    ``requested_operations`` is only known on the submitting side; a job
    built from a bare status response carries an empty tuple.
    """

    id: str
    status: JobStatus
    progress: int = 0
    processed_operations: int = 0
    total_operations: int = 0
    requested_operations: tuple[Operation, ...] = ()
    error_message: str | None = None

    def merged_with(self, update: Job) -> Job:
        """Fold a fresher status report into this job.

        Keeps ``id`` and ``requested_operations``; status never moves
        backwards and progress never decreases while the job is active.
        """
        status = update.status if update.status.rank >= self.status.rank else self.status
        progress = update.progress
        if not status.is_terminal:
            progress = max(self.progress, update.progress)
        return replace(
            self,
            status=status,
            progress=progress,
            processed_operations=max(self.processed_operations, update.processed_operations),
            total_operations=update.total_operations or self.total_operations,
            error_message=update.error_message or self.error_message,
        )


@dataclass(frozen=True)
class ResourceRecord:
    """One gallery entry as returned by a listing fetch."""

    id: str
    filename: str
    size_bytes: int
    created_at: datetime | None
    status: JobStatus


@dataclass(frozen=True)
class PageWindow:
    offset: int
    limit: int
    total_count: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total_count / self.limit)


@dataclass(frozen=True)
class ResourcePage:
    """Records plus the total collection size for one listing fetch."""

    records: tuple[ResourceRecord, ...]
    total_count: int
    window: PageWindow


@dataclass(frozen=True)
class ResourceContent:
    """Bytes of one version (original or processed) of an uploaded image."""

    job_id: str
    operation: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class AccessUrl:
    url: str
    expiry: int


@dataclass(frozen=True)
class DeleteAck:
    id: str
    success: bool
    message: str = ""


@dataclass(frozen=True)
class SelectedResource:
    """A candidate image chosen by the caller, not yet validated."""

    filename: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Path | str, content_type: str | None = None) -> SelectedResource:
        """Read *path* into memory, guessing the MIME type from its name."""
        path = Path(path)
        if content_type is None:
            content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(filename=path.name, content_type=content_type, data=path.read_bytes())


class WorkflowPhase(str, Enum):
    """States of the submission workflow."""

    IDLE = "idle"
    SELECTED = "selected"
    VALIDATED = "validated"
    UPLOADING = "uploading"
    AWAITING_COMPLETION = "awaiting_completion"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusSnapshot:
    """Immutable view of the workflow emitted to observers on every change."""

    phase: WorkflowPhase
    percentage: int
    description: str
    status: str | None = None
    job_id: str | None = None
    error: ErrorEnvelope | None = None
