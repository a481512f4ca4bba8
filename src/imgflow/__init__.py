"""Client-side orchestration for a remote image processing service."""

__version__ = "0.1.0"

from imgflow.exceptions import (
    Cancelled,
    ErrorEnvelope,
    ErrorKind,
    ImgflowError,
    NetworkError,
    PollingTimeout,
    ServerError,
    ValidationError,
    WorkflowStateError,
)
from imgflow.models import Job, JobStatus, SelectedResource, StatusSnapshot, WorkflowPhase
from imgflow.operations import Resize, Thumbnail, Watermark

__all__ = [
    "Cancelled",
    "ErrorEnvelope",
    "ErrorKind",
    "ImgflowError",
    "Job",
    "JobStatus",
    "NetworkError",
    "PollingTimeout",
    "Resize",
    "SelectedResource",
    "ServerError",
    "StatusSnapshot",
    "Thumbnail",
    "ValidationError",
    "Watermark",
    "WorkflowPhase",
    "WorkflowStateError",
    "__version__",
]
