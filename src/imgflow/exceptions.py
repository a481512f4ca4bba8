"""Error taxonomy shared by every layer of the client.

Every failure a caller can observe is an :class:`ImgflowError` carrying an
:class:`ErrorEnvelope` (``kind`` + ``message``).  The transport client
produces ``NetworkError`` / ``ServerError``; the workflow produces
``ValidationError``; the polling engine produces ``PollingTimeout`` and
``Cancelled``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Category of a failure surfaced to callers."""

    VALIDATION = "ValidationError"
    NETWORK = "NetworkError"
    SERVER = "ServerError"
    POLLING_TIMEOUT = "PollingTimeout"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class ErrorEnvelope:
    """Immutable ``{kind, message}`` pair attached to snapshots and errors."""

    kind: ErrorKind
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


class ImgflowError(Exception):
    """Base class for every enveloped failure."""

    kind: ErrorKind = ErrorKind.SERVER

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(kind=self.kind, message=self.message)


class ValidationError(ImgflowError):
    """Client-side guard failure: bad type, size, or empty operation set."""

    kind = ErrorKind.VALIDATION


class NetworkError(ImgflowError):
    """No response was received from the service."""

    kind = ErrorKind.NETWORK


class ServerError(ImgflowError):
    """Non-success response, or a response body of unexpected shape."""

    kind = ErrorKind.SERVER

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PollingTimeout(ImgflowError):
    """Attempt budget exhausted before the job reached a terminal status."""

    kind = ErrorKind.POLLING_TIMEOUT

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class Cancelled(ImgflowError):
    """Caller-initiated abort."""

    kind = ErrorKind.CANCELLED


class PageSuperseded(Cancelled):
    """A newer ``load_page`` call replaced this one before it finished."""


class WorkflowStateError(RuntimeError):
    """Raised when a workflow method is called from a state that forbids it."""
