"""Job-aware OpenTelemetry spans and JSON-lines logging for imgflow.

Spans carry the job they concern: :meth:`JobSpan.record_job` stamps id,
status, progress and operation counts under a prefix (``submit.*`` for the
workflow, ``poll.*`` for each tick).  Attribute writes never raise and only
primitive values reach OTel, so instrumentation cannot fail a submission.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Iterator

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

if TYPE_CHECKING:
    from imgflow.exceptions import ImgflowError
    from imgflow.models import Job

TRACER_NAME = "imgflow"
ZERO_TRACE_ID = "0" * 32
ZERO_SPAN_ID = "0" * 16

_PRIMITIVES = (str, bool, int, float)


class JobSpan:
    """Wrapper over an OTel span with job-level helpers."""

    def __init__(self, span: object) -> None:
        self._span = span

    def set_attribute(self, key: str, value: object) -> None:
        """Set *key* when *value* is a str/bool/int/float; anything else is skipped."""
        if not isinstance(value, _PRIMITIVES):
            return
        try:
            self._span.set_attribute(key, value)  # type: ignore[attr-defined]
        except Exception:
            pass

    def record_job(self, job: Job, prefix: str) -> None:
        self.set_attribute(f"{prefix}.job_id", job.id)
        self.set_attribute(f"{prefix}.status", job.status.value)
        self.set_attribute(f"{prefix}.progress", job.progress)
        self.set_attribute(f"{prefix}.processed_operations", job.processed_operations)
        self.set_attribute(f"{prefix}.total_operations", job.total_operations)

    def record_failure(self, error: ImgflowError, prefix: str) -> None:
        """Tag the span with the error kind and attach the exception event."""
        self.set_attribute(f"{prefix}.outcome", error.kind.value)
        try:
            self._span.record_exception(error)  # type: ignore[attr-defined]
        except Exception:
            pass


def _trace_ids() -> tuple[str, str]:
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return ZERO_TRACE_ID, ZERO_SPAN_ID
    return format(ctx.trace_id, "032x"), format(ctx.span_id, "016x")


class TraceContextAdapter(logging.LoggerAdapter):
    """Stamps the active trace and span ids onto every record it logs."""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:  # type: ignore[override]
        trace_id, span_id = _trace_ids()
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("trace_id", trace_id)
        extra.setdefault("span_id", span_id)
        kwargs["extra"] = extra
        return msg, kwargs


class Telemetry:
    """Span factory shared by the workflow and the polling engine."""

    def __init__(self, tracer: object) -> None:
        self._tracer = tracer
        self.log = TraceContextAdapter(logging.getLogger(TRACER_NAME), {})

    @contextmanager
    def span(self, name: str, **attributes: object) -> Iterator[JobSpan]:
        """Open *name* as the current span, pre-populated with *attributes*."""
        with self._tracer.start_as_current_span(name) as otel_span:  # type: ignore[attr-defined]
            handle = JobSpan(otel_span)
            for key, value in attributes.items():
                handle.set_attribute(key, value)
            yield handle

    @classmethod
    def for_testing(cls) -> tuple[Telemetry, InMemorySpanExporter]:
        """Telemetry plus the in-memory exporter holding its finished spans."""
        exporter = InMemorySpanExporter()
        return cls(_tracer(exporter)), exporter

    @classmethod
    def noop(cls) -> Telemetry:
        return cls(_tracer(None))


def _tracer(exporter: InMemorySpanExporter | None) -> object:
    provider = TracerProvider()
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    return provider.get_tracer(TRACER_NAME)


_active: Telemetry | None = None


def get_telemetry() -> Telemetry:
    """The process-wide Telemetry; a no-op one until :func:`set_telemetry`."""
    global _active
    if _active is None:
        _active = Telemetry.noop()
    return _active


def set_telemetry(tel: Telemetry) -> None:
    global _active
    _active = tel


# ---------------------------------------------------------------------------
# File logging
# ---------------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ``ts, level, logger, trace, span, msg``.

    Records logged through plain module loggers have no trace ids and get
    the zero ids.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "trace": getattr(record, "trace_id", ZERO_TRACE_ID),
            "span": getattr(record, "span_id", ZERO_SPAN_ID),
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_file_logging(log_dir: str = "logs", level: int = logging.DEBUG) -> str:
    """Send the ``imgflow`` logger tree to ``{log_dir}/imgflow-YYYYMMDD.log``.

    Idempotent: a second call finds the existing file handler and adds none.

    Returns:
        Path of the log file.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, f"imgflow-{datetime.now():%Y%m%d}.log")

    logger = logging.getLogger(TRACER_NAME)
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(level)
    return log_path
