"""Tests for the Telemetry facade and JSON-lines file logging."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from conftest import make_job
from imgflow.exceptions import NetworkError
from imgflow.models import JobStatus
from imgflow.tracing import Telemetry, configure_file_logging, get_telemetry, set_telemetry


class TestTelemetry:
    def test_span_records_attributes(self):
        tel, exporter = Telemetry.for_testing()
        with tel.span("workflow.submit") as span:
            span.set_attribute("submit.operations", 2)

        (finished,) = exporter.get_finished_spans()
        assert finished.name == "workflow.submit"
        assert finished.attributes["submit.operations"] == 2

    def test_span_propagates_exceptions(self):
        tel, exporter = Telemetry.for_testing()
        with pytest.raises(ValueError):
            with tel.span("poll.tick"):
                raise ValueError("boom")
        assert exporter.get_finished_spans()[0].name == "poll.tick"

    def test_non_primitive_attributes_are_skipped(self):
        tel, exporter = Telemetry.for_testing()
        with tel.span("workflow.submit", **{"submit.error": None}) as span:
            span.set_attribute("submit.bad", object())
            span.set_attribute("submit.none", None)
            span.set_attribute("submit.ok", "yes")

        (finished,) = exporter.get_finished_spans()
        assert dict(finished.attributes) == {"submit.ok": "yes"}

    def test_record_job_uses_prefix(self):
        tel, exporter = Telemetry.for_testing()
        job = make_job(JobStatus.PROCESSING, progress=40, processed=1, total=3, job_id="job-7")
        with tel.span("poll.tick") as span:
            span.record_job(job, "poll")

        attributes = exporter.get_finished_spans()[0].attributes
        assert attributes["poll.job_id"] == "job-7"
        assert attributes["poll.status"] == "processing"
        assert attributes["poll.progress"] == 40
        assert attributes["poll.processed_operations"] == 1
        assert attributes["poll.total_operations"] == 3

    def test_record_failure_sets_outcome_and_event(self):
        tel, exporter = Telemetry.for_testing()
        with tel.span("workflow.submit") as span:
            span.record_failure(NetworkError("down"), "submit")

        (finished,) = exporter.get_finished_spans()
        assert finished.attributes["submit.outcome"] == "NetworkError"
        assert [e.name for e in finished.events] == ["exception"]

    def test_singleton_defaults_and_override(self):
        original = get_telemetry()
        try:
            tel, _ = Telemetry.for_testing()
            set_telemetry(tel)
            assert get_telemetry() is tel
        finally:
            set_telemetry(original)


class TestFileLogging:
    @pytest.fixture(autouse=True)
    def _restore_logger(self):
        logger = logging.getLogger("imgflow")
        handlers, level = list(logger.handlers), logger.level
        yield
        for handler in logger.handlers:
            if handler not in handlers:
                handler.close()
        logger.handlers = handlers
        logger.setLevel(level)

    def test_writes_json_lines(self, tmp_path):
        path = configure_file_logging(str(tmp_path))
        logging.getLogger("imgflow.polling").info("Job %s reached %s", "job-1", "completed")
        for handler in logging.getLogger("imgflow").handlers:
            handler.flush()

        (line,) = Path(path).read_text(encoding="utf-8").splitlines()
        record = json.loads(line)
        assert record["level"] == "INFO"
        assert record["logger"] == "imgflow.polling"
        assert record["msg"] == "Job job-1 reached completed"
        assert record["trace"] == "0" * 32

    def test_adapter_stamps_trace_ids(self, tmp_path):
        path = configure_file_logging(str(tmp_path))
        tel, _ = Telemetry.for_testing()
        with tel.span("workflow.submit"):
            tel.log.info("inside span")
        for handler in logging.getLogger("imgflow").handlers:
            handler.flush()

        record = json.loads(Path(path).read_text(encoding="utf-8").splitlines()[-1])
        assert record["msg"] == "inside span"
        assert record["trace"] != "0" * 32
        assert record["span"] != "0" * 16

    def test_second_call_adds_no_handler(self, tmp_path):
        configure_file_logging(str(tmp_path))
        count = len(logging.getLogger("imgflow").handlers)
        configure_file_logging(str(tmp_path))
        assert len(logging.getLogger("imgflow").handlers) == count
