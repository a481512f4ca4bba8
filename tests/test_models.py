"""Tests for operations, job status parsing, job merging, and error envelopes."""

from __future__ import annotations

import pydantic
import pytest

from imgflow.exceptions import (
    Cancelled,
    ErrorKind,
    NetworkError,
    PageSuperseded,
    PollingTimeout,
    ServerError,
    ValidationError,
)
from imgflow.models import Job, JobStatus, PageWindow, SelectedResource
from imgflow.operations import (
    Resize,
    Thumbnail,
    Watermark,
    WatermarkPosition,
    operations_to_wire,
    parse_operation,
)


# ======================================================================
# Operations
# ======================================================================


class TestOperations:
    """Operation parameter ranges and wire descriptors."""

    def test_wire_descriptor_order_and_shape(self):
        ops = [Thumbnail(size=128), Resize(width=800, height=600)]
        assert operations_to_wire(ops) == [
            {"type": "thumbnail", "parameters": {"size": 128, "crop_to_fit": False}},
            {"type": "resize", "parameters": {"width": 800, "height": 600, "keep_aspect": True}},
        ]

    def test_resize_omits_missing_dimension(self):
        wire = Resize(width=640).to_wire()
        assert wire["parameters"] == {"width": 640, "keep_aspect": True}

    def test_resize_requires_a_dimension(self):
        with pytest.raises(pydantic.ValidationError):
            Resize()

    @pytest.mark.parametrize("size", [0, 1001])
    def test_thumbnail_size_bounds(self, size):
        with pytest.raises(pydantic.ValidationError):
            Thumbnail(size=size)

    def test_resize_upper_bound(self):
        with pytest.raises(pydantic.ValidationError):
            Resize(width=4097)

    def test_watermark_defaults(self):
        mark = Watermark()
        assert mark.text == "imgflow"
        assert mark.opacity == 0.5
        assert mark.position is WatermarkPosition.BOTTOM_RIGHT
        assert mark.to_wire()["parameters"]["position"] == "bottom-right"

    def test_watermark_opacity_bounds(self):
        with pytest.raises(pydantic.ValidationError):
            Watermark(opacity=1.5)

    def test_parse_operation_from_descriptor(self):
        op = parse_operation({"type": "watermark", "parameters": {"text": "(c) me", "position": "top-left"}})
        assert isinstance(op, Watermark)
        assert op.position is WatermarkPosition.TOP_LEFT

    def test_parse_operation_rejects_unknown_type(self):
        with pytest.raises(pydantic.ValidationError):
            parse_operation({"type": "sepia", "parameters": {}})

    def test_operations_are_frozen(self):
        op = Thumbnail()
        with pytest.raises(pydantic.ValidationError):
            op.size = 10  # type: ignore[misc]


# ======================================================================
# Job status
# ======================================================================


class TestJobStatus:
    """Wire parsing, aliases, and terminal classification."""

    @pytest.mark.parametrize(
        "wire,expected",
        [
            ("queued", JobStatus.QUEUED),
            ("PROCESSING", JobStatus.PROCESSING),
            ("pending", JobStatus.QUEUED),
            ("uploaded", JobStatus.QUEUED),
            ("cancelled", JobStatus.FAILED),
        ],
    )
    def test_from_wire(self, wire, expected):
        assert JobStatus.from_wire(wire) is expected

    def test_unknown_status_raises(self):
        with pytest.raises(ValueError):
            JobStatus.from_wire("exploded")

    def test_terminal_statuses(self):
        assert {s for s in JobStatus if s.is_terminal} == {JobStatus.COMPLETED, JobStatus.FAILED}


class TestJobMerge:
    """merged_with keeps history monotonic."""

    def test_keeps_requested_operations(self):
        ops = (Thumbnail(),)
        job = Job(id="j", status=JobStatus.QUEUED, requested_operations=ops, total_operations=1)
        merged = job.merged_with(Job(id="j", status=JobStatus.PROCESSING, progress=40))
        assert merged.requested_operations == ops
        assert merged.total_operations == 1
        assert merged.status is JobStatus.PROCESSING

    def test_progress_never_decreases_while_active(self):
        job = Job(id="j", status=JobStatus.PROCESSING, progress=80, processed_operations=1)
        merged = job.merged_with(Job(id="j", status=JobStatus.PROCESSING, progress=40, processed_operations=0))
        assert merged.progress == 80
        assert merged.processed_operations == 1

    def test_status_never_regresses(self):
        job = Job(id="j", status=JobStatus.PROCESSING)
        merged = job.merged_with(Job(id="j", status=JobStatus.QUEUED))
        assert merged.status is JobStatus.PROCESSING

    def test_terminal_status_is_sticky(self):
        job = Job(id="j", status=JobStatus.COMPLETED, progress=100)
        again = job.merged_with(Job(id="j", status=JobStatus.COMPLETED, progress=100))
        assert again == job


# ======================================================================
# Small value types
# ======================================================================


class TestValueTypes:
    def test_total_pages_rounds_up(self):
        assert PageWindow(offset=0, limit=12, total_count=25).total_pages == 3
        assert PageWindow(offset=0, limit=12, total_count=24).total_pages == 2
        assert PageWindow(offset=0, limit=12, total_count=0).total_pages == 0

    def test_selected_resource_from_path(self, tmp_path):
        path = tmp_path / "Photo.JPG"
        path.write_bytes(b"\xff\xd8\xff" + bytes(97))
        resource = SelectedResource.from_path(path)
        assert resource.filename == "Photo.JPG"
        assert resource.content_type == "image/jpeg"
        assert resource.size_bytes == 100

    def test_selected_resource_repr_hides_bytes(self, png_resource):
        assert "\\x89PNG" not in repr(png_resource)


class TestErrorEnvelopes:
    @pytest.mark.parametrize(
        "error,kind",
        [
            (ValidationError("bad"), ErrorKind.VALIDATION),
            (NetworkError("down"), ErrorKind.NETWORK),
            (ServerError("boom", status_code=500), ErrorKind.SERVER),
            (PollingTimeout("slow", attempts=3), ErrorKind.POLLING_TIMEOUT),
            (Cancelled("stop"), ErrorKind.CANCELLED),
            (PageSuperseded("newer page"), ErrorKind.CANCELLED),
        ],
    )
    def test_envelope_kind(self, error, kind):
        assert error.envelope.kind is kind
        assert error.envelope.message == error.message
        assert error.envelope.to_dict() == {"kind": kind.value, "message": error.message}
