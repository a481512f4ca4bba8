"""Transformation operations requested against an uploaded image.

Each operation is a frozen pydantic model tagged by ``type`` so a list of
operations can be validated from, and serialized to, the service's
``{"type": ..., "parameters": {...}}`` descriptor format.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class OperationType(str, Enum):
    """Named operations.  ``ORIGINAL`` addresses the untransformed upload."""

    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"
    RESIZE = "resize"
    WATERMARK = "watermark"


class WatermarkPosition(str, Enum):
    TOP_LEFT = "top-left"
    TOP_CENTER = "top-center"
    TOP_RIGHT = "top-right"
    CENTER = "center"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_CENTER = "bottom-center"
    BOTTOM_RIGHT = "bottom-right"


DEFAULT_THUMBNAIL_SIZE = 150
DEFAULT_WATERMARK_TEXT = "imgflow"
DEFAULT_WATERMARK_OPACITY = 0.5


class _Operation(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the ``{"type", "parameters"}`` descriptor."""
        params = self.model_dump(mode="json", exclude={"type"}, exclude_none=True)
        return {"type": self.type, "parameters": params}  # type: ignore[attr-defined]


class Thumbnail(_Operation):
    """Square-bounded thumbnail, optionally cropped to fill the box."""

    type: Literal["thumbnail"] = "thumbnail"
    size: int = Field(default=DEFAULT_THUMBNAIL_SIZE, ge=1, le=1000)
    crop_to_fit: bool = False


class Resize(_Operation):
    """Resize to the given box; at least one dimension is required."""

    type: Literal["resize"] = "resize"
    width: int | None = Field(default=None, ge=1, le=4096)
    height: int | None = Field(default=None, ge=1, le=4096)
    keep_aspect: bool = True

    @model_validator(mode="after")
    def _require_dimension(self) -> Resize:
        if self.width is None and self.height is None:
            raise ValueError("at least one of width or height is required for resize")
        return self


class Watermark(_Operation):
    type: Literal["watermark"] = "watermark"
    text: str = Field(default=DEFAULT_WATERMARK_TEXT, min_length=1)
    opacity: float = Field(default=DEFAULT_WATERMARK_OPACITY, ge=0.0, le=1.0)
    position: WatermarkPosition = WatermarkPosition.BOTTOM_RIGHT


Operation = Annotated[Union[Thumbnail, Resize, Watermark], Field(discriminator="type")]

_OPERATION_ADAPTER: TypeAdapter[Operation] = TypeAdapter(Operation)


def parse_operation(descriptor: dict[str, Any]) -> Operation:
    """Build an operation from a ``{"type", "parameters"}`` descriptor.

    Raises:
        pydantic.ValidationError: Unknown type or out-of-range parameters.
    """
    data = dict(descriptor.get("parameters") or {})
    data["type"] = descriptor.get("type")
    return _OPERATION_ADAPTER.validate_python(data)


def operations_to_wire(operations: list[Operation] | tuple[Operation, ...]) -> list[dict[str, Any]]:
    """Ordered descriptor array sent alongside the upload."""
    return [op.to_wire() for op in operations]
