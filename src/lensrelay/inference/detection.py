"""
Detection data structures for inference results.

Wire shape of a result push:
    {"detections": [{"box": {"xMin", "xMax", "yMin", "yMax"}, "label", "score"}, ...]}
Box coordinates are normalized to [0, 1] of the image width/height.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def floor_px(value: float) -> int:
    """Floor to whole pixels, ignoring float noise like 39.999999999999996."""
    return math.floor(round(value, 6))


@dataclass(frozen=True)
class PixelBox:
    """Bounding box in surface pixels."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


@dataclass(frozen=True)
class DetectionBox:
    """Bounding box in normalized coordinates."""

    x_min: float
    x_max: float
    y_min: float
    y_max: float

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    @property
    def height(self) -> float:
        return self.y_max - self.y_min

    def to_pixels(self, width: int, height: int) -> PixelBox:
        """
        Convert normalized coordinates to pixel coordinates.

        Args:
            width: Surface width in pixels
            height: Surface height in pixels

        Returns:
            PixelBox with floored x, y, width, height
        """
        return PixelBox(
            x=floor_px(self.x_min * width),
            y=floor_px(self.y_min * height),
            width=floor_px((self.x_max - self.x_min) * width),
            height=floor_px((self.y_max - self.y_min) * height),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionBox":
        return cls(
            x_min=float(data["xMin"]),
            x_max=float(data["xMax"]),
            y_min=float(data["yMin"]),
            y_max=float(data["yMax"]),
        )

    def to_dict(self) -> dict:
        return {"xMin": self.x_min, "xMax": self.x_max, "yMin": self.y_min, "yMax": self.y_max}


@dataclass(frozen=True)
class Detection:
    """Single object detection result."""

    box: DetectionBox
    label: str
    score: float

    @property
    def percent(self) -> int:
        """Confidence shown to the user, truncated: 0.999 -> 99."""
        return floor_px(self.score * 100)

    @classmethod
    def from_dict(cls, data: dict) -> "Detection":
        return cls(
            box=DetectionBox.from_dict(data["box"]),
            label=str(data["label"]),
            score=float(data["score"]),
        )

    def to_dict(self) -> dict:
        return {"box": self.box.to_dict(), "label": self.label, "score": self.score}

    def __str__(self) -> str:
        return f"{self.label} ({self.score:.2f})"


@dataclass
class PredictionResult:
    """Detections for one image, in the order the inference service sent them."""

    detections: list[Detection]
    sequence: int | None = None  # Set when the service echoes the artifact sequence
    received_at: datetime = field(default_factory=datetime.now)

    @property
    def is_empty(self) -> bool:
        return not self.detections

    def above(self, threshold: float) -> list[Detection]:
        """Detections with score strictly greater than threshold."""
        return [d for d in self.detections if d.score > threshold]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PredictionResult":
        """
        Parse a result push.

        Raises:
            ValueError: malformed payload
        """
        if not isinstance(data, dict):
            raise ValueError(f"Prediction must be an object, got {type(data).__name__}")
        try:
            detections = [Detection.from_dict(d) for d in data.get("detections") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed detection: {e}") from e
        sequence = data.get("sequence")
        return cls(detections=detections, sequence=int(sequence) if sequence is not None else None)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"detections": [d.to_dict() for d in self.detections]}
        if self.sequence is not None:
            data["sequence"] = self.sequence
        return data
