"""
Prediction Correlator - pairs pushed inference results with the shown image.

Holds at most one pending image. By default a result is matched to whatever
image is current when it arrives, so a late result for a superseded image is
drawn over the newer one. With strict=True each result must carry the
sequence id of the current artifact or it is dropped.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from lensrelay.capture.artifact import CapturedArtifact

from .detection import PredictionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrelatedPrediction:
    """An image together with the result attributed to it."""

    artifact: CapturedArtifact
    result: PredictionResult


class PredictionCorrelator:
    """Single-slot correlator between captured images and inference results."""

    def __init__(self, strict: bool = False):
        self.strict = strict
        self._image: CapturedArtifact | None = None
        self._prediction: PredictionResult | None = None
        self._error: Any = None
        self._pending = False
        self._dropped = 0

        self._on_correlated_callbacks: list[Callable[[CorrelatedPrediction], None]] = []
        self._on_error_callbacks: list[Callable[[CapturedArtifact, Any], None]] = []
        self._on_reset_callbacks: list[Callable[[], None]] = []

    @property
    def image(self) -> CapturedArtifact | None:
        return self._image

    @property
    def prediction(self) -> PredictionResult | None:
        return self._prediction

    @property
    def error(self) -> Any:
        return self._error

    @property
    def pending(self) -> bool:
        """An image was sent and neither a result nor an error has arrived."""
        return self._pending

    @property
    def no_objects(self) -> bool:
        return self._prediction is not None and self._prediction.is_empty

    @property
    def dropped(self) -> int:
        return self._dropped

    def on_correlated(self, callback: Callable[[CorrelatedPrediction], None]) -> None:
        self._on_correlated_callbacks.append(callback)

    def on_error(self, callback: Callable[[CapturedArtifact, Any], None]) -> None:
        self._on_error_callbacks.append(callback)

    def on_reset(self, callback: Callable[[], None]) -> None:
        """Register callback for reset(), e.g. to drop a stale overlay."""
        self._on_reset_callbacks.append(callback)

    def set_image(self, artifact: CapturedArtifact) -> None:
        """Make artifact the displayed image; clears the previous prediction."""
        self._image = artifact
        self._prediction = None
        self._error = None
        self._pending = True

    def reset(self) -> None:
        """Forget the displayed image and any prediction state."""
        self._image = None
        self._prediction = None
        self._error = None
        self._pending = False

        for callback in self._on_reset_callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Reset callback error: {e}")

    def _accepts(self, result: PredictionResult) -> bool:
        if self._image is None:
            logger.debug("Prediction dropped: no image displayed")
            return False
        if self.strict and result.sequence != self._image.sequence:
            logger.debug(
                f"Prediction dropped: sequence {result.sequence} != current {self._image.sequence}"
            )
            return False
        return True

    def receive(self, result: PredictionResult | dict) -> CorrelatedPrediction | None:
        """
        Attribute a pushed result to the current image.

        Returns:
            The correlated pair, or None if the result was dropped

        Raises:
            ValueError: result is malformed or not a JSON object
        """
        if not isinstance(result, PredictionResult):
            result = PredictionResult.from_dict(result)

        if not self._accepts(result):
            self._dropped += 1
            return None

        self._prediction = result
        self._error = None
        self._pending = False
        correlated = CorrelatedPrediction(self._image, result)
        logger.info(f"Prediction for {self._image}: {len(result.detections)} detections")

        for callback in self._on_correlated_callbacks:
            try:
                callback(correlated)
            except Exception as e:
                logger.error(f"Correlated callback error: {e}")
        return correlated

    def receive_error(self, error: Any) -> bool:
        """Record an upstream inference error for the current image."""
        if self._image is None:
            self._dropped += 1
            logger.debug("Prediction error dropped: no image displayed")
            return False

        self._error = error
        self._prediction = None
        self._pending = False
        logger.warning(f"Inference error for {self._image}: {error}")

        for callback in self._on_error_callbacks:
            try:
                callback(self._image, error)
            except Exception as e:
                logger.error(f"Error callback error: {e}")
        return True

    def get_status(self) -> dict:
        return {
            "strict": self.strict,
            "image": repr(self._image) if self._image else None,
            "pending": self._pending,
            "detections": len(self._prediction.detections) if self._prediction else None,
            "no_objects": self.no_objects,
            "error": str(self._error) if self._error is not None else None,
            "dropped": self._dropped,
        }
