"""Inference module: detection types, result correlation and subscription."""

from .correlator import CorrelatedPrediction, PredictionCorrelator
from .detection import Detection, DetectionBox, PixelBox, PredictionResult, floor_px
from .subscriber import ResultSubscriber

__all__ = [
    "CorrelatedPrediction",
    "PredictionCorrelator",
    "Detection",
    "DetectionBox",
    "PixelBox",
    "PredictionResult",
    "floor_px",
    "ResultSubscriber",
]
