"""
Overlay module for LensRelay.

Provides:
- OverlayRenderer: boxes, labels and privacy zones over a captured image
- label_geometry: deterministic pixel geometry for one detection
"""

from .renderer import (
    DetectionGeometry,
    LabelStyle,
    OverlayFrame,
    OverlayRenderer,
    label_geometry,
    label_text,
    label_width,
)

__all__ = [
    "DetectionGeometry",
    "LabelStyle",
    "OverlayFrame",
    "OverlayRenderer",
    "label_geometry",
    "label_text",
    "label_width",
]
