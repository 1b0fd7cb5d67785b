"""
Overlay Renderer

Paints detections over a captured image with PIL ImageDraw:
- image layer: the captured image with box outlines, label backgrounds and text
- zones layer: a semi-opaque mask over the whole surface, cleared around
  every confirmed detection so only detected regions show through

Both layers are rebuilt from scratch on every render() call.
"""

import json
import logging
import math
from dataclasses import dataclass
from io import BytesIO

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from lensrelay.inference.detection import Detection, PixelBox

logger = logging.getLogger(__name__)

# Label geometry (pixels)
TEXT_BG_HEIGHT = 14
PADDING = 2
LETTER_WIDTH = 7.25
SCORE_WIDTH = 4 * LETTER_WIDTH  # " 99%"
BOX_LINE_WIDTH = 2
FONT_SIZE = 12

# clearZone(x, y, w, h) clears (x - 3, y - 6, w + 6, h + 6)
CLEAR_OFFSET_X = 3
CLEAR_OFFSET_Y = 6
CLEAR_GROW = 6

FALLBACK_COLOR = "#000000"
TEXT_COLOR = "white"

# Cached font instance
_cached_font: ImageFont.FreeTypeFont | ImageFont.ImageFont | None = None


def _get_font(size: int = FONT_SIZE) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Get monospace font for label rendering, with caching and fallback."""
    global _cached_font
    if _cached_font is not None:
        return _cached_font

    try:
        _cached_font = ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf", size
        )
    except OSError:
        logger.debug("DejaVuSansMono not found, using PIL default font")
        _cached_font = ImageFont.load_default()

    return _cached_font


@dataclass(frozen=True)
class LabelStyle:
    """Display style for one label."""

    bg_color: str = FALLBACK_COLOR

    @classmethod
    def from_dict(cls, data: dict) -> "LabelStyle":
        return cls(bg_color=data.get("bgColor", FALLBACK_COLOR))


Rect = tuple[float, float, float, float]  # x, y, width, height


@dataclass(frozen=True)
class DetectionGeometry:
    """Everything painted for one detection, in surface pixels."""

    detection: Detection
    box: PixelBox
    text: str
    color: str
    label_bg: Rect
    text_origin: tuple[int, int]  # left, baseline
    clear_zones: tuple[Rect, Rect]


def label_text(detection: Detection) -> str:
    return f"{detection.label} {detection.percent}%"


def label_width(label: str) -> float:
    """Background width: fixed width per character plus the score suffix and padding."""
    return len(label) * LETTER_WIDTH + SCORE_WIDTH + PADDING * 2


def _clear_rect(x: float, y: float, width: float, height: float) -> Rect:
    return (x - CLEAR_OFFSET_X, y - CLEAR_OFFSET_Y, width + CLEAR_GROW, height + CLEAR_GROW)


def label_geometry(
    detection: Detection,
    width: int,
    height: int,
    styles: dict[str, LabelStyle] | None = None,
) -> DetectionGeometry:
    """
    Compute pixel geometry for one detection on a width x height surface.

    Example: box (0.1, 0.3, 0.2, 0.5) on 200x100 -> x=20, y=20, w=40, h=30
    """
    box = detection.box.to_pixels(width, height)
    style = (styles or {}).get(detection.label) or LabelStyle()
    bg_width = label_width(detection.label)
    bottom = box.y + box.height

    return DetectionGeometry(
        detection=detection,
        box=box,
        text=label_text(detection),
        color=style.bg_color,
        label_bg=(box.x, bottom - TEXT_BG_HEIGHT, bg_width, TEXT_BG_HEIGHT),
        text_origin=(box.x + PADDING, bottom - PADDING),
        clear_zones=(
            _clear_rect(box.x + 5, bottom - TEXT_BG_HEIGHT - 4, bg_width, TEXT_BG_HEIGHT),
            _clear_rect(box.x, box.y, box.width, box.height),
        ),
    )


def _pil_rect(rect: Rect) -> list[int] | None:
    """(x, y, w, h) -> inclusive PIL corners, or None for an empty rect."""
    x, y, w, h = rect
    if w <= 0 or h <= 0:
        return None
    x0, y0 = math.floor(x), math.floor(y)
    return [x0, y0, math.ceil(x + w) - 1, math.ceil(y + h) - 1]


@dataclass
class OverlayFrame:
    """Output of one render pass."""

    image: Image.Image  # RGB, annotated
    zones: Image.Image  # RGBA mask layer
    geometries: list[DetectionGeometry]
    no_objects: bool = False

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    def composite(self) -> Image.Image:
        """Zones layer stacked over the image layer."""
        return Image.alpha_composite(self.image.convert("RGBA"), self.zones).convert("RGB")

    def to_jpeg(self, quality: int = 90) -> bytes:
        buf = BytesIO()
        self.composite().save(buf, "JPEG", quality=quality)
        return buf.getvalue()


class OverlayRenderer:
    """
    Renders (image, detections, threshold) into an OverlayFrame.

    Pure: no state is carried between calls apart from configuration.
    """

    def __init__(
        self,
        label_settings: dict[str, dict | LabelStyle] | None = None,
        mask_color: str = "#565656",
        mask_opacity: float = 0.7,
    ):
        self.styles: dict[str, LabelStyle] = {
            label: style if isinstance(style, LabelStyle) else LabelStyle.from_dict(style)
            for label, style in (label_settings or {}).items()
        }
        self.mask_color = mask_color
        self.mask_opacity = mask_opacity
        self._mask_rgba = ImageColor.getrgb(mask_color)[:3] + (round(mask_opacity * 255),)

    @staticmethod
    def _to_image(image: Image.Image | np.ndarray) -> Image.Image:
        if isinstance(image, np.ndarray):
            return Image.fromarray(image).convert("RGB")
        return image.convert("RGB")

    def mask_layer(self, size: tuple[int, int]) -> Image.Image:
        """Fresh full-surface mask."""
        return Image.new("RGBA", size, self._mask_rgba)

    def render(
        self,
        image: Image.Image | np.ndarray,
        detections: list[Detection] | None,
        threshold: float,
    ) -> OverlayFrame:
        """
        Paint detections with score > threshold.

        Args:
            image: Captured image (PIL image or RGB array); never modified
            detections: Detections in service order; None when no prediction yet
            threshold: Minimum score, exclusive

        Returns:
            OverlayFrame with the annotated image and zones layers
        """
        canvas = self._to_image(image)  # convert() always copies
        width, height = canvas.size
        zones = self.mask_layer(canvas.size)

        detections = list(detections or [])
        visible = [d for d in detections if d.score > threshold]
        geometries = [label_geometry(d, width, height, self.styles) for d in visible]

        draw = ImageDraw.Draw(canvas)
        zones_draw = ImageDraw.Draw(zones)
        font = _get_font()

        for geo in geometries:
            box = geo.box
            if box.width >= 0 and box.height >= 0:
                # Stroke straddles the box edge like a 2px canvas strokeRect
                draw.rectangle(
                    [box.x - 1, box.y - 1, box.right, box.bottom],
                    outline=geo.color,
                    width=BOX_LINE_WIDTH,
                )

            corners = _pil_rect(geo.label_bg)
            if corners:
                draw.rectangle(corners, fill=geo.color)

            left, baseline = geo.text_origin
            draw.text((left, baseline - self._ascent(font)), geo.text, fill=TEXT_COLOR, font=font)

            for zone in geo.clear_zones:
                corners = _pil_rect(zone)
                if corners:
                    zones_draw.rectangle(corners, fill=(0, 0, 0, 0))

        logger.debug(
            f"Rendered {len(geometries)}/{len(detections)} detections above {threshold} "
            f"on {width}x{height}"
        )
        return OverlayFrame(
            image=canvas,
            zones=zones,
            geometries=geometries,
            no_objects=not detections,
        )

    @staticmethod
    def _ascent(font) -> int:
        try:
            ascent, _ = font.getmetrics()
        except AttributeError:
            ascent = FONT_SIZE - 1
        return ascent

    def render_error(self, error, size: tuple[int, int]) -> Image.Image:
        """
        Error panel shown instead of the overlay when inference failed.

        Draws an "Error" heading and the JSON form of the error.
        """
        width, height = size
        panel = Image.new("RGB", (max(width, 1), max(height, 1)), (33, 33, 33))
        draw = ImageDraw.Draw(panel)
        font = _get_font()

        try:
            body = json.dumps(error, indent=2, default=str)
        except (TypeError, ValueError):
            body = str(error)

        draw.text((10, 10), "Error", fill=(244, 67, 54), font=font)
        line_height = FONT_SIZE + 4
        y = 10 + line_height * 2
        for line in body.splitlines():
            if y > height - line_height:
                break
            draw.text((10, y), line, fill=TEXT_COLOR, font=font)
            y += line_height
        return panel
