"""
Camera module for LensRelay.

Provides:
- MediaAcquirer: exclusive owner of the camera device handle
- MediaStream / MediaTrack: live frame source with stoppable tracks
- FFmpegMediaRecorder: chunked WebM recording with codec negotiation
"""

from .media_acquirer import (
    MediaAcquirer,
    MediaStream,
    MediaTrack,
    MockCameraDevice,
    OpenCVCameraDevice,
)
from .recorder import FFMPEG_AVAILABLE, FFmpegMediaRecorder, container_type, select_codec

__all__ = [
    "MediaAcquirer",
    "MediaStream",
    "MediaTrack",
    "MockCameraDevice",
    "OpenCVCameraDevice",
    "FFmpegMediaRecorder",
    "FFMPEG_AVAILABLE",
    "container_type",
    "select_codec",
]
