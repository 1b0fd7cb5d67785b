"""
Media Acquirer - exclusive owner of the camera device handle

Yields a live MediaStream for a facing mode ('user' = front camera,
'environment' = back camera). Only one stream is ever held: acquiring a
new one stops every track of the previous stream first.

Device backends:
- OpenCVCameraDevice: cv2.VideoCapture, one device index per facing mode
- MockCameraDevice: synthetic frames for development/testing without hardware
"""

import asyncio
import logging
from typing import Callable

import cv2
import numpy as np

from lensrelay.errors import CameraAcquisitionError

logger = logging.getLogger(__name__)


class MockCameraDevice:
    """Mock camera for development/testing without hardware."""

    def __init__(self, facing_mode: str, resolution: tuple[int, int] = (640, 480)):
        self.facing_mode = facing_mode
        self.resolution = resolution
        self._opened = False
        self._frame_number = 0

    def open(self) -> None:
        self._opened = True
        logger.info(f"[MOCK] Camera opened ({self.facing_mode})")

    def read(self) -> np.ndarray:
        """Generate a mock RGB frame."""
        if not self._opened:
            raise RuntimeError("Mock camera is not open")
        self._frame_number += 1
        width, height = self.resolution
        return np.random.randint(0, 255, (height, width, 3), dtype=np.uint8)

    def close(self) -> None:
        self._opened = False
        logger.info(f"[MOCK] Camera closed ({self.facing_mode})")

    @property
    def is_open(self) -> bool:
        return self._opened


class OpenCVCameraDevice:
    """Camera device backed by cv2.VideoCapture."""

    def __init__(self, index: int, facing_mode: str, resolution: tuple[int, int] = (640, 480)):
        self.index = index
        self.facing_mode = facing_mode
        self.resolution = resolution
        self._capture: cv2.VideoCapture | None = None

    def open(self) -> None:
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"device {self.index} unavailable")
        width, height = self.resolution
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._capture = capture
        logger.info(f"Camera device {self.index} opened ({self.facing_mode})")

    def read(self) -> np.ndarray:
        if self._capture is None:
            raise RuntimeError(f"device {self.index} is not open")
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise RuntimeError(f"device {self.index} returned no frame")
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info(f"Camera device {self.index} released")

    @property
    def is_open(self) -> bool:
        return self._capture is not None


class MediaTrack:
    """A single track of a media stream; stopping it is final."""

    def __init__(self, kind: str, label: str, on_stop: Callable[[], None] | None = None):
        self.kind = kind
        self.label = label
        self.ready_state = "live"
        self._on_stop = on_stop

    def stop(self) -> None:
        if self.ready_state == "ended":
            return
        self.ready_state = "ended"
        if self._on_stop:
            self._on_stop()
        logger.debug(f"Track stopped: {self.label}")


class MediaStream:
    """Live frame source produced by MediaAcquirer."""

    def __init__(self, device, facing_mode: str):
        self.device = device
        self.facing_mode = facing_mode
        self._tracks = [
            MediaTrack("video", f"{facing_mode}-camera", on_stop=self._on_video_track_stopped)
        ]

    def _on_video_track_stopped(self) -> None:
        if not any(t.ready_state == "live" for t in self.get_video_tracks()):
            self.device.close()

    def get_tracks(self) -> list[MediaTrack]:
        return list(self._tracks)

    def get_video_tracks(self) -> list[MediaTrack]:
        return [t for t in self._tracks if t.kind == "video"]

    @property
    def active(self) -> bool:
        return any(t.ready_state == "live" for t in self._tracks)

    def read_frame(self) -> np.ndarray:
        """Grab the current RGB frame (H, W, 3)."""
        if not any(t.ready_state == "live" for t in self.get_video_tracks()):
            raise RuntimeError("Stream has no live video track")
        return self.device.read()

    def stop(self) -> None:
        for track in self._tracks:
            track.stop()


class MediaAcquirer:
    """
    Owns the camera device handle.

    At most one MediaStream is live at any time; acquire() releases the
    current stream before opening the next device.
    """

    def __init__(
        self,
        backend: str = "mock",
        device_indices: dict[str, int] | None = None,
        resolution: tuple[int, int] = (640, 480),
        device_factory: Callable[[str], object] | None = None,
    ):
        """
        Initialize the acquirer.

        Args:
            backend: 'mock' or 'opencv'
            device_indices: OpenCV device index per facing mode
            resolution: Requested frame size (width, height)
            device_factory: Optional callable(facing_mode) -> device, overrides backend
        """
        self.backend = backend
        self.device_indices = device_indices or {"user": 0, "environment": 1}
        self.resolution = resolution
        self._device_factory = device_factory or self._default_factory
        self._stream: MediaStream | None = None
        self._acquire_count = 0

    def _default_factory(self, facing_mode: str):
        if self.backend == "opencv":
            index = self.device_indices.get(facing_mode, 0)
            return OpenCVCameraDevice(index, facing_mode, self.resolution)
        return MockCameraDevice(facing_mode, self.resolution)

    @property
    def stream(self) -> MediaStream | None:
        """The currently held stream, if it is still live."""
        if self._stream is not None and self._stream.active:
            return self._stream
        return None

    @property
    def acquire_count(self) -> int:
        return self._acquire_count

    async def acquire(self, facing_mode: str) -> MediaStream:
        """
        Acquire a live stream for a facing mode.

        Raises:
            CameraAcquisitionError: device denied or unavailable
        """
        self.release()

        device = self._device_factory(facing_mode)
        try:
            await asyncio.get_running_loop().run_in_executor(None, device.open)
        except Exception as e:
            raise CameraAcquisitionError(facing_mode, str(e)) from e

        self._stream = MediaStream(device, facing_mode)
        self._acquire_count += 1
        logger.info(f"Camera stream acquired: facing={facing_mode}")
        return self._stream

    def stop_video_tracks(self) -> None:
        """Stop the video tracks of the held stream (still preview)."""
        if self._stream is not None:
            for track in self._stream.get_video_tracks():
                track.stop()

    def release(self) -> None:
        """Stop every track of the held stream. Safe to call repeatedly."""
        if self._stream is None:
            return
        try:
            self._stream.stop()
        finally:
            self._stream = None
        logger.debug("Camera stream released")

    def get_status(self) -> dict:
        return {
            "backend": self.backend,
            "active": self.stream is not None,
            "facing_mode": self._stream.facing_mode if self._stream else None,
            "acquire_count": self._acquire_count,
        }
