"""
Pytest configuration and shared fixtures for LensRelay tests.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from lensrelay.camera.media_acquirer import MediaAcquirer
from lensrelay.capture.artifact import CapturedArtifact
from lensrelay.errors import StorageWriteError
from lensrelay.inference.detection import Detection, DetectionBox
from lensrelay.transport.broker import InMemoryBroker


class FakeCameraDevice:
    """Camera device that records open/close calls into a shared log."""

    def __init__(self, facing_mode: str, log: list, fail: bool = False):
        self.facing_mode = facing_mode
        self.log = log
        self.fail = fail
        self.opened = False

    def open(self) -> None:
        if self.fail:
            raise PermissionError("Permission denied")
        self.opened = True
        self.log.append(("open", self.facing_mode))

    def read(self) -> np.ndarray:
        return np.full((48, 64, 3), 128, dtype=np.uint8)

    def close(self) -> None:
        if self.opened:
            self.opened = False
            self.log.append(("close", self.facing_mode))

    def is_open(self) -> bool:
        return self.opened


class FakeStorage:
    """Blob storage that keeps writes in memory or fails on demand."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.blobs: dict[str, bytes] = {}

    def store(self, data: bytes, key: str) -> str:
        if self.fail:
            raise StorageWriteError(key, "disk full")
        self.blobs[key] = data
        return key


class FakeRecorder:
    """Recorder emitting one chunk on start and one on stop."""

    SUPPORTED = {"video/webm;codecs=vp9", "video/webm;codecs=vp8", "video/webm"}
    instances: list["FakeRecorder"] = []

    def __init__(self, stream, mime_type: str, video_bits_per_second: int):
        self.stream = stream
        self.mime_type = mime_type
        self.video_bits_per_second = video_bits_per_second
        self.state = "inactive"
        self.on_data_available = None
        self.stop_calls = 0
        FakeRecorder.instances.append(self)

    @classmethod
    def is_type_supported(cls, mime_type: str) -> bool:
        return mime_type in cls.SUPPORTED

    async def start(self, timeslice_ms: int = 100) -> None:
        self.state = "recording"
        self.on_data_available(b"chunk-1;")

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.state == "inactive":
            return
        self.state = "inactive"
        self.on_data_available(b"chunk-2")


@pytest.fixture
def camera_log():
    """Ordered ('open'|'close', facing_mode) events of fake cameras."""
    return []


@pytest.fixture
def acquirer(camera_log):
    """MediaAcquirer backed by fake camera devices."""
    return MediaAcquirer(device_factory=lambda facing: FakeCameraDevice(facing, camera_log))


@pytest.fixture
def failing_acquirer(camera_log):
    """MediaAcquirer whose devices refuse to open."""
    return MediaAcquirer(
        device_factory=lambda facing: FakeCameraDevice(facing, camera_log, fail=True)
    )


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def failing_storage():
    return FakeStorage(fail=True)


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def recorder_class():
    """FakeRecorder with a fresh instance list and full codec support."""
    FakeRecorder.instances = []
    FakeRecorder.SUPPORTED = {"video/webm;codecs=vp9", "video/webm;codecs=vp8", "video/webm"}
    return FakeRecorder


@pytest.fixture
def jpeg_stub_artifact():
    """Image artifact holding a 3-byte JPEG stub."""
    return CapturedArtifact.image(b"\xff\xd8\xff", user_id="u1", captured_at_epoch_ms=1714566645123)


@pytest.fixture
def person_detection():
    return Detection(
        box=DetectionBox(x_min=0.1, x_max=0.3, y_min=0.2, y_max=0.5),
        label="person",
        score=0.87,
    )


@pytest.fixture
def sample_detections(person_detection):
    """Detections in service order, one below the default threshold."""
    return [
        person_detection,
        Detection(box=DetectionBox(0.5, 0.9, 0.1, 0.6), label="dog", score=0.999),
        Detection(box=DetectionBox(0.6, 0.7, 0.6, 0.9), label="cat", score=0.3),
    ]


@pytest.fixture
def sample_image():
    """A 200x100 RGB image array."""
    rng = np.random.default_rng(7)
    return rng.integers(0, 255, (100, 200, 3), dtype=np.uint8)
