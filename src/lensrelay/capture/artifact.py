"""
Captured artifact data structures.
"""

import base64
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from io import BytesIO

import numpy as np
from PIL import Image


class ArtifactKind(Enum):
    """What a captured artifact holds."""

    IMAGE = "image"
    VIDEO = "video"


def now_epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CapturedArtifact:
    """A still image or video clip, immutable once created."""

    kind: ArtifactKind
    data: bytes
    mime_type: str
    captured_at_epoch_ms: int
    user_id: str
    sequence: int = 0

    @classmethod
    def image(
        cls,
        data: bytes,
        user_id: str,
        mime_type: str = "image/jpeg",
        captured_at_epoch_ms: int | None = None,
        sequence: int = 0,
    ) -> "CapturedArtifact":
        return cls(
            kind=ArtifactKind.IMAGE,
            data=data,
            mime_type=mime_type,
            captured_at_epoch_ms=captured_at_epoch_ms or now_epoch_ms(),
            user_id=user_id,
            sequence=sequence,
        )

    @classmethod
    def video(
        cls,
        data: bytes,
        user_id: str,
        mime_type: str = "video/webm",
        captured_at_epoch_ms: int | None = None,
        sequence: int = 0,
    ) -> "CapturedArtifact":
        return cls(
            kind=ArtifactKind.VIDEO,
            data=data,
            mime_type=mime_type,
            captured_at_epoch_ms=captured_at_epoch_ms or now_epoch_ms(),
            user_id=user_id,
            sequence=sequence,
        )

    @property
    def captured_at(self) -> datetime:
        return datetime.fromtimestamp(self.captured_at_epoch_ms / 1000, tz=timezone.utc)

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    def __repr__(self) -> str:
        return (
            f"CapturedArtifact(kind={self.kind.value}, size={len(self.data)}B, "
            f"mime={self.mime_type}, user={self.user_id}, seq={self.sequence})"
        )


def encode_still(frame: np.ndarray, quality: int = 92) -> bytes:
    """Encode an RGB frame (H, W, 3) as JPEG bytes."""
    img = Image.fromarray(frame)
    buf = BytesIO()
    img.save(buf, "JPEG", quality=quality)
    return buf.getvalue()
