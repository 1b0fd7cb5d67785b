"""
Wire/storage shapes for relayed media.

A TransportEnvelope is derived 1:1 from a CapturedArtifact and is what the
relay publishes. Its broker message form is:

    {"userId": ..., "image"|"video": <base64>, "date": <ISO-8601>,
     "time": <epoch ms>, "type": "image"|"video"}
"""

import base64
import json
import random
import re
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from lensrelay.capture.artifact import ArtifactKind, CapturedArtifact

_DATA_URI_PREFIX = re.compile(r"^data:[\w.+-]+/[\w.+-]+(?:;[\w.+-]+=[\w.+-]+)*;base64,")

_STORAGE_PREFIXES = {
    ArtifactKind.IMAGE: "images",
    ArtifactKind.VIDEO: "videos",
}

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "video/webm": "webm",
    "video/mp4": "mp4",
    "video/ogg": "ogg",
}

_DEFAULT_MIME = {
    ArtifactKind.IMAGE: "image/jpeg",
    ArtifactKind.VIDEO: "video/webm",
}

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def strip_data_uri(value: str) -> str:
    """Remove a 'data:<mime>[;params];base64,' prefix if present."""
    return _DATA_URI_PREFIX.sub("", value, count=1)


def data_uri_mime(value: str) -> str | None:
    """MIME type (without parameters) of a data-URI, or None for bare base64."""
    match = _DATA_URI_PREFIX.match(value)
    if not match:
        return None
    return match.group(0)[len("data:"):].split(";", 1)[0]


def decode_payload(value: str) -> bytes:
    """Strip any data-URI prefix and base64-decode. Raises binascii.Error."""
    return base64.b64decode(strip_data_uri(value), validate=True)


def iso_timestamp(epoch_ms: int) -> str:
    """Epoch milliseconds -> '2024-05-01T12:30:45.123Z'."""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{epoch_ms % 1000:03d}Z"


def extension_for(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type.split(";", 1)[0].strip().lower(), "bin")


def generate_storage_key(
    kind: ArtifactKind,
    mime_type: str | None = None,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> str:
    """
    Generate a blob key: '{images|videos}/{yyyyMMdd-HHmmssSSS}-{5 chars}.{ext}'.

    Example: 'videos/20240501-123045123-k3x9a.webm'
    """
    now = now or datetime.now()
    rng = rng or random
    stamp = now.strftime("%Y%m%d-%H%M%S") + f"{now.microsecond // 1000:03d}"
    suffix = "".join(rng.choices(_SUFFIX_ALPHABET, k=5))
    ext = extension_for(mime_type or _DEFAULT_MIME[kind])
    return f"{_STORAGE_PREFIXES[kind]}/{stamp}-{suffix}.{ext}"


def shrink_payload(message: dict[str, Any], limit: int = 48) -> dict[str, Any]:
    """Copy of a message with long string values truncated, for logging."""
    shrunk = {}
    for key, value in message.items():
        if isinstance(value, str) and len(value) > limit:
            shrunk[key] = f"{value[:limit]}...({len(value)} chars)"
        else:
            shrunk[key] = value
    return shrunk


@dataclass(frozen=True)
class TransportEnvelope:
    """Normalized message published to the broker for one artifact."""

    type: ArtifactKind
    payload: str  # base64, no data-URI prefix
    user_id: str
    iso_date: str
    epoch_ms: int
    mime_type: str | None = None
    sequence: int | None = None  # Echoed back by the inference service

    @classmethod
    def from_artifact(cls, artifact: CapturedArtifact) -> "TransportEnvelope":
        return cls(
            type=artifact.kind,
            payload=base64.b64encode(artifact.data).decode("ascii"),
            user_id=artifact.user_id,
            iso_date=iso_timestamp(artifact.captured_at_epoch_ms),
            epoch_ms=artifact.captured_at_epoch_ms,
            mime_type=artifact.mime_type,
            sequence=artifact.sequence,
        )

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "TransportEnvelope":
        """
        Build an envelope from an incoming client message.

        Raises:
            ValueError: unknown type or missing media field
        """
        try:
            kind = ArtifactKind(message.get("type"))
        except ValueError:
            raise ValueError(f"Unknown message type: {message.get('type')!r}") from None

        media = message.get(kind.value)
        if not media or not isinstance(media, str):
            raise ValueError(f"Missing Fields: {kind.value}")

        epoch_ms = message.get("time")
        if isinstance(epoch_ms, (int, float)) and not isinstance(epoch_ms, bool):
            epoch_ms = int(epoch_ms)
        else:
            epoch_ms = int(datetime.now(tz=timezone.utc).timestamp() * 1000)
        sequence = message.get("sequence")

        return cls(
            type=kind,
            payload=strip_data_uri(media),
            user_id=str(message.get("userId") or ""),
            iso_date=message.get("date") or iso_timestamp(epoch_ms),
            epoch_ms=epoch_ms,
            mime_type=data_uri_mime(media),
            sequence=sequence if isinstance(sequence, int) and not isinstance(sequence, bool) else None,
        )

    def to_message(self) -> dict[str, Any]:
        message = {
            "userId": self.user_id,
            self.type.value: self.payload,
            "date": self.iso_date,
            "time": self.epoch_ms,
            "type": self.type.value,
        }
        if self.sequence is not None:
            message["sequence"] = self.sequence
        return message

    def serialize(self) -> bytes:
        return json.dumps(self.to_message()).encode("utf-8")


@dataclass(frozen=True)
class StoredMediaRef:
    """Advisory result of the storage side effect."""

    id: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {"id": self.id, "createdAt": self.created_at.isoformat()}
