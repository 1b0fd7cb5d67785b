"""
Tests for TransportBridge: best-effort storage, publishing and ordering.
"""

import asyncio
import base64
import json

import pytest

from lensrelay.capture.artifact import ArtifactKind, CapturedArtifact
from lensrelay.errors import PublishError, StorageWriteError
from lensrelay.inference.correlator import PredictionCorrelator
from lensrelay.transport.bridge import TransportBridge


def decode(message):
    topic, key, payload = message
    return topic, key, json.loads(payload)


class ExplodingStorage:
    def store(self, data: bytes, key: str) -> str:
        raise OSError("device not ready")


class TestSend:
    """send() persists and publishes independently."""

    def test_publishes_jpeg_stub(self, fake_storage, broker, jpeg_stub_artifact):
        bridge = TransportBridge(fake_storage, broker, topic="images")

        result = asyncio.run(bridge.send(jpeg_stub_artifact))

        assert result.ok
        assert len(broker.messages) == 1
        topic, key, body = decode(broker.messages[0])
        assert topic == "images"
        assert key == "u1"
        assert body["type"] == "image"
        assert body["userId"] == "u1"
        assert body["image"] == base64.b64encode(b"\xff\xd8\xff").decode("ascii")

        assert result.stored is not None
        assert result.stored.id.startswith("images/")
        assert fake_storage.blobs[result.stored.id] == b"\xff\xd8\xff"

    def test_publishes_when_storage_fails(self, failing_storage, broker, jpeg_stub_artifact):
        bridge = TransportBridge(failing_storage, broker)

        result = asyncio.run(bridge.send(jpeg_stub_artifact))

        assert result.ok
        assert len(broker.messages) == 1
        _, key, body = decode(broker.messages[0])
        assert key == "u1"
        assert body["image"] == "/9j/"
        assert result.stored is None
        assert isinstance(result.storage_error, StorageWriteError)
        assert bridge.get_status()["storage_failures"] == 1

    def test_unexpected_storage_error_is_wrapped(self, broker, jpeg_stub_artifact):
        bridge = TransportBridge(ExplodingStorage(), broker)

        result = asyncio.run(bridge.send(jpeg_stub_artifact))

        assert result.ok
        assert isinstance(result.storage_error, StorageWriteError)
        assert "device not ready" in str(result.storage_error)

    def test_publish_failure_is_reported_not_raised(self, fake_storage, broker, jpeg_stub_artifact):
        broker.set_connected(False)
        bridge = TransportBridge(fake_storage, broker)

        result = asyncio.run(bridge.send(jpeg_stub_artifact))

        assert not result.ok
        assert isinstance(result.error, PublishError)
        assert broker.messages == []
        # Persistence is independent of the publish
        assert result.stored is not None
        assert len(fake_storage.blobs) == 1

    def test_sequence_is_published_for_strict_correlation(self, fake_storage, broker):
        artifact = CapturedArtifact.image(b"\xff\xd8\xff", user_id="u1", sequence=7)
        bridge = TransportBridge(fake_storage, broker)

        asyncio.run(bridge.send(artifact))

        _, _, body = decode(broker.messages[0])
        assert body["sequence"] == 7

        # A service echoing the sequence is accepted by a strict correlator
        correlator = PredictionCorrelator(strict=True)
        correlator.set_image(artifact)
        assert correlator.receive({"detections": [], "sequence": body["sequence"]}) is not None

    def test_video_key_and_payload(self, fake_storage, broker):
        artifact = CapturedArtifact.video(b"\x1aE\xdf\xa3", user_id="u7")
        bridge = TransportBridge(fake_storage, broker)

        result = asyncio.run(bridge.send(artifact))

        assert result.stored.id.startswith("videos/")
        assert result.stored.id.endswith(".webm")
        _, key, body = decode(broker.messages[0])
        assert key == "u7"
        assert body["type"] == "video"
        assert base64.b64decode(body["video"]) == b"\x1aE\xdf\xa3"


class TestHandleMessage:
    """Incoming client messages (websocket path)."""

    def test_data_uri_is_stripped(self, fake_storage, broker):
        bridge = TransportBridge(fake_storage, broker)
        message = {
            "type": "image",
            "image": "data:image/jpeg;base64,/9j/",
            "userId": "u1",
            "date": "2024-05-01T12:30:45.123Z",
            "time": 1714566645123,
        }

        result = asyncio.run(bridge.handle_message(message))

        assert result.ok
        _, _, body = decode(broker.messages[0])
        assert body == {
            "userId": "u1",
            "image": "/9j/",
            "date": "2024-05-01T12:30:45.123Z",
            "time": 1714566645123,
            "type": "image",
        }
        assert list(fake_storage.blobs.values()) == [b"\xff\xd8\xff"]

    def test_undecodable_payload_still_published(self, fake_storage, broker):
        bridge = TransportBridge(fake_storage, broker)

        result = asyncio.run(
            bridge.handle_message({"type": "video", "video": "%%%", "userId": "u1"})
        )

        assert result.ok
        assert isinstance(result.storage_error, StorageWriteError)
        assert fake_storage.blobs == {}
        assert len(broker.messages) == 1

    def test_invalid_message_raises(self, fake_storage, broker):
        bridge = TransportBridge(fake_storage, broker)
        with pytest.raises(ValueError):
            asyncio.run(bridge.handle_message({"type": "image"}))
        assert broker.messages == []


class TestStoreMedia:
    """Upload path: persist without publishing."""

    def test_store_video(self, fake_storage, broker):
        bridge = TransportBridge(fake_storage, broker)

        ref = asyncio.run(bridge.store_media("data:video/webm;base64,GkXfow==", ArtifactKind.VIDEO))

        assert ref.id.startswith("videos/")
        assert ref.id.endswith(".webm")
        assert fake_storage.blobs[ref.id] == b"\x1aE\xdf\xa3"
        assert broker.messages == []

    def test_storage_failure_returns_none(self, failing_storage, broker):
        bridge = TransportBridge(failing_storage, broker)
        assert asyncio.run(bridge.store_media("GkXfow==")) is None


class TestSubmitOrdering:
    """Fire-and-forget submit() keeps call order."""

    def test_publishes_in_submit_order(self, fake_storage, broker):
        bridge = TransportBridge(fake_storage, broker)
        results = []
        bridge.on_result(results.append)
        artifacts = [
            CapturedArtifact.image(bytes([i]), user_id="u1", sequence=i) for i in range(1, 6)
        ]

        async def scenario():
            for artifact in artifacts:
                bridge.submit(artifact)
            await bridge.drain()
            await bridge.close()

        asyncio.run(scenario())

        published = [base64.b64decode(decode(m)[2]["image"]) for m in broker.messages]
        assert published == [bytes([i]) for i in range(1, 6)]
        assert len(results) == 5
        assert all(r.ok for r in results)

    def test_submit_does_not_wait(self, fake_storage, broker, jpeg_stub_artifact):
        bridge = TransportBridge(fake_storage, broker)

        async def scenario():
            bridge.submit(jpeg_stub_artifact)
            before = len(broker.messages)
            await bridge.close()
            return before

        before = asyncio.run(scenario())
        assert before == 0
        assert len(broker.messages) == 1

    def test_status(self, fake_storage, broker, jpeg_stub_artifact):
        bridge = TransportBridge(fake_storage, broker, topic="frames")
        asyncio.run(bridge.send(jpeg_stub_artifact))
        status = bridge.get_status()
        assert status["topic"] == "frames"
        assert status["published"] == 1
        assert status["publish_failures"] == 0
        assert status["broker"]["connected"] is True


class TestStoreMediaFailures:
    def test_unexpected_storage_error_returns_none(self, broker):
        class CrashingStorage:
            def store(self, data: bytes, key: str) -> str:
                raise RuntimeError("bucket vanished")

        bridge = TransportBridge(CrashingStorage(), broker)

        assert asyncio.run(bridge.store_media("GkXfow==")) is None
        assert bridge.get_status()["storage_failures"] == 1
