"""
Transport Bridge - forwards captured artifacts to storage and the broker.

Per artifact:
1. Decode the payload to raw bytes (data-URI prefixes are stripped)
2. Persist to blob storage (best-effort, on a dedicated executor)
3. Publish the JSON envelope to the broker topic keyed by user id

Persistence and publishing are independent: a storage failure never stops
the publish, and a publish failure is logged and not retried.
"""

import asyncio
import binascii
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from lensrelay.capture.artifact import ArtifactKind, CapturedArtifact
from lensrelay.errors import PublishError, StorageWriteError, TransportError

from .broker import PublishAck
from .envelope import (
    StoredMediaRef,
    TransportEnvelope,
    data_uri_mime,
    decode_payload,
    generate_storage_key,
    shrink_payload,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """Outcome of relaying one envelope."""

    ack: PublishAck | None = None
    error: TransportError | None = None
    stored: StoredMediaRef | None = None
    storage_error: StorageWriteError | None = None

    @property
    def ok(self) -> bool:
        return self.ack is not None and self.error is None


class TransportBridge:
    """
    Relay from captured artifacts to storage + broker.

    send()/relay() return a SendResult and never raise for transport
    failures. submit() is the fire-and-forget entry used by the capture
    controller; submitted artifacts are relayed one at a time in call order.
    """

    def __init__(self, storage, broker, topic: str = "images", max_storage_workers: int = 2):
        """
        Initialize the bridge.

        Args:
            storage: Collaborator with store(data, key) -> key
            broker: Collaborator with publish(topic, key, payload) -> PublishAck
            topic: Broker topic for envelopes
            max_storage_workers: Threads for blocking storage writes
        """
        self.storage = storage
        self.broker = broker
        self.topic = topic

        # Dedicated pool so slow storage never starves the default executor
        self._storage_executor = ThreadPoolExecutor(
            max_workers=max_storage_workers, thread_name_prefix="storage"
        )

        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None
        self._on_result_callbacks: list[Callable[[SendResult], None]] = []

        self._published = 0
        self._publish_failures = 0
        self._storage_failures = 0
        self.last_result: SendResult | None = None

        logger.info(f"TransportBridge initialized: topic={topic}")

    def on_result(self, callback: Callable[[SendResult], None]) -> None:
        """Register callback for the result of every submitted artifact."""
        self._on_result_callbacks.append(callback)

    # ==================== Relay ====================

    async def send(self, artifact: CapturedArtifact) -> SendResult:
        return await self.relay(TransportEnvelope.from_artifact(artifact))

    async def relay(self, envelope: TransportEnvelope) -> SendResult:
        """Persist and publish one envelope; failures are logged and reported."""
        loop = asyncio.get_running_loop()
        key = generate_storage_key(envelope.type, envelope.mime_type)

        store_future = None
        storage_error = None
        try:
            data = decode_payload(envelope.payload)
        except (binascii.Error, ValueError) as e:
            storage_error = StorageWriteError(key, f"undecodable payload: {e}")
        else:
            store_future = loop.run_in_executor(self._storage_executor, self.storage.store, data, key)

        ack, publish_error = self._publish(envelope)

        stored = None
        if store_future is not None:
            try:
                stored_id = await store_future
                stored = StoredMediaRef(id=stored_id, created_at=datetime.now(tz=timezone.utc))
                logger.debug(f"{envelope.type.value} stored: {stored_id}")
            except StorageWriteError as e:
                storage_error = e
            except Exception as e:
                storage_error = StorageWriteError(key, str(e))

        if storage_error is not None:
            self._storage_failures += 1
            logger.error(str(storage_error))

        result = SendResult(ack=ack, error=publish_error, stored=stored, storage_error=storage_error)
        self.last_result = result
        return result

    def _publish(self, envelope: TransportEnvelope) -> tuple[PublishAck | None, PublishError | None]:
        message = envelope.to_message()
        logger.debug(
            f"publish topic: {self.topic}; key: {envelope.user_id}; payload: {shrink_payload(message)}"
        )
        try:
            ack = self.broker.publish(self.topic, envelope.user_id, envelope.serialize())
        except PublishError as e:
            self._publish_failures += 1
            logger.error(f"Broker failed to send {envelope.type.value} message: {e}")
            return None, e
        except Exception as e:
            self._publish_failures += 1
            error = PublishError(self.topic, envelope.user_id, str(e))
            logger.error(f"Broker failed to send {envelope.type.value} message: {error}")
            return None, error

        self._published += 1
        logger.debug(f"Pushed {envelope.type.value} message ({ack.size} bytes)")
        return ack, None

    async def handle_message(self, message: dict) -> SendResult:
        """
        Relay an incoming client message ({type, image|video, userId, date, time}).

        Raises:
            ValueError: message has an unknown type or no media field
        """
        logger.debug(f"{message.get('type')} handler {shrink_payload(message)}")
        return await self.relay(TransportEnvelope.from_message(message))

    async def store_media(self, media: str, kind: ArtifactKind = ArtifactKind.VIDEO) -> StoredMediaRef | None:
        """
        Persist a base64/data-URI upload without publishing it.

        Returns:
            StoredMediaRef, or None when the write failed (already logged)
        """
        key = generate_storage_key(kind, data_uri_mime(media))
        try:
            data = decode_payload(media)
            loop = asyncio.get_running_loop()
            stored_id = await loop.run_in_executor(self._storage_executor, self.storage.store, data, key)
        except (binascii.Error, ValueError) as e:
            error = StorageWriteError(key, f"undecodable payload: {e}")
        except StorageWriteError as e:
            error = e
        except Exception as e:
            error = StorageWriteError(key, str(e))
        else:
            logger.info(f"{kind.value.capitalize()} stored: {stored_id}")
            return StoredMediaRef(id=stored_id, created_at=datetime.now(tz=timezone.utc))

        self._storage_failures += 1
        logger.error(str(error))
        return None

    # ==================== Fire-and-forget ====================

    def submit(self, artifact: CapturedArtifact) -> None:
        """Queue an artifact for relay without waiting. Must run on the event loop."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._relay_worker(), name="transport_relay"
            )
        self._queue.put_nowait(TransportEnvelope.from_artifact(artifact))

    async def _relay_worker(self) -> None:
        while True:
            envelope = await self._queue.get()
            try:
                result = await self.relay(envelope)
                for callback in self._on_result_callbacks:
                    try:
                        callback(result)
                    except Exception as e:
                        logger.error(f"Result callback error: {e}")
            except Exception as e:
                logger.error(f"Relay worker error: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every submitted artifact has been relayed."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        self._storage_executor.shutdown(wait=False)
        logger.info("TransportBridge closed")

    def get_status(self) -> dict:
        return {
            "topic": self.topic,
            "published": self._published,
            "publish_failures": self._publish_failures,
            "storage_failures": self._storage_failures,
            "pending": self._queue.qsize() if self._queue is not None else 0,
            "broker": self.broker.get_status() if hasattr(self.broker, "get_status") else None,
            "storage": self.storage.get_status() if hasattr(self.storage, "get_status") else None,
        }
