"""
Broker collaborators: publish(topic, key, payload) -> PublishAck.

ZmqBroker publishes three-frame messages [topic, key, payload] on a PUB
socket. InMemoryBroker keeps published messages in a list and is used when no
external broker is wanted (tests, local demos).

Both track a connected flag and notify listeners when it changes; the capture
controller hides the video modes while the broker is disconnected.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

import zmq

from lensrelay.errors import PublishError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishAck:
    """Acknowledgement for one published envelope."""

    topic: str
    key: str
    size: int
    published_at_epoch_ms: int


class _ConnectivityMixin:
    """Connected flag with change listeners."""

    def _init_connectivity(self, connected: bool) -> None:
        self._connected = connected
        self._connectivity_callbacks: list[Callable[[bool], None]] = []

    @property
    def connected(self) -> bool:
        return self._connected

    def on_connectivity(self, callback: Callable[[bool], None]) -> None:
        """Register callback(connected) fired on every status change."""
        self._connectivity_callbacks.append(callback)

    def set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        logger.info(f"Broker status: {'connected' if connected else 'disconnected'}")
        for callback in self._connectivity_callbacks:
            try:
                callback(connected)
            except Exception as e:
                logger.error(f"Connectivity callback error: {e}")


class InMemoryBroker(_ConnectivityMixin):
    """Records published messages; subscribers are called synchronously."""

    def __init__(self):
        self.messages: list[tuple[str, str, bytes]] = []
        self._subscribers: list[Callable[[str, str, bytes], None]] = []
        self._init_connectivity(True)

    def subscribe(self, callback: Callable[[str, str, bytes], None]) -> None:
        self._subscribers.append(callback)

    def publish(self, topic: str, key: str, payload: bytes) -> PublishAck:
        if not self._connected:
            raise PublishError(topic, key, "broker disconnected")
        self.messages.append((topic, key, payload))
        for callback in self._subscribers:
            callback(topic, key, payload)
        return PublishAck(topic, key, len(payload), int(time.time() * 1000))

    def close(self) -> None:
        self.set_connected(False)

    def get_status(self) -> dict:
        return {
            "backend": "memory",
            "connected": self._connected,
            "published": len(self.messages),
        }


class ZmqBroker(_ConnectivityMixin):
    """
    ZeroMQ PUB socket publisher.

    Subscribers filter on the topic frame. A PUB send never waits for
    subscribers, so publishing is safe to call from the event loop.
    """

    def __init__(self, endpoint: str = "tcp://127.0.0.1:5556", context: zmq.Context | None = None):
        self.endpoint = endpoint
        self._context = context or zmq.Context.instance()
        self._socket: zmq.Socket | None = None
        self._published = 0
        self._init_connectivity(False)

    def bind(self) -> None:
        if self._socket is not None:
            return
        socket = self._context.socket(zmq.PUB)
        socket.setsockopt(zmq.LINGER, 0)
        socket.setsockopt(zmq.SNDHWM, 1000)
        try:
            socket.bind(self.endpoint)
        except zmq.ZMQError as e:
            socket.close()
            logger.error(f"Failed to bind broker socket on {self.endpoint}: {e}")
            self.set_connected(False)
            raise
        self._socket = socket
        logger.info(f"ZeroMQ publisher bound on {self.endpoint}")
        self.set_connected(True)

    def publish(self, topic: str, key: str, payload: bytes) -> PublishAck:
        """
        Publish one envelope.

        Raises:
            PublishError: socket closed or send failed
        """
        if self._socket is None:
            raise PublishError(topic, key, "publisher not bound")
        try:
            self._socket.send_multipart(
                [topic.encode("utf-8"), key.encode("utf-8"), payload],
                flags=zmq.NOBLOCK,
            )
        except zmq.ZMQError as e:
            self.set_connected(False)
            raise PublishError(topic, key, str(e)) from e

        self._published += 1
        self.set_connected(True)
        return PublishAck(topic, key, len(payload), int(time.time() * 1000))

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
            logger.info("ZeroMQ publisher closed")
        self.set_connected(False)

    def get_status(self) -> dict:
        return {
            "backend": "zmq",
            "endpoint": self.endpoint,
            "connected": self._connected,
            "published": self._published,
        }
