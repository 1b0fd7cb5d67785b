"""
ZeroMQ subscriber for pushed inference results.

Expects two-frame messages [topic, json]. The JSON is either a prediction
({"detections": [...]}) or an upstream failure ({"error": ...}).
"""

import asyncio
import json
import logging

import zmq
import zmq.asyncio

from .correlator import PredictionCorrelator

logger = logging.getLogger(__name__)


class ResultSubscriber:
    """Feeds result pushes from a SUB socket into a PredictionCorrelator."""

    def __init__(
        self,
        correlator: PredictionCorrelator,
        endpoint: str = "tcp://127.0.0.1:5557",
        topic: str = "predictions",
        context: zmq.asyncio.Context | None = None,
    ):
        self.correlator = correlator
        self.endpoint = endpoint
        self.topic = topic
        self._context = context or zmq.asyncio.Context.instance()
        self._socket: zmq.asyncio.Socket | None = None
        self._task: asyncio.Task | None = None
        self._received = 0
        self._malformed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def handle_payload(self, payload: bytes) -> None:
        """Parse one push and hand it to the correlator."""
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._malformed += 1
            logger.error(f"Undecodable result payload: {e}")
            return

        self._received += 1
        if isinstance(data, dict) and data.get("error") is not None:
            self.correlator.receive_error(data["error"])
            return

        try:
            self.correlator.receive(data)
        except ValueError as e:
            self._malformed += 1
            logger.error(f"Malformed prediction: {e}")

    async def start(self) -> None:
        if self.running:
            return
        socket = self._context.socket(zmq.SUB)
        socket.setsockopt(zmq.LINGER, 0)
        socket.setsockopt_string(zmq.SUBSCRIBE, self.topic)
        socket.connect(self.endpoint)
        self._socket = socket
        self._task = asyncio.get_running_loop().create_task(self._receive_loop(), name="result_subscriber")
        logger.info(f"Result subscriber connected to {self.endpoint} (topic={self.topic})")

    async def _receive_loop(self) -> None:
        while True:
            try:
                frames = await self._socket.recv_multipart()
            except asyncio.CancelledError:
                raise
            except zmq.ZMQError as e:
                logger.error(f"Result subscriber receive error: {e}")
                await asyncio.sleep(1)
                continue

            if len(frames) < 2:
                self._malformed += 1
                logger.warning(f"Result message with {len(frames)} frame(s) ignored")
                continue
            try:
                self.handle_payload(frames[-1])
            except Exception as e:
                self._malformed += 1
                logger.error(f"Result handling failed: {e}", exc_info=True)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        logger.info("Result subscriber stopped")

    def get_status(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "topic": self.topic,
            "running": self.running,
            "received": self._received,
            "malformed": self._malformed,
        }
