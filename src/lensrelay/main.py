"""
LensRelay Main Controller

Wires the capture -> transport -> overlay pipeline:
- MediaAcquirer + CaptureController (stills, frame capture, recording)
- TransportBridge (blob storage + ZeroMQ broker publish)
- ResultSubscriber + PredictionCorrelator (pushed inference results)
- OverlayRenderer (boxes, labels and privacy zones, or the error panel)
- REST/websocket API server
"""

import asyncio
import logging
import signal
import sys
from io import BytesIO
from pathlib import Path

import zmq
from PIL import Image

logger = logging.getLogger(__name__)


class LensRelayController:
    """Main controller orchestrating all system components."""

    def __init__(self):
        self._running = False
        self._main_loop: asyncio.AbstractEventLoop | None = None

        # Component instances (initialized in start())
        self._storage = None
        self._broker = None
        self._bridge = None
        self._acquirer = None
        self._capture = None
        self._correlator = None
        self._subscriber = None
        self._renderer = None

        self._background_tasks: list[asyncio.Task] = []
        self._overlay_dir: Path | None = None
        self._latest_overlay: bytes | None = None
        self._min_score = 0.5

        logger.info("LensRelayController initialized")

    @property
    def latest_overlay(self) -> bytes | None:
        return self._latest_overlay

    async def start(self) -> None:
        """Start the LensRelay system and run until a shutdown signal."""
        logger.info("=== Starting LensRelay ===")

        self._main_loop = asyncio.get_running_loop()

        from lensrelay.config import api_config, ensure_runtime_dirs, setup_logging

        setup_logging()
        ensure_runtime_dirs()

        await self._init_components()
        self._setup_signal_handlers()
        self._running = True

        if api_config.enabled:
            from lensrelay.api.server import start_server

            task = asyncio.create_task(
                start_server(
                    host=api_config.host,
                    port=api_config.port,
                    bridge=self._bridge,
                    broker=self._broker,
                    capture=self._capture,
                    correlator=self._correlator,
                    overlay_provider=lambda: self._latest_overlay,
                ),
                name="api_server",
            )
            self._background_tasks.append(task)
            logger.info(f"API server task started on {api_config.host}:{api_config.port}")

        logger.info("=== LensRelay Running ===")

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            logger.info("Main loop cancelled")

        await self._shutdown()

    async def _init_components(self) -> None:
        """Initialize all system components from configuration."""
        from lensrelay.camera import MediaAcquirer
        from lensrelay.capture import CaptureController
        from lensrelay.config import (
            RUNTIME_DIR,
            broker_config,
            camera_config,
            capture_config,
            overlay_config,
            transport_config,
        )
        from lensrelay.inference import PredictionCorrelator, ResultSubscriber
        from lensrelay.overlay import OverlayRenderer
        from lensrelay.transport import TransportBridge, ZmqBroker, create_storage

        self._storage = create_storage(
            backend=transport_config.storage_backend,
            storage_root=transport_config.storage_root,
            rclone_remote=transport_config.rclone_remote,
            remote_path=transport_config.remote_path,
        )

        self._broker = ZmqBroker(broker_config.publish_endpoint)
        try:
            self._broker.bind()
        except zmq.ZMQError as e:
            logger.error(f"Broker unavailable, video modes disabled: {e}")

        self._bridge = TransportBridge(self._storage, self._broker, topic=transport_config.topic)
        self._bridge.on_result(self._handle_send_result)

        self._correlator = PredictionCorrelator(strict=overlay_config.strict_correlation)
        self._correlator.on_correlated(self._handle_correlated)
        self._correlator.on_error(self._handle_prediction_error)
        self._correlator.on_reset(self._handle_prediction_reset)

        self._renderer = OverlayRenderer(
            label_settings=overlay_config.label_settings,
            mask_color=overlay_config.mask_color,
            mask_opacity=overlay_config.mask_opacity,
        )
        self._min_score = overlay_config.min_score
        self._overlay_dir = RUNTIME_DIR / "overlays"

        self._acquirer = MediaAcquirer(
            backend=camera_config.backend,
            device_indices=camera_config.device_indices,
            resolution=camera_config.resolution,
        )
        self._capture = CaptureController(
            self._acquirer,
            bridge=self._bridge,
            correlator=self._correlator,
            user_id=transport_config.user_id,
            facing_mode=camera_config.facing_mode,
            framerate=capture_config.framerate,
            codec_preferences=capture_config.codec_preferences,
            video_bits_per_second=capture_config.video_bits_per_second,
            timeslice_ms=capture_config.timeslice_ms,
            clock_tick_ms=capture_config.clock_tick_ms,
            jpeg_quality=capture_config.jpeg_quality,
        )
        await self._capture.set_broker_connected(self._broker.connected)
        self._broker.on_connectivity(self._handle_connectivity)

        self._subscriber = ResultSubscriber(
            self._correlator,
            endpoint=broker_config.results_endpoint,
            topic=broker_config.results_topic,
        )
        await self._subscriber.start()

        logger.info("All components initialized")

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Signal {signum} received, initiating shutdown...")
            self._running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    # ==================== Callbacks ====================

    def _handle_connectivity(self, connected: bool) -> None:
        if self._capture is None or self._main_loop is None:
            return
        task = self._main_loop.create_task(self._capture.set_broker_connected(connected))
        self._background_tasks.append(task)

    def _handle_send_result(self, result) -> None:
        if not result.ok:
            logger.warning(f"Artifact not published: {result.error}")

    def _handle_correlated(self, correlated) -> None:
        self._schedule_overlay(
            correlated.artifact, self._render_overlay, correlated.artifact, correlated.result
        )

    def _handle_prediction_error(self, artifact, error) -> None:
        self._schedule_overlay(artifact, self._render_error_panel, artifact, error)

    def _handle_prediction_reset(self) -> None:
        self._latest_overlay = None
        logger.debug("Overlay cleared")

    def _schedule_overlay(self, artifact, render, *args) -> asyncio.Task | None:
        if self._main_loop is None:
            return None
        task = self._main_loop.create_task(self._update_overlay(artifact, render, *args))
        self._background_tasks.append(task)
        task.add_done_callback(self._forget_task)
        return task

    def _forget_task(self, task: asyncio.Task) -> None:
        if task in self._background_tasks:
            self._background_tasks.remove(task)

    async def _update_overlay(self, artifact, render, *args) -> None:
        """Render in the default executor, then publish unless the image changed meanwhile."""
        loop = asyncio.get_running_loop()
        try:
            jpeg = await loop.run_in_executor(None, render, *args)
        except Exception as e:
            logger.error(f"Overlay render failed: {e}")
            return

        if self._correlator is not None and self._correlator.image is not artifact:
            logger.debug(f"Overlay for sequence {artifact.sequence} discarded: image changed")
            return
        self._publish_overlay(jpeg, artifact.sequence)

    def _render_overlay(self, artifact, result) -> bytes:
        image = Image.open(BytesIO(artifact.data))
        frame = self._renderer.render(image, result.detections, self._min_score)
        if frame.no_objects:
            logger.info("No Objects Found")
        return frame.to_jpeg()

    def _render_error_panel(self, artifact, error) -> bytes:
        try:
            size = Image.open(BytesIO(artifact.data)).size
        except OSError:
            size = (640, 480)
        panel = self._renderer.render_error(error, size)
        buf = BytesIO()
        panel.save(buf, "JPEG", quality=90)
        return buf.getvalue()

    def _publish_overlay(self, jpeg: bytes, sequence: int) -> None:
        self._latest_overlay = jpeg
        if self._overlay_dir is None:
            return
        try:
            (self._overlay_dir / "latest.jpg").write_bytes(jpeg)
        except OSError as e:
            logger.error(f"Failed to save overlay {sequence}: {e}")

    # ==================== Shutdown ====================

    async def _shutdown(self) -> None:
        """Clean shutdown of all components."""
        logger.info("Initiating shutdown...")

        # Capture first so a running recording is finalized and relayed
        if self._capture:
            await self._capture.close()

        if self._bridge:
            await self._bridge.close()

        if self._subscriber:
            await self._subscriber.stop()

        if self._background_tasks:
            logger.info(f"Cancelling {len(self._background_tasks)} background tasks...")
            for task in self._background_tasks:
                if not task.done():
                    task.cancel()
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._background_tasks, return_exceptions=True),
                    timeout=5.0,
                )
            except asyncio.TimeoutError:
                logger.warning("Background tasks did not cancel within 5s")
            self._background_tasks.clear()

        if self._broker:
            self._broker.close()

        logger.info("Shutdown complete")

    def get_status(self) -> dict:
        """Get full system status."""
        return {
            "running": self._running,
            "capture": self._capture.get_status() if self._capture else None,
            "relay": self._bridge.get_status() if self._bridge else None,
            "prediction": self._correlator.get_status() if self._correlator else None,
            "subscriber": self._subscriber.get_status() if self._subscriber else None,
            "camera": self._acquirer.get_status() if self._acquirer else None,
        }


# ==================== Entry Point ====================


async def app() -> None:
    """Main application entry point."""
    controller = LensRelayController()
    await controller.start()


def main() -> None:
    """CLI entry point."""
    print("=== LensRelay ===")
    print("Capture -> relay -> detection overlay")
    print()

    try:
        asyncio.run(app())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
