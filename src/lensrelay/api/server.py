"""
FastAPI Server - relay endpoints and capture control

Provides:
- POST /api/videos: persist an uploaded video (data-URI)
- GET /api/videos/{video_id}: not implemented yet (404)
- /ws: websocket ingest of image/video messages, relayed to storage + broker
- status/health endpoints, broker connectivity included
- capture control endpoints driving the CaptureController

Error bodies are always {status, statusCode, message}.
"""

import json
import logging
from datetime import datetime
from typing import Any

import psutil
import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from lensrelay import __version__
from lensrelay.capture.artifact import ArtifactKind
from lensrelay.errors import (
    HTTPError,
    InternalError,
    InvalidFieldError,
    NotFoundError,
    ServiceUnavailableError,
    UpstreamValidationError,
)

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    """System status response."""

    timestamp: str
    broker: str
    system: dict[str, Any]
    relay: dict[str, Any] | None
    capture: dict[str, Any] | None
    prediction: dict[str, Any] | None


class ActionResponse(BaseModel):
    """Capture action result."""

    success: bool
    state: str
    message: str
    timestamp: str


class FramerateRequest(BaseModel):
    framerate: float | None = None


# Global component references
_bridge = None
_broker = None
_capture = None
_correlator = None
_overlay_provider = None


def set_components(bridge=None, broker=None, capture=None, correlator=None, overlay_provider=None) -> None:
    """Set references to system components."""
    global _bridge, _broker, _capture, _correlator, _overlay_provider
    _bridge = bridge
    _broker = broker
    _capture = capture
    _correlator = correlator
    _overlay_provider = overlay_provider


def broker_status() -> str:
    if _broker is not None and _broker.connected:
        return "connected"
    return "disconnected"


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="LensRelay API",
        description="Capture relay: media upload, broker publishing and detection overlays",
        version=__version__,
    )

    @app.exception_handler(HTTPError)
    async def http_error_handler(request: Request, exc: HTTPError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error in {request.url.path}: {exc}", exc_info=exc)
        error = InternalError()
        return JSONResponse(status_code=error.status_code, content=error.to_body())

    # ==================== Status Endpoints ====================

    @app.get("/", response_model=dict)
    async def root():
        """Root endpoint - basic health check."""
        return {
            "service": "LensRelay",
            "version": __version__,
            "status": "running",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health")
    async def health():
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        """Get full system status."""
        system_status = {
            "cpu_percent": psutil.cpu_percent(),
            "memory_percent": psutil.virtual_memory().percent,
            "uptime_seconds": _get_uptime(),
        }

        return StatusResponse(
            timestamp=datetime.now().isoformat(),
            broker=broker_status(),
            system=system_status,
            relay=_bridge.get_status() if _bridge else None,
            capture=_capture.get_status() if _capture else None,
            prediction=_correlator.get_status() if _correlator else None,
        )

    # ==================== Video Upload ====================

    @app.post("/api/videos")
    async def upload_video(request: Request):
        """Persist a {video: dataURI} upload. Storage failure still answers 200."""
        try:
            try:
                body = await request.json()
            except ValueError:
                body = {}
            video = body.get("video") if isinstance(body, dict) else None
            if not video or not isinstance(video, str):
                raise UpstreamValidationError(["video"])

            if _bridge is None:
                raise RuntimeError("Relay not configured")

            stored = await _bridge.store_media(video, ArtifactKind.VIDEO)
            if stored is not None:
                logger.info(f"Video stored: {stored.id}")

            return {
                "status": "success",
                "statusCode": 200,
                "message": "Video uploaded successfully",
                "fileId": stored.id if stored else None,
            }
        except HTTPError:
            raise
        except Exception as e:
            logger.error(f"Unhandled error in /api/videos handler: {e}", exc_info=True)
            raise InternalError() from e

    @app.get("/api/videos/{video_id}")
    async def get_video(video_id: str):
        raise NotFoundError("Video retrieval not yet implemented")

    # ==================== Websocket Ingest ====================

    @app.websocket("/ws")
    async def ingest(websocket: WebSocket):
        """Relay {type, image|video, userId, date, time} messages."""
        await websocket.accept()
        await websocket.send_json({"type": "status", "broker": broker_status()})
        try:
            while True:
                raw = await websocket.receive_text()
                await websocket.send_json(await _handle_socket_message(raw))
        except WebSocketDisconnect:
            logger.debug("Websocket client disconnected")

    # ==================== Capture Control ====================

    def _require_capture():
        if _capture is None:
            raise ServiceUnavailableError("Capture not available")
        return _capture

    def _action(transition, message: str) -> ActionResponse:
        return ActionResponse(
            success=transition.accepted,
            state=transition.state.name,
            message=message if transition.accepted else f"{transition.command.name} not allowed",
            timestamp=datetime.now().isoformat(),
        )

    @app.post("/capture/camera", response_model=ActionResponse)
    async def enable_camera():
        return _action(await _require_capture().enable_camera(), "Camera enabled")

    @app.post("/capture/facing", response_model=ActionResponse)
    async def switch_facing():
        capture = _require_capture()
        transition = await capture.switch_facing()
        return _action(transition, f"Facing mode: {capture.session.facing_mode}")

    @app.post("/capture/still", response_model=ActionResponse)
    async def capture_still():
        return _action(await _require_capture().capture_still(), "Still captured")

    @app.post("/capture/retake", response_model=ActionResponse)
    async def retake():
        return _action(await _require_capture().retake(), "Camera re-enabled")

    @app.post("/capture/frames/start", response_model=ActionResponse)
    async def start_frames(request: FramerateRequest | None = None):
        framerate = request.framerate if request else None
        try:
            transition = await _require_capture().start_frame_capture(framerate)
        except ValueError as e:
            raise InvalidFieldError("framerate", str(e)) from e
        return _action(transition, "Frame capture started")

    @app.post("/capture/frames/rate", response_model=ActionResponse)
    async def set_framerate(request: FramerateRequest):
        if request.framerate is None:
            raise UpstreamValidationError(["framerate"])
        try:
            transition = await _require_capture().set_framerate(request.framerate)
        except ValueError as e:
            raise InvalidFieldError("framerate", str(e)) from e
        return _action(transition, f"Framerate: {request.framerate}Hz")

    @app.post("/capture/frames/stop", response_model=ActionResponse)
    async def stop_frames():
        return _action(await _require_capture().stop_frame_capture(), "Frame capture stopped")

    @app.post("/capture/recording/start", response_model=ActionResponse)
    async def start_recording():
        return _action(await _require_capture().start_continuous_recording(), "Recording started")

    @app.post("/capture/recording/stop", response_model=ActionResponse)
    async def stop_recording():
        return _action(await _require_capture().stop_continuous_recording(), "Recording stopped")

    @app.get("/capture/recording")
    async def download_recording():
        """Download the last finalized recording."""
        artifact = _require_capture().session.last_recording
        if artifact is None:
            raise NotFoundError("No recording available")
        return Response(
            content=artifact.data,
            media_type=artifact.mime_type,
            headers={
                "Content-Disposition": (
                    f'attachment; filename="object-detection-{artifact.captured_at_epoch_ms}.webm"'
                )
            },
        )

    @app.get("/overlay/latest")
    async def latest_overlay():
        """Latest rendered overlay (or error panel) as JPEG."""
        image_bytes = _overlay_provider() if _overlay_provider else None
        if not image_bytes:
            raise NotFoundError("No overlay rendered yet")
        return Response(content=image_bytes, media_type="image/jpeg")

    return app


async def _handle_socket_message(raw: str) -> dict:
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        return {"type": "error", "message": "Invalid JSON"}
    if not isinstance(message, dict):
        return {"type": "error", "message": "Message must be an object"}
    if _bridge is None:
        return {"type": "error", "message": "Relay not configured"}

    try:
        result = await _bridge.handle_message(message)
    except ValueError as e:
        logger.warning(f"Rejected socket message: {e}")
        return {"type": "error", "message": str(e)}

    return {
        "type": "ack",
        "kind": message.get("type"),
        "published": result.ok,
        "fileId": result.stored.id if result.stored else None,
    }


def _get_uptime() -> float:
    """Get system uptime in seconds."""
    try:
        return datetime.now().timestamp() - psutil.boot_time()
    except (OSError, psutil.Error):
        return 0.0


async def start_server(
    host: str = "0.0.0.0",
    port: int = 8080,
    bridge=None,
    broker=None,
    capture=None,
    correlator=None,
    overlay_provider=None,
) -> None:
    """
    Start the API server.

    Args:
        host: Bind host
        port: Bind port
        bridge: TransportBridge instance
        broker: Broker whose connectivity is reported
        capture: CaptureController instance
        correlator: PredictionCorrelator instance
        overlay_provider: Callable returning the latest overlay JPEG bytes
    """
    set_components(bridge, broker, capture, correlator, overlay_provider)

    app = create_app()

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
    )
    server = uvicorn.Server(config)

    logger.info(f"Starting API server on {host}:{port}")
    await server.serve()
