"""
Capture Controller - camera lifecycle, stills, frame capture and recording

Drives the pure state machine in state_machine.py and executes the planned
effects against an explicitly owned CaptureSession:
- the single camera stream (through MediaAcquirer)
- the frame-capture timer and the recording clock
- the continuous recorder and its in-memory chunk buffer
- the artifact that was just produced

Artifacts are handed to the transport without waiting for the network.
Capture-time errors are recovered here; the controller always stays usable.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from pathlib import Path
from typing import Callable

from lensrelay.camera.recorder import FFmpegMediaRecorder, container_type, select_codec
from lensrelay.config import validate_framerate
from lensrelay.errors import CameraAcquisitionError, EncodingUnsupportedError

from .artifact import ArtifactKind, CapturedArtifact, encode_still
from .state_machine import (
    CaptureState,
    Command,
    Effect,
    RecordingMode,
    Transition,
    plan_transition,
)
from .timers import PeriodicTimer, format_recording_time, frame_interval_ms

logger = logging.getLogger(__name__)


class CaptureView(Enum):
    """Which capture screen is shown."""

    PHOTO = auto()
    VIDEO = auto()


@dataclass
class CaptureSession:
    """Mutable context owned by exactly one CaptureController."""

    facing_mode: str = "environment"
    framerate: float = 2.0
    state: CaptureState = CaptureState.IDLE
    mode: RecordingMode | None = None
    view: CaptureView = CaptureView.PHOTO
    broker_connected: bool = True
    frame_timer: PeriodicTimer | None = None
    clock_timer: PeriodicTimer | None = None
    recorder: object | None = None
    chunks: list[bytes] = field(default_factory=list)
    recording_seconds: float = 0.0
    current_artifact: CapturedArtifact | None = None
    last_recording: CapturedArtifact | None = None
    last_error: Exception | None = None
    sequence: int = 0

    def next_sequence(self) -> int:
        self.sequence += 1
        return self.sequence


class _EffectFailed(Exception):
    """Stops effect execution and moves the session to a fallback state."""

    def __init__(self, state: CaptureState, cause: Exception):
        self.state = state
        self.cause = cause
        super().__init__(str(cause))


class CaptureController:
    """
    State machine over MediaAcquirer producing still and video artifacts.

    Usage:
        async with CaptureController(acquirer, bridge) as capture:
            await capture.enable_camera()
            await capture.capture_still()
    """

    def __init__(
        self,
        acquirer,
        bridge=None,
        correlator=None,
        user_id: str = "local",
        facing_mode: str = "environment",
        framerate: float = 2.0,
        codec_preferences: list[str] | None = None,
        video_bits_per_second: int = 2_500_000,
        timeslice_ms: int = 100,
        clock_tick_ms: int = 100,
        jpeg_quality: int = 92,
        recorder_factory: Callable | None = None,
    ):
        """
        Initialize the capture controller.

        Args:
            acquirer: MediaAcquirer owning the camera device
            bridge: Transport with a non-blocking submit(artifact)
            correlator: PredictionCorrelator tracking the displayed image
            user_id: Identity stamped on every artifact
            facing_mode: Initial facing mode ('user' or 'environment')
            framerate: Frame-capture rate in Hz
            codec_preferences: Recorder MIME types, most preferred first
            video_bits_per_second: Continuous recording bitrate
            timeslice_ms: Recorder chunk interval
            clock_tick_ms: Elapsed-time clock interval
            jpeg_quality: Still encoding quality
            recorder_factory: Recorder class/callable(stream, mime_type, bits)
                exposing is_type_supported(mime_type)
        """
        self.acquirer = acquirer
        self.bridge = bridge
        self.correlator = correlator
        self.user_id = user_id
        self.codec_preferences = codec_preferences or [
            "video/webm;codecs=vp9",
            "video/webm;codecs=vp8",
            "video/webm",
        ]
        self.video_bits_per_second = video_bits_per_second
        self.timeslice_ms = timeslice_ms
        self.clock_tick_ms = clock_tick_ms
        self.jpeg_quality = jpeg_quality
        self.recorder_factory = recorder_factory or FFmpegMediaRecorder

        self._session = CaptureSession(
            facing_mode=facing_mode,
            framerate=validate_framerate(framerate),
        )
        self._lock = asyncio.Lock()
        self._on_artifact_callbacks: list[Callable[[CapturedArtifact], None]] = []

        logger.info(
            f"CaptureController initialized: facing={facing_mode}, "
            f"framerate={framerate}Hz, codecs={self.codec_preferences}"
        )

    # ==================== Properties ====================

    @property
    def session(self) -> CaptureSession:
        return self._session

    @property
    def state(self) -> CaptureState:
        return self._session.state

    @property
    def mode(self) -> RecordingMode | None:
        return self._session.mode

    @property
    def video_mode_available(self) -> bool:
        """Video capture affordances are only offered while the broker is up."""
        return self._session.broker_connected

    @property
    def recording_time(self) -> str:
        return format_recording_time(self._session.recording_seconds)

    # ==================== Commands ====================

    async def enable_camera(self) -> Transition:
        return await self.dispatch(Command.ENABLE_CAMERA)

    async def switch_facing(self) -> Transition:
        return await self.dispatch(Command.SWITCH_FACING)

    async def capture_still(self) -> Transition:
        return await self.dispatch(Command.CAPTURE_STILL)

    async def retake(self) -> Transition:
        return await self.dispatch(Command.RETAKE)

    async def start_frame_capture(self, framerate: float | None = None) -> Transition:
        if framerate is not None:
            self._session.framerate = validate_framerate(framerate)
        if not self._session.broker_connected:
            logger.warning("Frame capture unavailable while broker is disconnected")
            return self._rejected(Command.START_FRAME_CAPTURE)
        return await self.dispatch(Command.START_FRAME_CAPTURE)

    async def set_framerate(self, framerate: float) -> Transition:
        self._session.framerate = validate_framerate(framerate)
        return await self.dispatch(Command.SET_FRAMERATE)

    async def stop_frame_capture(self) -> Transition:
        return await self.dispatch(Command.STOP_FRAME_CAPTURE)

    async def start_continuous_recording(self) -> Transition:
        if not self._session.broker_connected:
            logger.warning("Video recording unavailable while broker is disconnected")
            return self._rejected(Command.START_RECORDING)
        return await self.dispatch(Command.START_RECORDING)

    async def stop_continuous_recording(self) -> Transition:
        return await self.dispatch(Command.STOP_RECORDING)

    async def set_broker_connected(self, connected: bool) -> Transition | None:
        """Apply a broker connectivity change; disconnect leaves the video modes."""
        session = self._session
        if session.broker_connected == connected:
            return None
        session.broker_connected = connected
        logger.info(f"Broker {'connected' if connected else 'disconnected'}")
        if connected:
            return None
        session.view = CaptureView.PHOTO
        return await self.dispatch(Command.DISCONNECT)

    def open_video_view(self) -> bool:
        if not self._session.broker_connected:
            return False
        self._session.view = CaptureView.VIDEO
        return True

    def open_photo_view(self) -> None:
        self._session.view = CaptureView.PHOTO

    async def close(self) -> None:
        """Cancel timers, stop recording and release the camera on every path."""
        try:
            await self.dispatch(Command.CLOSE)
        finally:
            self._cancel_timers()
            self.acquirer.release()
            self._session.state = CaptureState.IDLE
            self._session.mode = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def on_artifact(self, callback: Callable[[CapturedArtifact], None]) -> None:
        """Register callback for every artifact handed to the transport."""
        self._on_artifact_callbacks.append(callback)

    # ==================== Dispatch ====================

    def _rejected(self, command: Command) -> Transition:
        s = self._session
        return Transition(command, s.state, s.state, s.mode, (), accepted=False)

    async def dispatch(self, command: Command) -> Transition:
        """Plan a command, execute its effects and commit the new state."""
        async with self._lock:
            session = self._session
            transition = plan_transition(session.state, session.mode, command)
            if not transition.accepted:
                logger.debug(f"{command.name} ignored in state {session.state.name}")
                return transition

            produced: dict[str, CapturedArtifact] = {}
            try:
                for effect in transition.effects:
                    await self._execute(effect, produced)
            except _EffectFailed as failure:
                session.last_error = failure.cause
                session.state = failure.state
                session.mode = None
                logger.error(f"{command.name} failed, state -> {failure.state.name}: {failure.cause}")
                return replace(transition, state=failure.state, mode=None, accepted=False)
            except Exception:
                # Unknown failure: make sure no device handle or timer leaks
                self._cancel_timers()
                self.acquirer.release()
                session.state = CaptureState.IDLE
                session.mode = None
                raise

            if session.state != transition.state:
                logger.info(f"Capture state: {session.state.name} -> {transition.state.name}")
            session.state = transition.state
            session.mode = transition.mode
            return transition

    async def _execute(self, effect: Effect, produced: dict) -> None:
        session = self._session

        if effect == Effect.ACQUIRE_CAMERA:
            try:
                await self.acquirer.acquire(session.facing_mode)
            except CameraAcquisitionError as e:
                self.acquirer.release()
                raise _EffectFailed(CaptureState.IDLE, e) from e

        elif effect == Effect.RELEASE_CAMERA:
            self.acquirer.release()

        elif effect == Effect.TOGGLE_FACING:
            session.facing_mode = "user" if session.facing_mode == "environment" else "environment"
            logger.info(f"Facing mode -> {session.facing_mode}")

        elif effect == Effect.SNAPSHOT:
            try:
                produced["artifact"] = await self._snapshot()
            except Exception as e:
                raise _EffectFailed(CaptureState.CAMERA_ACTIVE, e) from e

        elif effect == Effect.STOP_VIDEO_TRACKS:
            self.acquirer.stop_video_tracks()

        elif effect == Effect.SEND_ARTIFACT:
            artifact = produced.get("artifact")
            if artifact is not None:
                self._send(artifact)

        elif effect == Effect.RESET_PREDICTION:
            session.current_artifact = None
            if self.correlator is not None:
                self.correlator.reset()

        elif effect == Effect.CANCEL_TIMER:
            if session.frame_timer is not None:
                session.frame_timer.cancel()
                session.frame_timer = None

        elif effect == Effect.START_TIMER:
            session.frame_timer = PeriodicTimer(
                frame_interval_ms(session.framerate),
                self._capture_frame,
                name="frame_capture",
            )
            session.frame_timer.start()

        elif effect == Effect.START_RECORDER:
            try:
                await self._start_recorder()
            except EncodingUnsupportedError as e:
                raise _EffectFailed(CaptureState.CAMERA_ACTIVE, e) from e

        elif effect == Effect.STOP_RECORDER:
            await self._stop_recorder()

        elif effect == Effect.START_CLOCK:
            session.recording_seconds = 0.0
            session.clock_timer = PeriodicTimer(
                self.clock_tick_ms, self._tick_clock, name="recording_clock"
            )
            session.clock_timer.start()

        elif effect == Effect.STOP_CLOCK:
            if session.clock_timer is not None:
                session.clock_timer.cancel()
                session.clock_timer = None
            session.recording_seconds = 0.0

        elif effect == Effect.FINALIZE_RECORDING:
            artifact = self._finalize_recording()
            if artifact is not None:
                produced["artifact"] = artifact

    # ==================== Stills and frames ====================

    async def _grab_still(self) -> CapturedArtifact:
        stream = self.acquirer.stream
        if stream is None:
            raise RuntimeError("No live camera stream")
        loop = asyncio.get_running_loop()
        frame = await loop.run_in_executor(None, stream.read_frame)
        data = await loop.run_in_executor(None, encode_still, frame, self.jpeg_quality)
        return CapturedArtifact.image(
            data,
            user_id=self.user_id,
            sequence=self._session.next_sequence(),
        )

    async def _snapshot(self) -> CapturedArtifact:
        artifact = await self._grab_still()
        logger.info(f"Still captured: {artifact}")
        return artifact

    async def _capture_frame(self) -> None:
        """Frame-capture timer tick."""
        try:
            artifact = await self._grab_still()
        except Exception as e:
            logger.error(f"Frame capture failed: {e}")
            return
        self._send(artifact)

    def _send(self, artifact: CapturedArtifact) -> None:
        session = self._session
        if artifact.kind == ArtifactKind.IMAGE:
            session.current_artifact = artifact
            if self.correlator is not None:
                self.correlator.set_image(artifact)

        if self.bridge is not None:
            self.bridge.submit(artifact)

        for callback in self._on_artifact_callbacks:
            try:
                callback(artifact)
            except Exception as e:
                logger.error(f"Artifact callback error: {e}")

    # ==================== Continuous recording ====================

    async def _start_recorder(self) -> None:
        session = self._session
        stream = self.acquirer.stream
        if stream is None:
            raise _EffectFailed(CaptureState.IDLE, RuntimeError("No live camera stream"))

        # Negotiated before anything is committed
        mime_type = select_codec(self.codec_preferences, self.recorder_factory.is_type_supported)

        recorder = self.recorder_factory(stream, mime_type, self.video_bits_per_second)
        session.chunks = []
        recorder.on_data_available = self._on_chunk
        session.recorder = recorder
        try:
            await recorder.start(self.timeslice_ms)
        except Exception as e:
            session.recorder = None
            raise _EffectFailed(CaptureState.CAMERA_ACTIVE, e) from e
        logger.info(f"Continuous recording started ({mime_type})")

    def _on_chunk(self, chunk: bytes) -> None:
        if chunk:
            self._session.chunks.append(chunk)

    async def _stop_recorder(self) -> None:
        recorder = self._session.recorder
        if recorder is None or recorder.state == "inactive":
            return
        try:
            await recorder.stop()
        except Exception as e:
            logger.error(f"Error stopping recorder: {e}")

    def _tick_clock(self) -> None:
        self._session.recording_seconds += self.clock_tick_ms / 1000

    def _finalize_recording(self) -> CapturedArtifact | None:
        session = self._session
        recorder = session.recorder
        session.recorder = None
        chunks, session.chunks = session.chunks, []

        if not chunks:
            logger.warning("Recording produced no data")
            return None

        mime_type = container_type(getattr(recorder, "mime_type", "video/webm"))
        artifact = CapturedArtifact.video(
            b"".join(chunks),
            user_id=self.user_id,
            mime_type=mime_type,
            sequence=session.next_sequence(),
        )
        session.last_recording = artifact
        logger.info(f"Recording finalized: {artifact} from {len(chunks)} chunks")
        return artifact

    def save_recording(self, directory: str | Path) -> Path | None:
        """Write the last finalized recording to disk for download."""
        artifact = self._session.last_recording
        if artifact is None:
            return None
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"object-detection-{artifact.captured_at_epoch_ms}.webm"
        path.write_bytes(artifact.data)
        logger.info(f"Recording saved: {path}")
        return path

    # ==================== Cleanup ====================

    def _cancel_timers(self) -> None:
        session = self._session
        for name in ("frame_timer", "clock_timer"):
            timer = getattr(session, name)
            if timer is not None:
                timer.cancel()
                setattr(session, name, None)

    def get_status(self) -> dict:
        s = self._session
        return {
            "state": s.state.name,
            "mode": s.mode.name if s.mode else None,
            "view": s.view.name,
            "facing_mode": s.facing_mode,
            "framerate": s.framerate,
            "broker_connected": s.broker_connected,
            "recording_time": self.recording_time,
            "frame_timer_active": s.frame_timer is not None and s.frame_timer.active,
            "last_recording_bytes": len(s.last_recording.data) if s.last_recording else 0,
            "last_error": str(s.last_error) if s.last_error else None,
            "timestamp": time.time(),
        }
