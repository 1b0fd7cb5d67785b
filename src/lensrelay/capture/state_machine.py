"""
Capture State Machine - pure transition planning

States: IDLE -> CAMERA_ACTIVE -> {STILL_PREVIEW | RECORDING} -> IDLE

plan_transition() never touches a device, timer or network. It returns the
next state plus the ordered list of effects the controller must execute.
Commands that are not valid in the current state are rejected with no
effects, so callers can treat them as no-ops.
"""

from dataclasses import dataclass
from enum import Enum, auto


class CaptureState(Enum):
    """States for the capture/recording state machine."""

    IDLE = auto()  # No camera stream held
    CAMERA_ACTIVE = auto()  # Live preview
    STILL_PREVIEW = auto()  # Still captured, video tracks stopped
    RECORDING = auto()  # Frame capture timer or continuous recorder running


class RecordingMode(Enum):
    """Which capture mode owns the RECORDING state (one at a time)."""

    FRAMES = auto()  # Periodic still snapshots
    VIDEO = auto()  # Continuous chunked recording


class Command(Enum):
    ENABLE_CAMERA = auto()
    SWITCH_FACING = auto()
    CAPTURE_STILL = auto()
    RETAKE = auto()
    START_FRAME_CAPTURE = auto()
    SET_FRAMERATE = auto()
    STOP_FRAME_CAPTURE = auto()
    START_RECORDING = auto()
    STOP_RECORDING = auto()
    DISCONNECT = auto()  # Broker went away: leave the video modes
    CLOSE = auto()  # Component unmount / shutdown


class Effect(Enum):
    ACQUIRE_CAMERA = auto()
    RELEASE_CAMERA = auto()
    TOGGLE_FACING = auto()
    SNAPSHOT = auto()
    STOP_VIDEO_TRACKS = auto()
    SEND_ARTIFACT = auto()
    RESET_PREDICTION = auto()
    CANCEL_TIMER = auto()
    START_TIMER = auto()
    START_RECORDER = auto()
    STOP_RECORDER = auto()
    START_CLOCK = auto()
    STOP_CLOCK = auto()
    FINALIZE_RECORDING = auto()


@dataclass(frozen=True)
class Transition:
    """Result of planning a command against the current state."""

    command: Command
    previous: CaptureState
    state: CaptureState
    mode: RecordingMode | None
    effects: tuple[Effect, ...] = ()
    accepted: bool = True

    @property
    def changed(self) -> bool:
        return self.previous != self.state


_E = Effect
_S = CaptureState

_STOP_VIDEO = (_E.STOP_RECORDER, _E.STOP_CLOCK, _E.FINALIZE_RECORDING, _E.SEND_ARTIFACT)


def plan_transition(
    state: CaptureState,
    mode: RecordingMode | None,
    command: Command,
) -> Transition:
    """
    Plan the effects of a command.

    Args:
        state: Current state
        mode: Active recording mode (only meaningful in RECORDING)
        command: Requested command

    Returns:
        Transition with the next state, next mode and ordered effects
    """

    def to(next_state: CaptureState, effects: tuple = (), next_mode: RecordingMode | None = None):
        return Transition(command, state, next_state, next_mode, tuple(effects))

    def reject():
        return Transition(command, state, state, mode, (), accepted=False)

    recording_frames = state == _S.RECORDING and mode == RecordingMode.FRAMES
    recording_video = state == _S.RECORDING and mode == RecordingMode.VIDEO

    if command == Command.ENABLE_CAMERA:
        if state == _S.IDLE:
            return to(_S.CAMERA_ACTIVE, (_E.ACQUIRE_CAMERA,))
        if state == _S.STILL_PREVIEW:
            return to(_S.CAMERA_ACTIVE, (_E.RESET_PREDICTION, _E.ACQUIRE_CAMERA))
        return reject()

    if command == Command.SWITCH_FACING:
        if state == _S.CAMERA_ACTIVE:
            return to(_S.CAMERA_ACTIVE, (_E.RELEASE_CAMERA, _E.TOGGLE_FACING, _E.ACQUIRE_CAMERA))
        return reject()

    if command == Command.CAPTURE_STILL:
        if state == _S.CAMERA_ACTIVE:
            return to(
                _S.STILL_PREVIEW,
                (_E.RESET_PREDICTION, _E.SNAPSHOT, _E.STOP_VIDEO_TRACKS, _E.SEND_ARTIFACT),
            )
        return reject()

    if command == Command.RETAKE:
        if state == _S.STILL_PREVIEW:
            return to(_S.CAMERA_ACTIVE, (_E.RESET_PREDICTION, _E.ACQUIRE_CAMERA))
        return reject()

    if command == Command.START_FRAME_CAPTURE:
        if state == _S.CAMERA_ACTIVE:
            return to(_S.RECORDING, (_E.CANCEL_TIMER, _E.START_TIMER), RecordingMode.FRAMES)
        return reject()

    if command == Command.SET_FRAMERATE:
        if recording_frames:
            return to(_S.RECORDING, (_E.CANCEL_TIMER, _E.START_TIMER), RecordingMode.FRAMES)
        return Transition(command, state, state, mode, ())

    if command == Command.STOP_FRAME_CAPTURE:
        if recording_frames:
            return to(_S.CAMERA_ACTIVE, (_E.CANCEL_TIMER,))
        return reject()

    if command == Command.START_RECORDING:
        if state == _S.CAMERA_ACTIVE:
            return to(_S.RECORDING, (_E.START_RECORDER, _E.START_CLOCK), RecordingMode.VIDEO)
        return reject()

    if command == Command.STOP_RECORDING:
        if recording_video:
            return to(_S.CAMERA_ACTIVE, _STOP_VIDEO)
        return reject()

    if command == Command.DISCONNECT:
        if recording_frames:
            return to(_S.CAMERA_ACTIVE, (_E.CANCEL_TIMER,))
        if recording_video:
            return to(_S.CAMERA_ACTIVE, _STOP_VIDEO)
        return Transition(command, state, state, mode, ())

    if command == Command.CLOSE:
        if recording_video:
            return to(_S.IDLE, (_E.CANCEL_TIMER,) + _STOP_VIDEO + (_E.RELEASE_CAMERA,))
        return to(
            _S.IDLE,
            (_E.CANCEL_TIMER, _E.STOP_RECORDER, _E.STOP_CLOCK, _E.RELEASE_CAMERA),
        )

    return reject()
