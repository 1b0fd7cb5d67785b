"""
Capture module for LensRelay.

Provides:
- CapturedArtifact: immutable still/video payload
- plan_transition: pure capture state machine
- CaptureController: executes transitions against the camera and transport
"""

from .artifact import ArtifactKind, CapturedArtifact, encode_still
from .controller import CaptureController, CaptureSession, CaptureView
from .state_machine import CaptureState, Command, Effect, RecordingMode, Transition, plan_transition
from .timers import PeriodicTimer, format_recording_time, frame_interval_ms

__all__ = [
    "ArtifactKind",
    "CapturedArtifact",
    "encode_still",
    "CaptureController",
    "CaptureSession",
    "CaptureView",
    "CaptureState",
    "Command",
    "Effect",
    "RecordingMode",
    "Transition",
    "plan_transition",
    "PeriodicTimer",
    "format_recording_time",
    "frame_interval_ms",
]
