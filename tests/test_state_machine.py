"""
Tests for the pure capture state machine.
"""

from lensrelay.capture.state_machine import (
    CaptureState,
    Command,
    Effect,
    RecordingMode,
    plan_transition,
)

S = CaptureState
E = Effect


class TestCameraTransitions:
    """Enable, switch facing, still capture and retake."""

    def test_enable_from_idle(self):
        t = plan_transition(S.IDLE, None, Command.ENABLE_CAMERA)
        assert t.accepted
        assert t.state == S.CAMERA_ACTIVE
        assert t.effects == (E.ACQUIRE_CAMERA,)
        assert t.changed

    def test_enable_from_still_preview_resets_prediction(self):
        t = plan_transition(S.STILL_PREVIEW, None, Command.ENABLE_CAMERA)
        assert t.state == S.CAMERA_ACTIVE
        assert t.effects == (E.RESET_PREDICTION, E.ACQUIRE_CAMERA)

    def test_enable_while_active_rejected(self):
        t = plan_transition(S.CAMERA_ACTIVE, None, Command.ENABLE_CAMERA)
        assert not t.accepted
        assert t.effects == ()

    def test_switch_facing_releases_before_acquire(self):
        t = plan_transition(S.CAMERA_ACTIVE, None, Command.SWITCH_FACING)
        assert t.effects == (E.RELEASE_CAMERA, E.TOGGLE_FACING, E.ACQUIRE_CAMERA)
        assert t.state == S.CAMERA_ACTIVE
        assert not t.changed

    def test_switch_facing_only_from_active(self):
        for state in (S.IDLE, S.STILL_PREVIEW, S.RECORDING):
            assert not plan_transition(state, None, Command.SWITCH_FACING).accepted

    def test_capture_still(self):
        t = plan_transition(S.CAMERA_ACTIVE, None, Command.CAPTURE_STILL)
        assert t.state == S.STILL_PREVIEW
        assert t.effects == (
            E.RESET_PREDICTION,
            E.SNAPSHOT,
            E.STOP_VIDEO_TRACKS,
            E.SEND_ARTIFACT,
        )

    def test_capture_still_twice_is_noop(self):
        t = plan_transition(S.STILL_PREVIEW, None, Command.CAPTURE_STILL)
        assert not t.accepted
        assert t.state == S.STILL_PREVIEW
        assert t.effects == ()

    def test_retake(self):
        t = plan_transition(S.STILL_PREVIEW, None, Command.RETAKE)
        assert t.state == S.CAMERA_ACTIVE
        assert E.RESET_PREDICTION in t.effects


class TestRecordingTransitions:
    """Frame capture and continuous recording."""

    def test_start_frame_capture(self):
        t = plan_transition(S.CAMERA_ACTIVE, None, Command.START_FRAME_CAPTURE)
        assert t.state == S.RECORDING
        assert t.mode == RecordingMode.FRAMES
        assert t.effects == (E.CANCEL_TIMER, E.START_TIMER)

    def test_set_framerate_cancels_before_start(self):
        t = plan_transition(S.RECORDING, RecordingMode.FRAMES, Command.SET_FRAMERATE)
        assert t.effects == (E.CANCEL_TIMER, E.START_TIMER)
        assert t.mode == RecordingMode.FRAMES

    def test_set_framerate_when_not_capturing_has_no_effects(self):
        t = plan_transition(S.CAMERA_ACTIVE, None, Command.SET_FRAMERATE)
        assert t.accepted
        assert t.effects == ()

    def test_stop_frame_capture(self):
        t = plan_transition(S.RECORDING, RecordingMode.FRAMES, Command.STOP_FRAME_CAPTURE)
        assert t.state == S.CAMERA_ACTIVE
        assert t.mode is None
        assert t.effects == (E.CANCEL_TIMER,)

    def test_modes_are_mutually_exclusive(self):
        assert not plan_transition(
            S.RECORDING, RecordingMode.FRAMES, Command.START_RECORDING
        ).accepted
        assert not plan_transition(
            S.RECORDING, RecordingMode.VIDEO, Command.START_FRAME_CAPTURE
        ).accepted
        assert not plan_transition(
            S.RECORDING, RecordingMode.FRAMES, Command.STOP_RECORDING
        ).accepted

    def test_start_and_stop_recording(self):
        start = plan_transition(S.CAMERA_ACTIVE, None, Command.START_RECORDING)
        assert start.mode == RecordingMode.VIDEO
        assert start.effects == (E.START_RECORDER, E.START_CLOCK)

        stop = plan_transition(S.RECORDING, RecordingMode.VIDEO, Command.STOP_RECORDING)
        assert stop.state == S.CAMERA_ACTIVE
        assert stop.effects == (
            E.STOP_RECORDER,
            E.STOP_CLOCK,
            E.FINALIZE_RECORDING,
            E.SEND_ARTIFACT,
        )

    def test_stop_recording_when_idle_rejected(self):
        assert not plan_transition(S.CAMERA_ACTIVE, None, Command.STOP_RECORDING).accepted


class TestShutdownTransitions:
    """Broker disconnect and close."""

    def test_disconnect_stops_frame_capture(self):
        t = plan_transition(S.RECORDING, RecordingMode.FRAMES, Command.DISCONNECT)
        assert t.state == S.CAMERA_ACTIVE
        assert t.effects == (E.CANCEL_TIMER,)

    def test_disconnect_finalizes_recording(self):
        t = plan_transition(S.RECORDING, RecordingMode.VIDEO, Command.DISCONNECT)
        assert E.FINALIZE_RECORDING in t.effects
        assert E.SEND_ARTIFACT in t.effects

    def test_disconnect_outside_recording_is_noop(self):
        t = plan_transition(S.CAMERA_ACTIVE, None, Command.DISCONNECT)
        assert t.accepted
        assert t.effects == ()

    def test_close_always_releases_camera(self):
        for state, mode in (
            (S.IDLE, None),
            (S.CAMERA_ACTIVE, None),
            (S.STILL_PREVIEW, None),
            (S.RECORDING, RecordingMode.FRAMES),
            (S.RECORDING, RecordingMode.VIDEO),
        ):
            t = plan_transition(state, mode, Command.CLOSE)
            assert t.state == S.IDLE
            assert t.effects[-1] == E.RELEASE_CAMERA
            assert E.CANCEL_TIMER in t.effects

    def test_close_while_recording_sends_clip(self):
        t = plan_transition(S.RECORDING, RecordingMode.VIDEO, Command.CLOSE)
        assert t.effects.index(E.FINALIZE_RECORDING) < t.effects.index(E.SEND_ARTIFACT)
        assert t.effects.index(E.SEND_ARTIFACT) < t.effects.index(E.RELEASE_CAMERA)
