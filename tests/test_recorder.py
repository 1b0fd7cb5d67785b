"""
Tests for recorder codec negotiation.
"""

import asyncio

import pytest

from lensrelay.camera import recorder
from lensrelay.camera.recorder import FFmpegMediaRecorder, container_type, select_codec
from lensrelay.errors import EncodingUnsupportedError

PREFERENCES = ["video/webm;codecs=vp9", "video/webm;codecs=vp8", "video/webm"]


class TestSelectCodec:
    def test_first_supported_wins(self):
        assert select_codec(PREFERENCES, lambda m: True) == "video/webm;codecs=vp9"

    def test_falls_back_in_order(self):
        supported = {"video/webm;codecs=vp8", "video/webm"}
        assert select_codec(PREFERENCES, supported.__contains__) == "video/webm;codecs=vp8"

    def test_generic_when_vp9_and_vp8_unsupported(self):
        assert select_codec(PREFERENCES, lambda m: m == "video/webm") == "video/webm"

    def test_nothing_supported(self):
        with pytest.raises(EncodingUnsupportedError) as exc_info:
            select_codec(PREFERENCES, lambda m: False)
        assert exc_info.value.preferences == PREFERENCES

    def test_checks_each_type_once_in_order(self):
        checked = []

        def is_supported(mime_type):
            checked.append(mime_type)
            return mime_type == "video/webm"

        select_codec(PREFERENCES, is_supported)
        assert checked == PREFERENCES


class TestContainerType:
    def test_strips_codec_parameters(self):
        assert container_type("video/webm;codecs=vp9") == "video/webm"
        assert container_type("video/webm") == "video/webm"


class TestFFmpegSupport:
    def test_unsupported_without_ffmpeg(self, monkeypatch):
        monkeypatch.setattr(recorder, "FFMPEG_AVAILABLE", False)
        assert not FFmpegMediaRecorder.is_type_supported("video/webm")

    def test_unknown_mime(self, monkeypatch):
        monkeypatch.setattr(recorder, "FFMPEG_AVAILABLE", True)
        assert not FFmpegMediaRecorder.is_type_supported("video/x-matroska")

    def test_encoder_lookup(self, monkeypatch):
        monkeypatch.setattr(recorder, "FFMPEG_AVAILABLE", True)
        monkeypatch.setattr(recorder, "available_encoders", lambda: frozenset({"libvpx"}))
        assert not FFmpegMediaRecorder.is_type_supported("video/webm;codecs=vp9")
        assert FFmpegMediaRecorder.is_type_supported("video/webm;codecs=vp8")
        assert FFmpegMediaRecorder.is_type_supported("video/webm")

    def test_new_recorder_is_inactive(self):
        rec = FFmpegMediaRecorder(stream=None, mime_type="video/webm")
        assert rec.state == "inactive"

    def test_stop_while_inactive_is_noop(self):
        stopped = []
        rec = FFmpegMediaRecorder(stream=None, mime_type="video/webm")
        rec.on_stop = lambda: stopped.append(True)
        asyncio.run(rec.stop())
        assert rec.state == "inactive"
        assert stopped == []

    def test_command_uses_negotiated_encoder(self):
        rec = FFmpegMediaRecorder(stream=None, mime_type="video/webm;codecs=vp9", video_bits_per_second=2_500_000)
        cmd = rec._build_command(640, 480)
        assert cmd[cmd.index("-c:v") + 1] == "libvpx-vp9"
        assert cmd[cmd.index("-b:v") + 1] == "2500000"
        assert cmd[cmd.index("-s") + 1] == "640x480"
