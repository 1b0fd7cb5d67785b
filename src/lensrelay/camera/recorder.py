"""
Media Recorder - continuous recording with codec negotiation

Encodes frames from a live MediaStream to WebM via an ffmpeg subprocess
driven from the event loop. Encoded output is delivered in chunks every
`timeslice_ms` through `on_data_available`; the recorder never touches
disk, the caller decides what to do with the chunks.

Codec negotiation walks an ordered MIME preference list and commits to
the first type the recorder class reports as supported.
"""

import asyncio
import logging
import shutil
import subprocess
from functools import lru_cache
from typing import Callable, Iterable

import numpy as np

from lensrelay.errors import EncodingUnsupportedError

logger = logging.getLogger(__name__)

# Check ffmpeg availability at import time
FFMPEG_AVAILABLE = shutil.which("ffmpeg") is not None

if not FFMPEG_AVAILABLE:
    logger.warning("ffmpeg not found - continuous recording unavailable")

# MIME type -> ffmpeg video encoder (None: container default)
MIME_ENCODERS = {
    "video/webm;codecs=vp9": "libvpx-vp9",
    "video/webm;codecs=vp8": "libvpx",
    "video/webm": None,
}

GENERIC_VIDEO_MIME = "video/webm"


def select_codec(preferences: Iterable[str], is_supported: Callable[[str], bool]) -> str:
    """
    Pick the first supported MIME type from an ordered preference list.

    Raises:
        EncodingUnsupportedError: nothing in the list is supported
    """
    preferences = list(preferences)
    for mime_type in preferences:
        if is_supported(mime_type):
            return mime_type
        logger.debug(f"Recorder type not supported, falling back: {mime_type}")
    raise EncodingUnsupportedError(preferences)


def container_type(mime_type: str) -> str:
    """Strip codec parameters: 'video/webm;codecs=vp9' -> 'video/webm'."""
    return mime_type.split(";", 1)[0].strip()


@lru_cache(maxsize=1)
def available_encoders() -> frozenset[str]:
    """Names of the video encoders compiled into the local ffmpeg."""
    if not FFMPEG_AVAILABLE:
        return frozenset()
    try:
        result = subprocess.run(
            ["ffmpeg", "-hide_banner", "-encoders"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error(f"Could not list ffmpeg encoders: {e}")
        return frozenset()

    names = set()
    for line in result.stdout.splitlines():
        parts = line.split()
        # Encoder rows look like " V....D libvpx-vp9  libvpx VP9"
        if len(parts) >= 2 and parts[0].startswith("V"):
            names.add(parts[1])
    return frozenset(names)


class FFmpegMediaRecorder:
    """
    WebM recorder fed from a MediaStream.

    States: 'inactive' -> 'recording' -> 'inactive'. stop() while
    inactive is a no-op.
    """

    CHUNK_READ_SIZE = 64 * 1024

    def __init__(
        self,
        stream,
        mime_type: str = GENERIC_VIDEO_MIME,
        video_bits_per_second: int = 2_500_000,
        framerate: float = 15.0,
    ):
        self.stream = stream
        self.mime_type = mime_type
        self.video_bits_per_second = video_bits_per_second
        self.framerate = framerate
        self.state = "inactive"

        self.on_data_available: Callable[[bytes], None] | None = None
        self.on_stop: Callable[[], None] | None = None

        self._proc: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self._pending = bytearray()
        self._stopping = asyncio.Event()

    @staticmethod
    def is_type_supported(mime_type: str) -> bool:
        if not FFMPEG_AVAILABLE or mime_type not in MIME_ENCODERS:
            return False
        encoder = MIME_ENCODERS[mime_type]
        return encoder is None or encoder in available_encoders()

    def _build_command(self, width: int, height: int) -> list[str]:
        cmd = [
            "ffmpeg",
            "-hide_banner",
            "-loglevel", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{width}x{height}",
            "-r", str(self.framerate),
            "-i", "pipe:0",
        ]
        encoder = MIME_ENCODERS.get(self.mime_type)
        if encoder:
            cmd.extend(["-c:v", encoder])
        cmd.extend([
            "-b:v", str(self.video_bits_per_second),
            "-f", "webm",
            "pipe:1",
        ])
        return cmd

    async def start(self, timeslice_ms: int = 100) -> None:
        """Start encoding; chunks are emitted every timeslice_ms."""
        if self.state == "recording":
            logger.warning("Recorder already recording")
            return

        loop = asyncio.get_running_loop()
        first_frame: np.ndarray = await loop.run_in_executor(None, self.stream.read_frame)
        height, width = first_frame.shape[:2]

        self._proc = await asyncio.create_subprocess_exec(
            *self._build_command(width, height),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        self._stopping.clear()
        self._pending.clear()
        self.state = "recording"

        self._tasks = [
            asyncio.create_task(self._feed_frames(first_frame), name="recorder_feed"),
            asyncio.create_task(self._read_output(), name="recorder_read"),
            asyncio.create_task(self._flush_loop(timeslice_ms / 1000), name="recorder_flush"),
        ]
        logger.info(
            f"Recorder started: {self.mime_type} {width}x{height} @ {self.framerate}fps, "
            f"{self.video_bits_per_second}bps, timeslice={timeslice_ms}ms"
        )

    async def _feed_frames(self, first_frame: np.ndarray) -> None:
        loop = asyncio.get_running_loop()
        interval = 1.0 / self.framerate
        frame = first_frame
        try:
            while not self._stopping.is_set():
                self._proc.stdin.write(frame.astype(np.uint8).tobytes())
                await self._proc.stdin.drain()
                await asyncio.sleep(interval)
                frame = await loop.run_in_executor(None, self.stream.read_frame)
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as e:
            logger.error(f"Recorder feed stopped: {e}")
        finally:
            if not self._proc.stdin.is_closing():
                self._proc.stdin.close()

    async def _read_output(self) -> None:
        while True:
            data = await self._proc.stdout.read(self.CHUNK_READ_SIZE)
            if not data:
                break
            self._pending.extend(data)

    async def _flush_loop(self, interval: float) -> None:
        while not self._stopping.is_set():
            await asyncio.sleep(interval)
            self._flush()

    def _flush(self) -> None:
        if not self._pending:
            return
        chunk = bytes(self._pending)
        self._pending.clear()
        if self.on_data_available:
            self.on_data_available(chunk)

    async def stop(self) -> None:
        """Finish encoding and emit the remaining output."""
        if self.state != "recording":
            return

        self._stopping.set()
        feed, read, flush = self._tasks
        try:
            await feed
            await read
            flush.cancel()
            await asyncio.gather(flush, return_exceptions=True)
            await self._proc.wait()
            self._flush()
            if self._proc.returncode not in (0, None):
                logger.error(f"ffmpeg exited with code {self._proc.returncode}")
        finally:
            self.state = "inactive"
            self._tasks = []
            self._proc = None
            if self.on_stop:
                self.on_stop()
        logger.info("Recorder stopped")
