"""
Configuration management for LensRelay using Pydantic settings.

Loads configuration from:
1. .env file (if present)
2. config/config.json (defaults)
3. Environment variables (override with LENSRELAY_ prefix)
"""

import json
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
RUNTIME_DIR = PROJECT_ROOT / "runtime"

# Load .env file from project root (if exists)
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
    logger.debug(f"Loaded environment from {_env_file}")

FACING_MODES = ("user", "environment")
MIN_FRAMERATE = 0.5
MAX_FRAMERATE = 10.0


def load_json_config() -> dict[str, Any]:
    """Load configuration from config.json file."""
    config_file = CONFIG_DIR / "config.json"
    if config_file.exists():
        with open(config_file) as f:
            return json.load(f)
    return {}


_json_config = load_json_config()


def validate_framerate(value: float) -> float:
    """Check a frame-capture rate against the slider range (0.5 Hz steps)."""
    if value < MIN_FRAMERATE or value > MAX_FRAMERATE:
        raise ValueError(
            f"framerate must be between {MIN_FRAMERATE} and {MAX_FRAMERATE}, got {value}"
        )
    if (value * 2) != int(value * 2):
        raise ValueError(f"framerate must be a multiple of 0.5, got {value}")
    return value


class CameraConfig(BaseSettings):
    """Camera device configuration."""

    model_config = {"env_prefix": "LENSRELAY_CAMERA_"}

    backend: str = Field(
        default=_json_config.get("camera", {}).get("backend", "mock"),
        description="Camera device backend: 'mock' or 'opencv'",
    )
    facing_mode: str = Field(
        default=_json_config.get("camera", {}).get("facing_mode", "environment"),
        description="Initial facing mode ('user' = front, 'environment' = back)",
    )
    device_indices: dict[str, int] = Field(
        default=_json_config.get("camera", {}).get(
            "device_indices", {"user": 0, "environment": 1}
        ),
        description="OpenCV device index per facing mode",
    )
    resolution: tuple[int, int] = Field(
        default=tuple(_json_config.get("camera", {}).get("resolution", [640, 480])),
        description="Requested capture resolution (width, height)",
    )

    @field_validator("resolution", mode="before")
    @classmethod
    def parse_resolution(cls, v):
        if isinstance(v, list):
            return tuple(v)
        return v

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in ("mock", "opencv"):
            raise ValueError(f"backend must be 'mock' or 'opencv', got {v}")
        return v

    @field_validator("facing_mode")
    @classmethod
    def validate_facing_mode(cls, v):
        if v not in FACING_MODES:
            raise ValueError(f"facing_mode must be one of {FACING_MODES}, got {v}")
        return v


class CaptureConfig(BaseSettings):
    """Still/frame capture and continuous recording configuration."""

    model_config = {"env_prefix": "LENSRELAY_CAPTURE_"}

    framerate: float = Field(
        default=_json_config.get("capture", {}).get("framerate", 2),
        description="Frame capture rate in Hz (0.5 - 10)",
    )
    codec_preferences: list[str] = Field(
        default=_json_config.get("capture", {}).get(
            "codec_preferences",
            ["video/webm;codecs=vp9", "video/webm;codecs=vp8", "video/webm"],
        ),
        description="Recorder MIME types, most preferred first",
    )
    video_bits_per_second: int = Field(
        default=_json_config.get("capture", {}).get("video_bits_per_second", 2_500_000),
        description="Target bitrate for continuous recording",
    )
    timeslice_ms: int = Field(
        default=_json_config.get("capture", {}).get("timeslice_ms", 100),
        description="Recorder chunk interval in milliseconds",
    )
    clock_tick_ms: int = Field(
        default=_json_config.get("capture", {}).get("clock_tick_ms", 100),
        description="Elapsed recording time display tick",
    )
    jpeg_quality: int = Field(
        default=_json_config.get("capture", {}).get("jpeg_quality", 92),
        description="JPEG quality for still artifacts (1-100)",
    )

    @field_validator("framerate")
    @classmethod
    def check_framerate(cls, v):
        return validate_framerate(v)

    @field_validator("codec_preferences")
    @classmethod
    def validate_codec_preferences(cls, v):
        if not v:
            raise ValueError("codec_preferences must not be empty")
        return v

    @field_validator("jpeg_quality")
    @classmethod
    def validate_jpeg_quality(cls, v):
        if v < 1 or v > 100:
            raise ValueError(f"jpeg_quality must be 1-100, got {v}")
        return v


class TransportConfig(BaseSettings):
    """Relay transport and storage configuration."""

    model_config = {"env_prefix": "LENSRELAY_TRANSPORT_"}

    topic: str = Field(
        default=_json_config.get("transport", {}).get("topic", "images"),
        description="Broker topic for captured media envelopes",
    )
    user_id: str = Field(
        default=_json_config.get("transport", {}).get("user_id", "local"),
        description="User id stamped on locally captured artifacts",
    )
    storage_backend: str = Field(
        default=_json_config.get("transport", {}).get("storage_backend", "filesystem"),
        description="Blob storage backend: 'filesystem' or 'rclone'",
    )
    storage_root: str = Field(
        default=_json_config.get("transport", {}).get(
            "storage_root", str(RUNTIME_DIR / "media")
        ),
        description="Root directory for filesystem blob storage",
    )
    rclone_remote: str = Field(
        default=_json_config.get("transport", {}).get("rclone_remote", ""),
        description="rclone remote name (e.g., 'gdrive', 's3')",
    )
    remote_path: str = Field(
        default=_json_config.get("transport", {}).get("remote_path", "LensRelay"),
        description="Base path on the rclone remote",
    )

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v):
        if v not in ("filesystem", "rclone"):
            raise ValueError(f"storage_backend must be 'filesystem' or 'rclone', got {v}")
        return v


class BrokerConfig(BaseSettings):
    """ZeroMQ broker configuration."""

    model_config = {"env_prefix": "LENSRELAY_BROKER_"}

    publish_endpoint: str = Field(
        default=_json_config.get("broker", {}).get("publish_endpoint", "tcp://127.0.0.1:5556"),
        description="Endpoint the relay binds its PUB socket to",
    )
    results_endpoint: str = Field(
        default=_json_config.get("broker", {}).get("results_endpoint", "tcp://127.0.0.1:5557"),
        description="Endpoint inference results are published on",
    )
    results_topic: str = Field(
        default=_json_config.get("broker", {}).get("results_topic", "predictions"),
        description="Topic carrying inference results",
    )


class OverlayConfig(BaseSettings):
    """Detection overlay configuration."""

    model_config = {"env_prefix": "LENSRELAY_OVERLAY_"}

    min_score: float = Field(
        default=_json_config.get("overlay", {}).get("min_score", 0.5),
        description="Detections must score strictly above this to be drawn",
    )
    label_settings: dict[str, dict[str, str]] = Field(
        default=_json_config.get("overlay", {}).get("label_settings", {}),
        description="Label -> {'bgColor': '#rrggbb'} style mapping",
    )
    mask_color: str = Field(
        default=_json_config.get("overlay", {}).get("mask_color", "#565656"),
        description="Zone mask fill color",
    )
    mask_opacity: float = Field(
        default=_json_config.get("overlay", {}).get("mask_opacity", 0.7),
        description="Zone mask opacity (0.0 to 1.0)",
    )
    strict_correlation: bool = Field(
        default=_json_config.get("overlay", {}).get("strict_correlation", False),
        description="Drop results whose sequence id does not match the latest capture",
    )

    @field_validator("min_score", "mask_opacity")
    @classmethod
    def validate_unit_range(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"value must be 0.0-1.0, got {v}")
        return v


class APIConfig(BaseSettings):
    """FastAPI relay server configuration."""

    model_config = {"env_prefix": "LENSRELAY_API_"}

    enabled: bool = Field(
        default=_json_config.get("api", {}).get("enabled", True),
        description="Enable relay HTTP/websocket server",
    )
    host: str = Field(
        default=_json_config.get("api", {}).get("host", "0.0.0.0"),
        description="API server bind host",
    )
    port: int = Field(
        default=_json_config.get("api", {}).get("port", 8080),
        description="API server port",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = {"env_prefix": "LENSRELAY_LOGGING_"}

    level: str = Field(
        default=_json_config.get("logging", {}).get("level", "INFO"),
        description="Log level",
    )
    file: str = Field(
        default=_json_config.get("logging", {}).get(
            "file", str(RUNTIME_DIR / "logs" / "lensrelay.log")
        ),
        description="Log file path",
    )


# Global configuration instances
camera_config = CameraConfig()
capture_config = CaptureConfig()
transport_config = TransportConfig()
broker_config = BrokerConfig()
overlay_config = OverlayConfig()
api_config = APIConfig()
logging_config = LoggingConfig()


def setup_logging() -> None:
    """Configure logging for the application with log rotation."""
    from logging.handlers import RotatingFileHandler

    log_dir = Path(logging_config.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        logging_config.file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level.upper()))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(logging.StreamHandler())

    logger.info(
        f"Logging configured: level={logging_config.level}, "
        f"file={logging_config.file} (rotating, 10MB max, 5 backups)"
    )


def ensure_runtime_dirs() -> None:
    """Create runtime directories if they don't exist."""
    dirs = [
        Path(transport_config.storage_root),
        RUNTIME_DIR / "overlays",
        Path(logging_config.file).parent,
    ]
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {d}")
