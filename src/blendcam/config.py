"""
Configuration management for BlendCam using Pydantic settings.

Loads configuration from:
1. .env file (if present)
2. config/config.json (defaults)
3. Environment variables (override with BLENDCAM_ prefix)
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


def load_json_config() -> dict[str, Any]:
    """Load configuration from config.json file."""
    config_file = CONFIG_DIR / "config.json"
    if config_file.exists():
        with open(config_file) as f:
            return json.load(f)
    return {}


_json_config = load_json_config()

CAMERA_BACKENDS = ("opencv", "synthetic")
SEGMENTATION_ENGINES = ("foreground", "yolo")
CAMERA_POSITIONS = ("front", "back")


class CameraConfig(BaseSettings):
    """Dual camera capture configuration."""

    model_config = {"env_prefix": "BLENDCAM_CAMERA_"}

    backend: str = Field(
        default=_json_config.get("camera", {}).get("backend", "opencv"),
        description="Camera backend: 'opencv' for real devices, 'synthetic' for generated frames",
    )
    front_device: int = Field(
        default=_json_config.get("camera", {}).get("front_device", 1),
        description="OpenCV device index of the front (user-facing) camera",
    )
    back_device: int = Field(
        default=_json_config.get("camera", {}).get("back_device", 0),
        description="OpenCV device index of the back (world-facing) camera",
    )
    resolution: tuple[int, int] = Field(
        default=tuple(_json_config.get("camera", {}).get("resolution", [640, 480])),
        description="Capture resolution (width, height) for both cameras",
    )
    framerate: int = Field(
        default=_json_config.get("camera", {}).get("framerate", 30),
        description="Capture framerate",
    )
    process_position: str = Field(
        default=_json_config.get("camera", {}).get("process_position", "front"),
        description="Which camera feeds the segmentation pipeline",
    )
    open_attempts: int = Field(
        default=_json_config.get("camera", {}).get("open_attempts", 3),
        description="Attempts to open a camera device before giving up",
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
        if v not in CAMERA_BACKENDS:
            raise ValueError(f"backend must be one of {CAMERA_BACKENDS}, got {v!r}")
        return v

    @field_validator("framerate")
    @classmethod
    def validate_framerate(cls, v):
        if v < 1 or v > 120:
            raise ValueError(f"framerate must be between 1 and 120, got {v}")
        return v

    @field_validator("process_position")
    @classmethod
    def validate_process_position(cls, v):
        v = v.lower()
        if v not in CAMERA_POSITIONS:
            raise ValueError(f"process_position must be one of {CAMERA_POSITIONS}, got {v!r}")
        return v

    @field_validator("open_attempts")
    @classmethod
    def validate_open_attempts(cls, v):
        if v < 1 or v > 10:
            raise ValueError(f"open_attempts must be 1-10, got {v}")
        return v


class SegmentationConfig(BaseSettings):
    """Subject segmentation engine configuration."""

    model_config = {"env_prefix": "BLENDCAM_SEGMENTATION_"}

    engine: str = Field(
        default=_json_config.get("segmentation", {}).get("engine", "foreground"),
        description="Segmentation engine: 'foreground' (OpenCV) or 'yolo' (ultralytics)",
    )
    model_path: str = Field(
        default=_json_config.get("segmentation", {}).get("model_path", "yolov8n-seg.pt"),
        description="Model weights for the yolo engine",
    )
    min_instance_area: int = Field(
        default=_json_config.get("segmentation", {}).get("min_instance_area", 500),
        description="Minimum mask area in pixels for a detected instance",
    )
    max_instances: int = Field(
        default=_json_config.get("segmentation", {}).get("max_instances", 8),
        description="Maximum number of instances kept per frame",
    )
    confidence: float = Field(
        default=_json_config.get("segmentation", {}).get("confidence", 0.5),
        description="Minimum confidence for model-based engines",
    )
    slow_warning_ms: float = Field(
        default=_json_config.get("segmentation", {}).get("slow_warning_ms", 250.0),
        description="Log a warning when one segmentation call takes longer than this",
    )

    @field_validator("engine")
    @classmethod
    def validate_engine(cls, v):
        if v not in SEGMENTATION_ENGINES:
            raise ValueError(f"engine must be one of {SEGMENTATION_ENGINES}, got {v!r}")
        return v

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence must be 0.0-1.0, got {v}")
        return v

    @field_validator("max_instances")
    @classmethod
    def validate_max_instances(cls, v):
        if v < 1:
            raise ValueError(f"max_instances must be >= 1, got {v}")
        return v


class DisplayConfig(BaseSettings):
    """Output orientation and preview window configuration."""

    model_config = {"env_prefix": "BLENDCAM_DISPLAY_"}

    rotation_degrees: int = Field(
        default=_json_config.get("display", {}).get("rotation_degrees", 90),
        description="Clockwise rotation from sensor to display orientation",
    )
    mirror: bool = Field(
        default=_json_config.get("display", {}).get("mirror", True),
        description="Mirror horizontally after rotation (selfie view)",
    )
    crop_to_extent: bool = Field(
        default=_json_config.get("display", {}).get("crop_to_extent", False),
        description="Crop the composite to the bounding box of the detected subjects",
    )
    background_color: tuple[int, int, int] = Field(
        default=tuple(_json_config.get("display", {}).get("background_color", [0, 0, 0])),
        description="RGB fill for pixels outside the subject masks",
    )
    window_enabled: bool = Field(
        default=_json_config.get("display", {}).get("window_enabled", True),
        description="Show an OpenCV preview window",
    )
    window_title: str = Field(
        default=_json_config.get("display", {}).get("window_title", "BlendCam"),
        description="Preview window title",
    )
    refresh_hz: float = Field(
        default=_json_config.get("display", {}).get("refresh_hz", 30.0),
        description="Presentation refresh rate",
    )

    @field_validator("rotation_degrees")
    @classmethod
    def validate_rotation(cls, v):
        if v % 90 != 0:
            raise ValueError(f"rotation_degrees must be a multiple of 90, got {v}")
        return v % 360

    @field_validator("background_color", mode="before")
    @classmethod
    def parse_background_color(cls, v):
        if isinstance(v, list):
            v = tuple(v)
        if len(v) != 3 or any(not 0 <= int(c) <= 255 for c in v):
            raise ValueError(f"background_color must be three values 0-255, got {v}")
        return v

    @field_validator("refresh_hz")
    @classmethod
    def validate_refresh_hz(cls, v):
        if v <= 0 or v > 240:
            raise ValueError(f"refresh_hz must be in (0, 240], got {v}")
        return v

    @property
    def quarter_turns(self) -> int:
        """Rotation expressed as clockwise quarter turns."""
        return self.rotation_degrees // 90


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = {"env_prefix": "BLENDCAM_LOGGING_"}

    level: str = Field(
        default=_json_config.get("logging", {}).get("level", "INFO"),
        description="Log level",
    )
    file: str = Field(
        default=_json_config.get("logging", {}).get(
            "file", str(RUNTIME_DIR / "logs" / "blendcam.log")
        ),
        description="Log file path",
    )


# Global configuration instances
camera_config = CameraConfig()
segmentation_config = SegmentationConfig()
display_config = DisplayConfig()
logging_config = LoggingConfig()


def setup_logging() -> None:
    """Configure logging for the application with log rotation."""
    from logging.handlers import RotatingFileHandler

    log_dir = Path(logging_config.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    # Use RotatingFileHandler to prevent disk fill (10MB max, keep 5 backups)
    file_handler = RotatingFileHandler(
        logging_config.file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level.upper()))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(logging.StreamHandler())

    logger.info(
        f"Logging configured: level={logging_config.level}, "
        f"file={logging_config.file} (rotating, 10MB max, 5 backups)"
    )
