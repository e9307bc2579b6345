"""
Display Sink - single-slot holder of the most recent processed image

Exactly one writer (the frame processor's delivery step) and any number of
readers on the presentation side. Updates publish a new reference; readers
never see a partially written image.
"""

import logging
import time
from dataclasses import dataclass
from io import BytesIO
from typing import Callable

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisplayImage:
    """A reoriented image ready for presentation."""

    pixels: np.ndarray
    source_timestamp: float
    source_sequence: int
    instance_count: int = 0
    quarter_turns: int = 1
    mirrored: bool = False

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def to_pil(self) -> Image.Image:
        """Convert to a PIL image for toolkit-based renderers."""
        return Image.fromarray(self.pixels)

    def to_jpeg(self, quality: int = 85) -> bytes:
        """Encode as JPEG bytes."""
        img = self.to_pil()
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        buf = BytesIO()
        img.save(buf, "JPEG", quality=quality)
        return buf.getvalue()


class DisplaySink:
    """Holds and exposes the current DisplayImage."""

    def __init__(self, name: str = "display"):
        self.name = name
        self._current: DisplayImage | None = None
        self._update_count = 0
        self._last_update: float | None = None
        self._observers: list[Callable[[DisplayImage], None]] = []

    def update(self, image: DisplayImage) -> None:
        """Replace the current image unconditionally."""
        # Single reference assignment is the publish step
        self._current = image
        self._update_count += 1
        self._last_update = time.monotonic()

        for callback in self._observers:
            try:
                callback(image)
            except Exception as e:
                logger.error(f"Display observer error ({self.name}): {e}")

    def current(self) -> DisplayImage | None:
        """Most recently set image, or None before the first one."""
        return self._current

    def on_update(self, callback: Callable[[DisplayImage], None]) -> None:
        """Register a callback invoked with every new image."""
        self._observers.append(callback)
        logger.debug(f"Display observer registered on {self.name}, total: {len(self._observers)}")

    @property
    def update_count(self) -> int:
        return self._update_count

    def get_status(self) -> dict:
        """Get display sink status."""
        current = self._current
        return {
            "name": self.name,
            "update_count": self._update_count,
            "has_image": current is not None,
            "size": (current.width, current.height) if current is not None else None,
            "source_sequence": current.source_sequence if current is not None else None,
            "seconds_since_update": (
                time.monotonic() - self._last_update if self._last_update is not None else None
            ),
        }
