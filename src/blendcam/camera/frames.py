"""
Camera data structures: positions, device descriptors and raw frames.
"""

from dataclasses import dataclass, replace
from enum import Enum

import numpy as np


class CameraPosition(Enum):
    """Logical position of a physical camera."""

    FRONT = "front"
    BACK = "back"

    @classmethod
    def parse(cls, value: "str | CameraPosition") -> "CameraPosition":
        """Accept either a position or its config string ('front' / 'back')."""
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())


@dataclass(frozen=True)
class CameraDescriptor:
    """Identifies one physical camera. Resolved once at session setup."""

    position: CameraPosition
    device_id: int | str
    name: str = ""

    def __str__(self) -> str:
        label = self.name or str(self.device_id)
        return f"{self.position.value}:{label}"


@dataclass
class RawFrame:
    """
    A single captured frame.

    The pixel buffer is borrowed from the capture backend and is only valid
    for the duration of the delivery callback. Anything kept past that point
    must go through own_copy().
    """

    pixels: np.ndarray
    timestamp: float  # time.monotonic() at capture
    sequence: int
    position: CameraPosition
    pixel_format: str = "RGB888"

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1]) if self.pixels.ndim >= 2 else 0

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0]) if self.pixels.ndim >= 2 else 0

    @property
    def is_empty(self) -> bool:
        """True for zero-size or otherwise unusable frames."""
        return self.pixels is None or self.pixels.ndim < 2 or self.pixels.size == 0

    def own_copy(self) -> "RawFrame":
        """Return a frame whose pixels no longer alias the capture buffer."""
        return replace(self, pixels=np.array(self.pixels, copy=True))
