"""
Camera hardware backends.

A backend resolves logical camera positions to devices and opens them as
FrameGrabbers. Grabbers are pull-based; CameraSource turns one into a
push-based stream on a background thread.

- OpenCVCameraBackend: real devices through cv2.VideoCapture
- SyntheticCameraBackend: generated frames for development and tests
"""

import logging
import threading
from abc import ABC, abstractmethod

import cv2
import numpy as np
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from blendcam.errors import CameraOpenError

from .frames import CameraDescriptor, CameraPosition

logger = logging.getLogger(__name__)


class FrameGrabber(ABC):
    """An opened camera device."""

    @abstractmethod
    def read(self) -> np.ndarray | None:
        """
        Read the next frame.

        The returned array may be reused by the grabber on the next read.
        Returns None when no frame is available.
        """

    @abstractmethod
    def release(self) -> None:
        """Release the device."""


class CameraBackend(ABC):
    """Resolves and opens camera devices."""

    @abstractmethod
    def enumerate(self, position: CameraPosition) -> CameraDescriptor | None:
        """Find the camera at a position, or None if there is none."""

    @abstractmethod
    def is_available(self, descriptor: CameraDescriptor) -> bool:
        """Check that a previously resolved descriptor still maps to a device."""

    @abstractmethod
    def open(
        self,
        descriptor: CameraDescriptor,
        resolution: tuple[int, int],
        framerate: int,
    ) -> FrameGrabber:
        """Open a device. Raises CameraOpenError on failure."""


# ==================== OpenCV ====================


class OpenCVFrameGrabber(FrameGrabber):
    """cv2.VideoCapture wrapper returning RGB frames."""

    def __init__(self, capture: "cv2.VideoCapture", descriptor: CameraDescriptor):
        self._capture = capture
        self._descriptor = descriptor
        self._rgb: np.ndarray | None = None

    def read(self) -> np.ndarray | None:
        ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        # Convert into a recycled buffer, same as the hardware does
        if self._rgb is None or self._rgb.shape != frame.shape:
            self._rgb = np.empty_like(frame)
        cv2.cvtColor(frame, cv2.COLOR_BGR2RGB, dst=self._rgb)
        return self._rgb

    def release(self) -> None:
        self._capture.release()
        logger.debug(f"Released camera {self._descriptor}")


class OpenCVCameraBackend(CameraBackend):
    """Camera backend for devices reachable through OpenCV."""

    def __init__(
        self,
        device_indices: dict[CameraPosition, int],
        open_attempts: int = 3,
        retry_delay: float = 0.5,
    ):
        """
        Args:
            device_indices: Map of camera position to cv2 device index
            open_attempts: Attempts to open a device before giving up
            retry_delay: Seconds between open attempts
        """
        self.device_indices = dict(device_indices)
        self.open_attempts = open_attempts
        self.retry_delay = retry_delay

    def _probe(self, index: int) -> bool:
        capture = cv2.VideoCapture(index)
        try:
            return capture.isOpened()
        finally:
            capture.release()

    def enumerate(self, position: CameraPosition) -> CameraDescriptor | None:
        index = self.device_indices.get(position)
        if index is None:
            logger.warning(f"No device index configured for {position.value} camera")
            return None
        if not self._probe(index):
            logger.warning(f"{position.value} camera not found at device index {index}")
            return None
        return CameraDescriptor(position=position, device_id=index, name=f"video{index}")

    def is_available(self, descriptor: CameraDescriptor) -> bool:
        if not isinstance(descriptor.device_id, int):
            return False
        return self._probe(descriptor.device_id)

    def open(
        self,
        descriptor: CameraDescriptor,
        resolution: tuple[int, int],
        framerate: int,
    ) -> FrameGrabber:
        @retry(
            stop=stop_after_attempt(self.open_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(CameraOpenError),
            reraise=True,
        )
        def _open() -> FrameGrabber:
            capture = cv2.VideoCapture(descriptor.device_id)
            if not capture.isOpened():
                capture.release()
                logger.warning(f"Failed to open camera {descriptor}, retrying")
                raise CameraOpenError(f"Cannot open camera {descriptor}")

            capture.set(cv2.CAP_PROP_FRAME_WIDTH, resolution[0])
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, resolution[1])
            capture.set(cv2.CAP_PROP_FPS, framerate)
            # Keep the driver queue short so frames stay fresh
            capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

            actual_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
            actual_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
            logger.info(
                f"Camera {descriptor} opened: {actual_width}x{actual_height} "
                f"@ {capture.get(cv2.CAP_PROP_FPS):.0f}fps"
            )
            return OpenCVFrameGrabber(capture, descriptor)

        return _open()


# ==================== Synthetic ====================


class SyntheticFrameGrabber(FrameGrabber):
    """
    Generates frames with a bright disc moving over a dark gradient.

    One buffer is allocated per grabber and overwritten on every read, so
    consumers that hold on to a frame past delivery see it change.
    """

    def __init__(self, resolution: tuple[int, int], subject: bool = True):
        width, height = resolution
        self.resolution = resolution
        self.subject = subject
        self._buffer = np.zeros((height, width, 3), dtype=np.uint8)
        self._background = np.zeros((height, width, 3), dtype=np.uint8)
        # Dim vertical gradient, well below the subject brightness
        ramp = np.linspace(10, 50, height, dtype=np.uint8)
        self._background[:] = ramp[:, None, None]
        self._tick = 0
        self._released = False

    def read(self) -> np.ndarray | None:
        if self._released:
            return None
        height, width = self._buffer.shape[:2]
        np.copyto(self._buffer, self._background)
        if self.subject:
            radius = max(4, min(width, height) // 8)
            span = max(1, width - 2 * radius)
            cx = radius + (self._tick * 4) % span
            cy = height // 2
            cv2.circle(self._buffer, (int(cx), int(cy)), radius, (230, 200, 180), thickness=-1)
        self._tick += 1
        return self._buffer

    def release(self) -> None:
        self._released = True


class SyntheticCameraBackend(CameraBackend):
    """Backend with generated cameras at the configured positions."""

    def __init__(
        self,
        available: tuple[CameraPosition, ...] = (CameraPosition.FRONT, CameraPosition.BACK),
        subject: bool = True,
    ):
        self.available = set(available)
        self.subject = subject
        self._lock = threading.Lock()
        self.open_count = 0

    def enumerate(self, position: CameraPosition) -> CameraDescriptor | None:
        if position not in self.available:
            return None
        return CameraDescriptor(
            position=position,
            device_id=f"synthetic-{position.value}",
            name=f"Synthetic {position.value} camera",
        )

    def is_available(self, descriptor: CameraDescriptor) -> bool:
        return descriptor.position in self.available

    def open(
        self,
        descriptor: CameraDescriptor,
        resolution: tuple[int, int],
        framerate: int,
    ) -> FrameGrabber:
        if descriptor.position not in self.available:
            raise CameraOpenError(f"Cannot open camera {descriptor}")
        with self._lock:
            self.open_count += 1
        logger.info(f"[SYNTHETIC] Camera {descriptor} opened: {resolution[0]}x{resolution[1]}")
        return SyntheticFrameGrabber(resolution, subject=self.subject)


# Factory function
def create_camera_backend() -> CameraBackend:
    """Create the camera backend from config."""
    from blendcam.config import camera_config

    if camera_config.backend == "synthetic":
        return SyntheticCameraBackend()
    return OpenCVCameraBackend(
        device_indices={
            CameraPosition.FRONT: camera_config.front_device,
            CameraPosition.BACK: camera_config.back_device,
        },
        open_attempts=camera_config.open_attempts,
    )
