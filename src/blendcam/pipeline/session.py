"""
Capture Session - coordinated front + back camera capture

Owns both Camera Sources and the start/stop lifecycle, and routes frames:
the processed position (front by default) feeds the Frame Processor, every
position feeds its registered raw-frame listeners (preview).

State machine:
    IDLE -> (configure) -> CONFIGURED -> (start) -> RUNNING -> (stop) -> STOPPED
    STOPPED -> (start) -> RUNNING ...
"""

import logging
import threading
from enum import Enum, auto
from typing import Callable

from blendcam.camera.backends import CameraBackend
from blendcam.camera.camera_source import CameraSource
from blendcam.camera.frames import CameraDescriptor, CameraPosition, RawFrame
from blendcam.errors import DeviceUnavailable, SessionError

from .frame_processor import FrameProcessor

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Capture session lifecycle states."""

    IDLE = auto()  # Nothing configured
    CONFIGURED = auto()  # At least one camera resolved
    RUNNING = auto()  # Delivering frames
    STOPPED = auto()  # Stopped, can be restarted


class CaptureSession:
    """
    Aggregates the front and back cameras into one capture unit.

    The frame processor is deactivated before the cameras are stopped, so
    results still in flight when stop() is called never reach the display.
    """

    def __init__(
        self,
        backend: CameraBackend,
        processor: FrameProcessor | None = None,
        process_position: CameraPosition | str = CameraPosition.FRONT,
        resolution: tuple[int, int] = (640, 480),
        framerate: int = 30,
    ):
        """
        Initialize the capture session.

        Args:
            backend: Camera backend used to resolve and open devices
            processor: Frame processor fed from the processed position
            process_position: Which camera feeds the processor
            resolution: Capture resolution for both cameras
            framerate: Capture framerate for both cameras
        """
        self.backend = backend
        self.processor = processor
        self.process_position = CameraPosition.parse(process_position)
        self.resolution = resolution
        self.framerate = framerate

        self._state = SessionState.IDLE
        self._lifecycle_lock = threading.Lock()
        self._live = False
        self._sources: dict[CameraPosition, CameraSource] = {}
        self._listeners: dict[CameraPosition, list[Callable[[RawFrame], None]]] = {}
        self._state_callbacks: list[Callable[[SessionState], None]] = []

        logger.info(
            f"CaptureSession initialized: process={self.process_position.value}, "
            f"resolution={resolution}, fps={framerate}"
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SessionState.RUNNING

    @property
    def configured_positions(self) -> list[CameraPosition]:
        return list(self._sources)

    def source(self, position: CameraPosition) -> CameraSource | None:
        """Camera source configured at a position, if any."""
        return self._sources.get(position)

    # ==================== Configuration ====================

    def _resolve(
        self, position: CameraPosition, descriptor: CameraDescriptor | None
    ) -> CameraDescriptor | None:
        if descriptor is None:
            return self.backend.enumerate(position)
        if descriptor.position != position:
            logger.warning(
                f"Descriptor {descriptor} passed for the {position.value} camera, ignoring"
            )
            return None
        if not self.backend.is_available(descriptor):
            return None
        return descriptor

    def configure(
        self,
        front: CameraDescriptor | None = None,
        back: CameraDescriptor | None = None,
    ) -> None:
        """
        Resolve both cameras and build their sources.

        Missing descriptors are looked up through the backend. A camera that
        cannot be resolved does not stop the other one from being configured.

        Raises:
            DeviceUnavailable: After configuring whatever resolved, if any
                camera could not be resolved
            SessionError: If the session is running
        """
        with self._lifecycle_lock:
            if self._state == SessionState.RUNNING:
                raise SessionError("Cannot configure a running session")

            sources: dict[CameraPosition, CameraSource] = {}
            missing: list[CameraPosition] = []

            for position, requested in (
                (CameraPosition.FRONT, front),
                (CameraPosition.BACK, back),
            ):
                descriptor = self._resolve(position, requested)
                if descriptor is None:
                    logger.warning(f"{position.value} camera unavailable, continuing without it")
                    missing.append(position)
                    continue
                sources[position] = CameraSource(
                    descriptor,
                    self.backend,
                    resolution=self.resolution,
                    framerate=self.framerate,
                )
                logger.info(f"{position.value} camera configured: {descriptor}")

            self._sources = sources
            if sources:
                self._set_state(SessionState.CONFIGURED)
                if self.process_position not in sources:
                    logger.warning(
                        f"Processed camera ({self.process_position.value}) is unavailable, "
                        "no frames will be segmented"
                    )
            else:
                self._set_state(SessionState.IDLE)

        if missing:
            raise DeviceUnavailable(missing[0], missing)

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """
        Start capture on every configured camera.

        Returns immediately; devices are opened on their capture threads.

        Raises:
            SessionError: If nothing is configured
        """
        with self._lifecycle_lock:
            if self._state == SessionState.RUNNING:
                logger.warning("Capture session already running")
                return
            if self._state == SessionState.IDLE:
                raise SessionError("Capture session has no configured cameras")

            if self.processor is not None:
                self.processor.activate()
            self._live = True

            for source in self._sources.values():
                source.start(self._route_frame)

            self._set_state(SessionState.RUNNING)
        logger.info(f"Capture session started: {[p.value for p in self._sources]}")

    def stop(self) -> None:
        """
        Stop capture.

        After this returns no frame reaches the processor and no in-flight
        result reaches the display sink.
        """
        with self._lifecycle_lock:
            if self._state != SessionState.RUNNING:
                return

            self._live = False
            if self.processor is not None:
                self.processor.deactivate()

            for source in self._sources.values():
                source.stop()

            self._set_state(SessionState.STOPPED)
        logger.info("Capture session stopped")

    def close(self) -> None:
        """Stop the session and release processor resources."""
        self.stop()
        if self.processor is not None:
            self.processor.close()
        logger.info("Capture session closed")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ==================== Routing ====================

    def on_frame(self, position: CameraPosition, callback: Callable[[RawFrame], None]) -> None:
        """
        Register a raw-frame listener for one camera.

        Listeners run on the capture thread and borrow the frame; copy the
        pixels to keep them.
        """
        self._listeners.setdefault(position, []).append(callback)
        logger.debug(f"Frame listener registered for {position.value} camera")

    def _route_frame(self, frame: RawFrame) -> None:
        """Deliver one captured frame. Runs on that camera's capture thread."""
        if not self._live:
            # Late frame after stop()
            return

        for callback in self._listeners.get(frame.position, []):
            try:
                callback(frame)
            except Exception as e:
                logger.error(f"Frame listener error ({frame.position.value}): {e}")

        if frame.position == self.process_position and self.processor is not None:
            self.processor.process(frame)

    # ==================== State ====================

    def on_state_change(self, callback: Callable[[SessionState], None]) -> None:
        """Register callback for state changes."""
        self._state_callbacks.append(callback)

    def _set_state(self, new_state: SessionState) -> None:
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        logger.info(f"Session state: {old_state.name} -> {new_state.name}")
        for callback in self._state_callbacks:
            try:
                callback(new_state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

    def get_status(self) -> dict:
        """Get capture session status."""
        return {
            "state": self._state.name,
            "process_position": self.process_position.value,
            "cameras": {p.value: s.get_status() for p, s in self._sources.items()},
            "processor": self.processor.get_status() if self.processor else None,
        }
