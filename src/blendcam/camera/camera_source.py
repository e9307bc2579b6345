"""
Camera Source - push-based frame stream for one physical camera

Owns one device for the lifetime of a start()/stop() cycle. The device is
opened on the capture thread, so start() never blocks on hardware
initialization. Frames are delivered to the callback in capture order on
that same thread.
"""

import logging
import threading
import time
from typing import Callable

from blendcam.errors import CameraOpenError

from .backends import CameraBackend, FrameGrabber
from .frames import CameraDescriptor, RawFrame

logger = logging.getLogger(__name__)

FrameCallback = Callable[[RawFrame], None]


class CameraSource:
    """
    Background capture for a single camera.

    The RawFrame passed to the callback borrows the grabber's buffer; it is
    only valid until the callback returns.
    """

    def __init__(
        self,
        descriptor: CameraDescriptor,
        backend: CameraBackend,
        resolution: tuple[int, int] = (640, 480),
        framerate: int = 30,
    ):
        self.descriptor = descriptor
        self.backend = backend
        self.resolution = resolution
        self.framerate = framerate

        # State
        self._started = False
        self._capture_thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._grabber: FrameGrabber | None = None
        self._callback: FrameCallback | None = None
        self._frame_count = 0
        self._read_failures = 0
        self._open_failed = False

    @property
    def position(self):
        return self.descriptor.position

    @property
    def is_running(self) -> bool:
        return self._started

    def start(self, on_frame: FrameCallback) -> None:
        """Start capturing and delivering frames to on_frame."""
        if self._started:
            logger.warning(f"Camera source {self.descriptor} already started")
            return

        # Per-run stop event: a thread orphaned by a timed-out stop() stays stopped
        self._stop_event = threading.Event()
        self._callback = on_frame
        self._open_failed = False
        self._started = True

        self._capture_thread = threading.Thread(
            target=self._capture_loop,
            args=(self._stop_event, on_frame),
            name=f"CameraCapture-{self.descriptor.position.value}",
            daemon=True,
        )
        self._capture_thread.start()
        logger.info(f"Camera source {self.descriptor} started")

    def stop(self, timeout: float = 2.0) -> None:
        """Stop capturing. No frames are delivered once this returns."""
        if not self._started:
            return

        self._stop_event.set()
        if self._capture_thread and self._capture_thread is not threading.current_thread():
            self._capture_thread.join(timeout=timeout)
            if self._capture_thread.is_alive():
                logger.error(
                    f"Capture thread for {self.descriptor} did not stop within {timeout}s, "
                    "it will release the device when it exits"
                )
        self._capture_thread = None
        self._started = False
        logger.info(f"Camera source {self.descriptor} stopped")

    def _open(self, stop_event: threading.Event) -> FrameGrabber | None:
        try:
            return self.backend.open(self.descriptor, self.resolution, self.framerate)
        except CameraOpenError as e:
            if not stop_event.is_set():
                self._open_failed = True
            logger.error(f"Camera {self.descriptor} could not be opened: {e}")
            return None

    def _capture_loop(self, stop_event: threading.Event, callback: FrameCallback) -> None:
        """Open the device and push frames until stop_event is set."""
        grabber = self._open(stop_event)
        if grabber is None:
            return
        if stop_event.is_set():
            # Stopped while the device was opening
            grabber.release()
            logger.info(f"Camera {self.descriptor} opened after stop, released")
            return
        self._grabber = grabber

        logger.info(f"Capture loop started for {self.descriptor}")
        target_interval = 1.0 / self.framerate

        try:
            while not stop_event.is_set():
                loop_start = time.perf_counter()

                try:
                    pixels = grabber.read()
                except Exception as e:
                    logger.error(f"Capture error on {self.descriptor}: {e}")
                    pixels = None

                if pixels is None:
                    self._read_failures += 1
                    if self._read_failures % 30 == 1:
                        logger.warning(
                            f"No frame from {self.descriptor} "
                            f"({self._read_failures} read failures)"
                        )
                else:
                    if stop_event.is_set():
                        break
                    self._frame_count += 1
                    frame = RawFrame(
                        pixels=pixels,
                        timestamp=time.monotonic(),
                        sequence=self._frame_count,
                        position=self.descriptor.position,
                    )
                    try:
                        callback(frame)
                    except Exception as e:
                        logger.error(f"Frame callback error on {self.descriptor}: {e}", exc_info=True)

                # Maintain framerate
                elapsed = time.perf_counter() - loop_start
                sleep_time = target_interval - elapsed
                if sleep_time > 0:
                    stop_event.wait(sleep_time)
        finally:
            grabber.release()
            if self._grabber is grabber:
                self._grabber = None
            logger.info(f"Capture loop stopped for {self.descriptor}")

    def get_status(self) -> dict:
        """Get camera source status."""
        return {
            "camera": str(self.descriptor),
            "started": self._started,
            "frame_count": self._frame_count,
            "read_failures": self._read_failures,
            "open_failed": self._open_failed,
            "resolution": self.resolution,
            "framerate": self.framerate,
        }
