"""
Frame Processor - asynchronous segmentation and compositing

Turns one RawFrame into one DisplayImage without blocking the capture
thread:

    capture thread        segmentation worker          presentation context
    --------------        -------------------          --------------------
    process(frame)
      admission check
      own-copy pixels --> segment()
                          composite + reorient
                          dispatch(deliver) ------->   liveness check
                                                       sink.update()

Admission is drop-not-queue: while one frame is being segmented, new frames
are discarded. With a FIFO presentation context this means display updates
can skip frames but never reorder them.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from blendcam.camera.frames import RawFrame
from blendcam.display.sink import DisplayImage, DisplaySink
from blendcam.errors import EmptyResult, SegmentationFailure, SessionError, SessionNotRunning
from blendcam.segmentation.engine import SegmentationEngine

from .compositor import composite, to_display_image
from .contexts import ExecutionContext, InlineContext

logger = logging.getLogger(__name__)

STAT_KEYS = (
    "received",
    "admitted",
    "dropped_busy",
    "rejected_inactive",
    "failed",
    "empty",
    "discarded",
    "displayed",
)


class FrameProcessor:
    """
    Per-session frame processing with at most one segmentation in flight.

    The capture session calls activate() on start and deactivate() on stop.
    Each activation opens a new epoch; results produced for an older epoch
    are discarded at delivery time.
    """

    def __init__(
        self,
        engine: SegmentationEngine,
        sink: DisplaySink,
        presentation: ExecutionContext | None = None,
        quarter_turns: int = 1,
        mirror: bool = True,
        crop_to_extent: bool = False,
        background: tuple[int, int, int] = (0, 0, 0),
        slow_warning_ms: float = 250.0,
    ):
        """
        Initialize the frame processor.

        Args:
            engine: Segmentation engine (called on the worker thread)
            sink: Display sink receiving finished images
            presentation: Context that owns display updates (inline if None)
            quarter_turns: Clockwise quarter turns from sensor to display
            mirror: Mirror horizontally after rotating
            crop_to_extent: Crop composites to the subjects' bounding box
            background: Fill color outside the subject masks
            slow_warning_ms: Warn when one segmentation call exceeds this
        """
        self.engine = engine
        self.sink = sink
        self.presentation = presentation or InlineContext()
        self.quarter_turns = quarter_turns % 4
        self.mirror = mirror
        self.crop_to_extent = crop_to_extent
        self.background = background
        self.slow_warning_ms = slow_warning_ms

        # Single worker: one segmentation at a time
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="segmentation")

        # Admission state
        self._state_lock = threading.Lock()
        self._in_flight = False
        self._idle = threading.Event()
        self._idle.set()

        # Liveness state, guarded by the delivery lock
        self._delivery_lock = threading.RLock()
        self._active = False
        self._epoch = 0
        self._closed = False

        # Statistics
        self._stats_lock = threading.Lock()
        self._stats = dict.fromkeys(STAT_KEYS, 0)
        self._segmentation_count = 0
        self._total_segmentation_ms = 0.0
        self._last_segmentation_ms = 0.0

        logger.info(
            f"FrameProcessor initialized: engine={engine.name}, "
            f"rotation={self.quarter_turns * 90}deg, mirror={mirror}, crop={crop_to_extent}"
        )

    # ==================== Lifecycle ====================

    def activate(self) -> int:
        """Start accepting frames. Returns the new epoch."""
        with self._delivery_lock:
            if self._closed:
                raise SessionError("FrameProcessor is closed")
            self._epoch += 1
            self._active = True
            logger.debug(f"FrameProcessor activated (epoch {self._epoch})")
            return self._epoch

    def deactivate(self) -> None:
        """
        Stop accepting frames and delivering results.

        Once this returns, no further sink update happens for any frame
        admitted so far.
        """
        with self._delivery_lock:
            if self._active:
                logger.debug(f"FrameProcessor deactivated (epoch {self._epoch})")
            self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no segmentation is in flight. Returns False on timeout."""
        return self._idle.wait(timeout)

    def close(self, wait: bool = False) -> None:
        """Deactivate and shut down the worker thread."""
        with self._delivery_lock:
            self._active = False
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("FrameProcessor closed")

    # ==================== Capture side ====================

    def process(self, frame: RawFrame) -> bool:
        """
        Offer a frame for processing. Called on the capture thread.

        The frame's pixels are copied before this returns, so the capture
        buffer can be recycled right away.

        Returns:
            True if the frame was admitted, False if it was dropped
        """
        self._count("received")

        with self._state_lock:
            if not self._active:
                self._count("rejected_inactive")
                return False
            if self._in_flight:
                self._count("dropped_busy")
                logger.debug(f"Frame {frame.sequence} dropped: segmentation in flight")
                return False
            self._in_flight = True
            self._idle.clear()
            epoch = self._epoch

        if frame.is_empty:
            self._count("failed")
            logger.debug(f"Frame {frame.sequence} dropped: empty frame")
            self._release()
            return False

        # Borrow ends here: the worker only ever sees our own copy
        owned = frame.own_copy()

        try:
            self._executor.submit(self._run, owned, epoch)
        except RuntimeError:
            # Executor already shut down
            self._count("rejected_inactive")
            self._release()
            return False

        self._count("admitted")
        return True

    # ==================== Worker side ====================

    def _run(self, frame: RawFrame, epoch: int) -> None:
        """Segment, composite and hand off one frame. Runs on the worker."""
        try:
            image = self._render(frame)
            if image is not None:
                self.presentation.dispatch(partial(self._deliver, image, epoch))
        except Exception as e:
            self._count("failed")
            logger.error(f"Frame {frame.sequence} processing error: {e}", exc_info=True)
        finally:
            self._release()

    def _render(self, frame: RawFrame) -> DisplayImage | None:
        """Run segmentation and compositing. Returns None when the frame is dropped."""
        try:
            masks = self._segment(frame)
            masked = composite(
                frame,
                masks,
                crop_to_extent=self.crop_to_extent,
                background=self.background,
            )
        except EmptyResult:
            self._count("empty")
            logger.debug(f"Frame {frame.sequence}: no subject detected")
            return None
        except SegmentationFailure as e:
            self._count("failed")
            logger.debug(f"Frame {frame.sequence}: segmentation failed: {e}")
            return None

        return to_display_image(masked, self.quarter_turns, self.mirror)

    def _segment(self, frame: RawFrame) -> list:
        start_time = time.perf_counter()
        try:
            masks = self.engine.segment(frame.pixels)
        finally:
            self._record_latency((time.perf_counter() - start_time) * 1000)

        if not masks:
            raise EmptyResult(f"No instances in frame {frame.sequence}")
        return masks

    def _release(self) -> None:
        with self._state_lock:
            self._in_flight = False
            self._idle.set()

    # ==================== Presentation side ====================

    def _deliver(self, image: DisplayImage, epoch: int) -> None:
        """Publish a finished image. Runs on the presentation context."""
        with self._delivery_lock:
            try:
                self._check_live(epoch)
            except SessionNotRunning:
                self._count("discarded")
                logger.debug(f"Result for frame {image.source_sequence} discarded: session stopped")
                return
            self.sink.update(image)
        self._count("displayed")

    def _check_live(self, epoch: int) -> None:
        if not self._active or epoch != self._epoch:
            raise SessionNotRunning(f"Epoch {epoch} is no longer live (current {self._epoch})")

    # ==================== Statistics ====================

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def _record_latency(self, elapsed_ms: float) -> None:
        with self._stats_lock:
            self._segmentation_count += 1
            self._total_segmentation_ms += elapsed_ms
            self._last_segmentation_ms = elapsed_ms
        if elapsed_ms > self.slow_warning_ms:
            logger.warning(
                f"Slow segmentation: {elapsed_ms:.0f}ms (threshold {self.slow_warning_ms:.0f}ms)"
            )

    @property
    def stats(self) -> dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    @property
    def average_segmentation_time(self) -> float:
        """Average segmentation latency in milliseconds."""
        with self._stats_lock:
            if self._segmentation_count == 0:
                return 0.0
            return self._total_segmentation_ms / self._segmentation_count

    def get_status(self) -> dict:
        """Get processor status."""
        return {
            "engine": self.engine.name,
            "active": self._active,
            "epoch": self._epoch,
            "in_flight": self._in_flight,
            "stats": self.stats,
            "average_segmentation_ms": round(self.average_segmentation_time, 2),
            "last_segmentation_ms": round(self._last_segmentation_ms, 2),
        }
