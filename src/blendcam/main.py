"""
BlendCam Main Controller

Wires the pipeline together and runs the presentation loop:

    CaptureSession (capture threads)
        -> FrameProcessor (segmentation worker)
        -> DisplaySink (updated on the asyncio loop)
        -> PreviewWindow (polled on the asyncio loop)

The asyncio event loop is the presentation context: processed images are
handed to it with call_soon_threadsafe and the window is refreshed from it.
"""

import asyncio
import logging
import signal
import sys
import time
from functools import partial

from blendcam.camera.frames import CameraPosition, RawFrame
from blendcam.display.sink import DisplayImage, DisplaySink
from blendcam.errors import DeviceUnavailable
from blendcam.pipeline.compositor import reorient
from blendcam.pipeline.contexts import AsyncioContext
from blendcam.pipeline.session import CaptureSession, SessionState

logger = logging.getLogger(__name__)

STATUS_LOG_INTERVAL_SECONDS = 10.0


class BlendCamController:
    """
    Application controller owning all pipeline components.

    The processed camera's composite goes to the main sink; the other
    camera's raw frames go to a preview sink.
    """

    def __init__(self):
        """Initialize the controller."""
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None

        # Component instances (initialized in start())
        self._presentation: AsyncioContext | None = None
        self._engine = None
        self._processor = None
        self._session: CaptureSession | None = None
        self._window = None
        self._sink = DisplaySink("composite")
        self._preview_sink = DisplaySink("preview")

        self._preview_interval = 0.0
        self._last_preview_time = 0.0
        self._quarter_turns = 1
        self._mirror = True

        logger.info("BlendCamController initialized")

    @property
    def sink(self) -> DisplaySink:
        return self._sink

    @property
    def preview_sink(self) -> DisplaySink:
        return self._preview_sink

    async def start(self) -> None:
        """Start BlendCam and run until asked to stop."""
        logger.info("=== Starting BlendCam ===")

        # The running loop is the presentation context
        self._loop = asyncio.get_running_loop()

        from blendcam.config import setup_logging

        setup_logging()

        self._init_components()
        self._setup_signal_handlers()

        try:
            self._session.configure()
        except DeviceUnavailable as e:
            logger.warning(f"{e} - continuing with the remaining camera")

        if self._session.state == SessionState.IDLE:
            logger.error("No cameras could be configured, shutting down")
            await self._shutdown()
            return

        self._session.start()
        self._running = True
        logger.info("System initialization complete")

        try:
            await self._presentation_loop()
        finally:
            await self._shutdown()

    def _init_components(self) -> None:
        """Create the engine, processor and capture session from config."""
        from blendcam.camera.backends import create_camera_backend
        from blendcam.config import camera_config, display_config, segmentation_config
        from blendcam.pipeline.frame_processor import FrameProcessor
        from blendcam.segmentation.engine import create_segmentation_engine

        self._presentation = AsyncioContext(self._loop)
        self._quarter_turns = display_config.quarter_turns
        self._mirror = display_config.mirror
        self._preview_interval = 1.0 / display_config.refresh_hz

        self._engine = create_segmentation_engine()
        self._processor = FrameProcessor(
            engine=self._engine,
            sink=self._sink,
            presentation=self._presentation,
            quarter_turns=display_config.quarter_turns,
            mirror=display_config.mirror,
            crop_to_extent=display_config.crop_to_extent,
            background=display_config.background_color,
            slow_warning_ms=segmentation_config.slow_warning_ms,
        )
        self._session = CaptureSession(
            backend=create_camera_backend(),
            processor=self._processor,
            process_position=camera_config.process_position,
            resolution=camera_config.resolution,
            framerate=camera_config.framerate,
        )

        preview_position = (
            CameraPosition.BACK
            if self._session.process_position == CameraPosition.FRONT
            else CameraPosition.FRONT
        )
        self._session.on_frame(preview_position, self._on_preview_frame)

        if display_config.window_enabled:
            from blendcam.display.preview_window import PreviewWindow

            self._window = PreviewWindow(title=display_config.window_title)
        else:
            logger.info("Preview window disabled, running headless")

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Signal {signum} received, initiating shutdown...")
            self._running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _on_preview_frame(self, frame: RawFrame) -> None:
        """Copy a preview frame and hand it to the presentation loop (capture thread)."""
        now = time.monotonic()
        if now - self._last_preview_time < self._preview_interval:
            return
        self._last_preview_time = now

        owned = frame.own_copy()
        image = DisplayImage(
            pixels=reorient(owned.pixels, self._quarter_turns, self._mirror),
            source_timestamp=owned.timestamp,
            source_sequence=owned.sequence,
            quarter_turns=self._quarter_turns,
            mirrored=self._mirror,
        )
        self._presentation.dispatch(partial(self._deliver_preview, image))

    def _deliver_preview(self, image: DisplayImage) -> None:
        """Publish a preview image (presentation loop). Skipped once capture has stopped."""
        if self._session is None or not self._session.is_running:
            return
        self._preview_sink.update(image)

    async def _presentation_loop(self) -> None:
        """Refresh the window from the sinks until stopped."""
        from blendcam.config import display_config

        interval = 1.0 / display_config.refresh_hz
        last_status = time.monotonic()

        while self._running:
            if self._window is not None:
                if not self._window.show(self._sink.current(), self._preview_sink.current()):
                    logger.info("Quit requested from preview window")
                    break

            if time.monotonic() - last_status >= STATUS_LOG_INTERVAL_SECONDS:
                last_status = time.monotonic()
                stats = self._processor.stats
                logger.info(
                    f"Pipeline: displayed={stats['displayed']}, "
                    f"dropped_busy={stats['dropped_busy']}, empty={stats['empty']}, "
                    f"failed={stats['failed']}, "
                    f"avg_segmentation={self._processor.average_segmentation_time:.1f}ms"
                )

            await asyncio.sleep(interval)

        self._running = False

    async def _shutdown(self) -> None:
        """Clean shutdown of all components."""
        logger.info("Initiating shutdown...")
        self._running = False

        # Stop capture first so nothing new reaches the processor
        if self._session:
            await asyncio.to_thread(self._session.close)

        if self._engine:
            self._engine.cleanup()

        if self._window:
            self._window.close()

        logger.info("Shutdown complete")

    def stop(self) -> None:
        """Request the presentation loop to exit."""
        self._running = False

    def get_status(self) -> dict:
        """Get full system status."""
        return {
            "running": self._running,
            "session": self._session.get_status() if self._session else None,
            "display": self._sink.get_status(),
            "preview": self._preview_sink.get_status(),
        }


# ==================== Entry Point ====================


async def app() -> None:
    """Main application entry point."""
    controller = BlendCamController()
    await controller.start()


def main() -> None:
    """CLI entry point."""
    print("=== BlendCam ===")
    print("Dual-camera subject segmentation")
    print()

    try:
        asyncio.run(app())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
