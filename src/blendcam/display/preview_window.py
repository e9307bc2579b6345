"""
Preview Window

Minimal OpenCV renderer for the display sinks: the processed composite
fills the window and the back camera preview is inset in the top-right
corner. Must be driven from the presentation thread.
"""

import logging

import cv2
import numpy as np

from .sink import DisplayImage

logger = logging.getLogger(__name__)

QUIT_KEYS = (ord("q"), 27)  # q, Esc
INSET_MARGIN = 10


def _as_rgb(pixels: np.ndarray) -> np.ndarray:
    if pixels.ndim == 2:
        return cv2.cvtColor(pixels, cv2.COLOR_GRAY2RGB)
    if pixels.shape[2] == 4:
        return cv2.cvtColor(pixels, cv2.COLOR_RGBA2RGB)
    return pixels


class PreviewWindow:
    """Renders the current images into one OpenCV window."""

    def __init__(
        self,
        title: str = "BlendCam",
        inset_scale: float = 0.25,
        placeholder_size: tuple[int, int] = (480, 640),
    ):
        """
        Args:
            title: Window title
            inset_scale: Inset width as a fraction of the main image width
            placeholder_size: (width, height) shown before the first image
        """
        self.title = title
        self.inset_scale = inset_scale
        self.placeholder_size = placeholder_size
        self._opened = False

    def compose(self, main: DisplayImage | None, inset: DisplayImage | None = None) -> np.ndarray:
        """Build the RGB canvas for one refresh."""
        if main is not None:
            canvas = _as_rgb(main.pixels).copy()
        else:
            width, height = self.placeholder_size
            canvas = np.zeros((height, width, 3), dtype=np.uint8)

        if inset is None:
            return canvas

        canvas_h, canvas_w = canvas.shape[:2]
        inset_w = int(canvas_w * self.inset_scale)
        inset_h = int(inset_w * inset.height / max(1, inset.width))
        inset_w = min(inset_w, canvas_w - 2 * INSET_MARGIN)
        inset_h = min(inset_h, canvas_h - 2 * INSET_MARGIN)
        if inset_w <= 0 or inset_h <= 0:
            return canvas

        thumb = cv2.resize(_as_rgb(inset.pixels), (inset_w, inset_h), interpolation=cv2.INTER_AREA)
        x0 = canvas_w - inset_w - INSET_MARGIN
        y0 = INSET_MARGIN
        canvas[y0 : y0 + inset_h, x0 : x0 + inset_w] = thumb
        return canvas

    def show(self, main: DisplayImage | None, inset: DisplayImage | None = None) -> bool:
        """
        Render one refresh.

        Returns:
            False once the user asked to quit
        """
        canvas = self.compose(main, inset)
        cv2.imshow(self.title, cv2.cvtColor(canvas, cv2.COLOR_RGB2BGR))
        self._opened = True
        key = cv2.waitKey(1) & 0xFF
        return key not in QUIT_KEYS

    def close(self) -> None:
        if self._opened:
            cv2.destroyWindow(self.title)
            self._opened = False
            logger.info("Preview window closed")
