"""
Display module for BlendCam.

Provides:
- DisplaySink: single-slot holder of the current processed image
- DisplayImage: reoriented image ready for presentation
- PreviewWindow: OpenCV window rendering the sinks
"""

from .preview_window import PreviewWindow
from .sink import DisplayImage, DisplaySink

__all__ = [
    "DisplaySink",
    "DisplayImage",
    "PreviewWindow",
]
