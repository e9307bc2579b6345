"""
Pipeline module for BlendCam.

Provides:
- CaptureSession: front + back camera lifecycle and frame routing
- FrameProcessor: single-in-flight segmentation, compositing and delivery
- Compositing helpers (union of masks, reorientation)
- Execution contexts for handing results to the presentation side
"""

from .compositor import MaskedImage, composite, reorient, to_display_image, union_masks
from .contexts import AsyncioContext, ExecutionContext, InlineContext, ThreadContext
from .frame_processor import FrameProcessor
from .session import CaptureSession, SessionState

__all__ = [
    "CaptureSession",
    "SessionState",
    "FrameProcessor",
    "MaskedImage",
    "composite",
    "reorient",
    "to_display_image",
    "union_masks",
    "ExecutionContext",
    "InlineContext",
    "ThreadContext",
    "AsyncioContext",
]
