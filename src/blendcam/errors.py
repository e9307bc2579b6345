"""
Error taxonomy for the capture and processing pipeline.

Configuration errors surface to the caller of CaptureSession.configure().
Per-frame errors (SegmentationFailure, EmptyResult, SessionNotRunning) are
absorbed by the pipeline and never interrupt capture.
"""

from typing import Iterable


class BlendCamError(Exception):
    """Base class for all BlendCam errors."""


class SessionError(BlendCamError):
    """Invalid use of the capture session lifecycle."""


class DeviceUnavailable(SessionError):
    """A requested camera could not be resolved at configuration time."""

    def __init__(self, position, positions: Iterable | None = None):
        self.position = position
        self.positions = list(positions) if positions is not None else [position]
        names = ", ".join(getattr(p, "value", str(p)) for p in self.positions)
        super().__init__(f"Camera unavailable: {names}")


class SessionNotRunning(SessionError):
    """A frame or delivery arrived after the session stopped."""


class SegmentationFailure(BlendCamError):
    """The segmentation engine could not produce masks for a frame."""


class EmptyResult(SegmentationFailure):
    """Segmentation succeeded but found no subject."""


class CameraOpenError(BlendCamError):
    """A camera backend failed to open a device."""
