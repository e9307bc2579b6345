"""
Camera module for BlendCam.

Provides:
- CameraSource: push-based capture thread for one physical camera
- CameraBackend implementations: OpenCV devices and synthetic frames
- Frame data structures (CameraPosition, CameraDescriptor, RawFrame)
"""

from .backends import (
    CameraBackend,
    FrameGrabber,
    OpenCVCameraBackend,
    SyntheticCameraBackend,
    create_camera_backend,
)
from .camera_source import CameraSource
from .frames import CameraDescriptor, CameraPosition, RawFrame

__all__ = [
    "CameraBackend",
    "FrameGrabber",
    "OpenCVCameraBackend",
    "SyntheticCameraBackend",
    "create_camera_backend",
    "CameraSource",
    "CameraDescriptor",
    "CameraPosition",
    "RawFrame",
]
