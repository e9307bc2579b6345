"""
BlendCam - Dual-camera real-time subject segmentation pipeline

Captures front and back cameras together, segments the subject in the
front stream, composites the masked result and publishes it for display.
"""

__version__ = "1.0.0"
__author__ = "BlendCam Team"
