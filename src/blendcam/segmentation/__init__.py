"""
Segmentation module for BlendCam.

Provides:
- SegmentationEngine: interface for "image -> instance masks"
- ForegroundSegmentationEngine / YoloSegmentationEngine implementations
- InstanceMask: per-subject mask data structure
"""

from .engine import (
    ForegroundSegmentationEngine,
    SegmentationEngine,
    YoloSegmentationEngine,
    create_segmentation_engine,
)
from .masks import InstanceMask, mask_extent

__all__ = [
    "SegmentationEngine",
    "ForegroundSegmentationEngine",
    "YoloSegmentationEngine",
    "create_segmentation_engine",
    "InstanceMask",
    "mask_extent",
]
