"""
Compositing and reorientation.

Flattens a frame's instance masks into one union, keeps only the pixels
under it, and applies the fixed sensor-to-display rotation.
"""

from dataclasses import dataclass

import numpy as np

from blendcam.camera.frames import RawFrame
from blendcam.display.sink import DisplayImage
from blendcam.errors import SegmentationFailure
from blendcam.segmentation.masks import InstanceMask, mask_extent


@dataclass
class MaskedImage:
    """Frame pixels restricted to the union of its instance masks."""

    pixels: np.ndarray
    extent: tuple[int, int, int, int] | None
    instance_count: int
    source_timestamp: float
    source_sequence: int


def union_masks(masks: list[InstanceMask], shape: tuple[int, int]) -> np.ndarray:
    """
    Combine instance masks into one boolean mask.

    Raises:
        SegmentationFailure: If a mask does not match the frame size
    """
    union = np.zeros(shape, dtype=bool)
    for instance in masks:
        if instance.shape != shape:
            raise SegmentationFailure(
                f"Mask shape {instance.shape} does not match frame {shape}"
            )
        np.logical_or(union, instance.mask, out=union)
    return union


def composite(
    frame: RawFrame,
    masks: list[InstanceMask],
    crop_to_extent: bool = False,
    background: tuple[int, ...] = (0, 0, 0),
) -> MaskedImage:
    """
    Build the masked image for a frame.

    Pixels outside the union of masks are filled with the background color.
    With no masks the whole frame is kept.

    Args:
        frame: Source frame (its pixels are not modified)
        masks: Instance masks for this frame
        crop_to_extent: Crop the result to the bounding box of the union
        background: Fill color for pixels outside the masks
    """
    pixels = frame.pixels
    height, width = pixels.shape[:2]

    if not masks:
        return MaskedImage(
            pixels=pixels.copy(),
            extent=(0, 0, width, height),
            instance_count=0,
            source_timestamp=frame.timestamp,
            source_sequence=frame.sequence,
        )

    union = union_masks(masks, (height, width))
    out = np.empty_like(pixels)
    if pixels.ndim == 3:
        channels = pixels.shape[2]
        fill = (list(background) + [255] * channels)[:channels]
        out[:] = np.asarray(fill, dtype=pixels.dtype)
    else:
        out[:] = background[0]
    out[union] = pixels[union]

    extent = mask_extent(union)
    if crop_to_extent and extent is not None:
        x0, y0, x1, y1 = extent
        out = out[y0:y1, x0:x1].copy()

    return MaskedImage(
        pixels=out,
        extent=extent,
        instance_count=len(masks),
        source_timestamp=frame.timestamp,
        source_sequence=frame.sequence,
    )


def reorient(pixels: np.ndarray, quarter_turns: int = 1, mirror: bool = False) -> np.ndarray:
    """
    Rotate clockwise by quarter_turns * 90 degrees, then optionally mirror.

    A W x H image comes back H x W for odd quarter turns.
    """
    rotated = np.rot90(pixels, k=-(quarter_turns % 4), axes=(0, 1))
    if mirror:
        rotated = rotated[:, ::-1]
    return np.ascontiguousarray(rotated)


def to_display_image(
    masked: MaskedImage,
    quarter_turns: int = 1,
    mirror: bool = False,
) -> DisplayImage:
    """Reorient a masked image into a DisplayImage."""
    return DisplayImage(
        pixels=reorient(masked.pixels, quarter_turns, mirror),
        source_timestamp=masked.source_timestamp,
        source_sequence=masked.source_sequence,
        instance_count=masked.instance_count,
        quarter_turns=quarter_turns % 4,
        mirrored=mirror,
    )
