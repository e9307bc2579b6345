"""
Tests for mask union, compositing and reorientation.
"""

import numpy as np
import pytest

from blendcam.errors import SegmentationFailure
from blendcam.pipeline.compositor import composite, reorient, to_display_image, union_masks
from blendcam.segmentation.masks import InstanceMask

from conftest import make_frame


def square_mask(shape, y0, y1, x0, x1):
    mask = np.zeros(shape, dtype=bool)
    mask[y0:y1, x0:x1] = True
    return InstanceMask(mask=mask)


class TestUnionMasks:
    """Tests for flattening instance masks."""

    def test_union_of_disjoint_masks(self):
        """Test union covers both instances."""
        a = square_mask((10, 10), 0, 2, 0, 2)
        b = square_mask((10, 10), 5, 7, 5, 7)
        union = union_masks([a, b], (10, 10))
        assert union.sum() == 8
        assert union[0, 0] and union[6, 6]

    def test_overlapping_masks_counted_once(self):
        """Test overlapping instances flatten into one region."""
        a = square_mask((10, 10), 0, 4, 0, 4)
        b = square_mask((10, 10), 2, 6, 2, 6)
        union = union_masks([a, b], (10, 10))
        assert union.sum() == 16 + 16 - 4

    def test_shape_mismatch_is_segmentation_failure(self):
        """Test a mask of the wrong size is rejected."""
        with pytest.raises(SegmentationFailure):
            union_masks([square_mask((5, 5), 0, 1, 0, 1)], (10, 10))


class TestComposite:
    """Tests for building masked images."""

    def test_pixels_restricted_to_masks(self):
        """Test only masked pixels survive."""
        frame = make_frame(1, width=20, height=10, value=150)
        masked = composite(frame, [square_mask((10, 20), 2, 5, 3, 8)])

        inside = masked.pixels[2:5, 3:8]
        assert np.all(inside == 150)
        assert masked.pixels.sum() == inside.sum()
        assert masked.extent == (3, 2, 8, 5)
        assert masked.instance_count == 1
        assert masked.source_sequence == 1

    def test_background_color(self):
        """Test the background fill color."""
        frame = make_frame(1, width=8, height=8, value=100)
        masked = composite(frame, [square_mask((8, 8), 0, 1, 0, 1)], background=(9, 8, 7))
        assert tuple(masked.pixels[7, 7]) == (9, 8, 7)

    def test_crop_to_extent(self):
        """Test cropping to the bounding box of the union."""
        frame = make_frame(1, width=20, height=10)
        masks = [square_mask((10, 20), 1, 3, 2, 4), square_mask((10, 20), 6, 8, 10, 15)]
        masked = composite(frame, masks, crop_to_extent=True)
        assert masked.pixels.shape == (7, 13, 3)

    def test_no_masks_keeps_full_frame(self):
        """Test an empty mask list yields a copy of the whole frame."""
        frame = make_frame(3, width=6, height=4, value=42)
        masked = composite(frame, [])
        assert masked.pixels.shape == frame.pixels.shape
        assert np.all(masked.pixels == 42)
        assert masked.pixels is not frame.pixels
        assert masked.instance_count == 0

    def test_source_frame_untouched(self):
        """Test compositing does not write into the frame buffer."""
        frame = make_frame(1, width=8, height=8, value=77)
        composite(frame, [square_mask((8, 8), 0, 2, 0, 2)])
        assert np.all(frame.pixels == 77)

    def test_grayscale_frame(self):
        """Test single-channel frames are supported."""
        frame = make_frame(1, width=8, height=8, value=50)
        frame.pixels = frame.pixels[:, :, 0].copy()
        masked = composite(frame, [square_mask((8, 8), 0, 2, 0, 2)], background=(5, 5, 5))
        assert masked.pixels.shape == (8, 8)
        assert masked.pixels[0, 0] == 50
        assert masked.pixels[7, 7] == 5


class TestReorient:
    """Tests for the fixed sensor-to-display rotation."""

    def test_quarter_turn_swaps_dimensions(self):
        """Test W x H becomes H x W."""
        image = np.zeros((4, 6, 3), dtype=np.uint8)
        assert reorient(image, 1).shape == (6, 4, 3)

    def test_quarter_turn_is_clockwise(self):
        """Test the top-left pixel moves to the top-right."""
        image = np.arange(6, dtype=np.uint8).reshape(2, 3)
        rotated = reorient(image, 1)
        assert rotated[0, -1] == image[0, 0]
        assert rotated[-1, -1] == image[0, -1]

    def test_four_turns_restore_original(self):
        """Test applying the rotation four times is the identity."""
        image = np.random.randint(0, 255, (5, 7, 3), dtype=np.uint8)
        result = image
        for _ in range(4):
            result = reorient(result, 1)
        assert result.shape == image.shape
        assert np.array_equal(result, image)

    def test_mirror(self):
        """Test horizontal mirroring."""
        image = np.arange(6, dtype=np.uint8).reshape(2, 3)
        assert np.array_equal(reorient(image, 0, mirror=True), image[:, ::-1])

    def test_result_is_contiguous(self):
        """Test the output is a standalone contiguous array."""
        image = np.zeros((4, 6, 3), dtype=np.uint8)
        assert reorient(image, 1).flags["C_CONTIGUOUS"]

    def test_display_image_metadata(self):
        """Test to_display_image carries source info."""
        frame = make_frame(9, width=6, height=4)
        masked = composite(frame, [square_mask((4, 6), 0, 2, 0, 2)])
        image = to_display_image(masked, quarter_turns=5, mirror=True)
        assert (image.width, image.height) == (4, 6)
        assert image.source_sequence == 9
        assert image.quarter_turns == 1
        assert image.mirrored is True
