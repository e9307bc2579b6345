"""
Instance mask data structures.
"""

from dataclasses import dataclass

import numpy as np


@dataclass
class InstanceMask:
    """One detected subject within a single frame."""

    mask: np.ndarray  # bool (H, W)
    score: float = 1.0
    label: str = "subject"

    def __post_init__(self):
        if self.mask.dtype != np.bool_:
            self.mask = self.mask > 0

    @property
    def shape(self) -> tuple[int, int]:
        return self.mask.shape[:2]

    @property
    def area(self) -> int:
        """Number of pixels covered by the mask."""
        return int(np.count_nonzero(self.mask))

    @property
    def is_empty(self) -> bool:
        return self.area == 0

    @property
    def extent(self) -> tuple[int, int, int, int] | None:
        """
        Bounding box of the mask as (x0, y0, x1, y1), end-exclusive.

        Returns None for an empty mask.
        """
        return mask_extent(self.mask)


def mask_extent(mask: np.ndarray) -> tuple[int, int, int, int] | None:
    """Bounding box (x0, y0, x1, y1) of the set pixels, end-exclusive."""
    rows = np.flatnonzero(mask.any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(mask.any(axis=0))
    return int(cols[0]), int(rows[0]), int(cols[-1]) + 1, int(rows[-1]) + 1
