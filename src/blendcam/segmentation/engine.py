"""
Segmentation Engines

Stateless capability: given an RGB image, produce zero or more instance
masks. Engines raise SegmentationFailure when a frame cannot be segmented;
callers treat that and an empty result as "no subject detected".

- ForegroundSegmentationEngine: OpenCV Otsu threshold + connected components
- YoloSegmentationEngine: ultralytics instance segmentation (optional extra)
"""

import logging
from abc import ABC, abstractmethod

import cv2
import numpy as np

from blendcam.errors import SegmentationFailure

from .masks import InstanceMask

logger = logging.getLogger(__name__)

# Components covering more than this share of the frame are background
MAX_SUBJECT_COVERAGE = 0.9


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert an RGB/RGBA/gray image to single-channel uint8."""
    if image is None or image.ndim < 2 or image.size == 0:
        raise SegmentationFailure("Cannot segment an empty frame")

    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 2:
        return image
    channels = image.shape[2]
    if channels == 1:
        return image[:, :, 0]
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
    raise SegmentationFailure(f"Unsupported channel count: {channels}")


class SegmentationEngine(ABC):
    """Interface for subject segmentation."""

    name = "engine"

    @abstractmethod
    def segment(self, image: np.ndarray) -> list[InstanceMask]:
        """
        Segment the subjects in an image.

        Args:
            image: RGB image (H, W, 3), uint8. Not modified.

        Returns:
            Instance masks, each with the image's (H, W) shape

        Raises:
            SegmentationFailure: If the image cannot be segmented
        """

    def cleanup(self) -> None:
        """Release model resources."""


class ForegroundSegmentationEngine(SegmentationEngine):
    """
    Classical foreground extraction.

    Separates bright subjects from a darker background with Otsu's
    threshold, cleans the result morphologically and splits it into
    connected components. Each sufficiently large component is one instance.
    """

    name = "foreground"

    def __init__(
        self,
        min_instance_area: int = 500,
        max_instances: int = 8,
        kernel_size: int = 5,
    ):
        self.min_instance_area = min_instance_area
        self.max_instances = max_instances
        self._kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (kernel_size, kernel_size))
        self._blur_size = (kernel_size, kernel_size)

    def segment(self, image: np.ndarray) -> list[InstanceMask]:
        gray = to_grayscale(image)
        height, width = gray.shape
        total = height * width

        blurred = cv2.GaussianBlur(gray, self._blur_size, 0)
        _, binary = cv2.threshold(blurred, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        binary = cv2.morphologyEx(binary, cv2.MORPH_OPEN, self._kernel)

        count, labels, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=8)

        candidates = []
        for label in range(1, count):  # 0 is background
            area = int(stats[label, cv2.CC_STAT_AREA])
            if area < self.min_instance_area:
                continue
            if area > MAX_SUBJECT_COVERAGE * total:
                continue
            candidates.append((area, label))

        candidates.sort(reverse=True)
        masks = [
            InstanceMask(mask=labels == label, score=area / total)
            for area, label in candidates[: self.max_instances]
        ]
        logger.debug(f"Foreground segmentation: {count - 1} components, {len(masks)} instances")
        return masks


class YoloSegmentationEngine(SegmentationEngine):
    """
    YOLO instance segmentation through ultralytics.

    Requires the 'yolo' extra. By default only people (COCO class 0) are
    treated as subjects.
    """

    name = "yolo"

    def __init__(
        self,
        model_path: str = "yolov8n-seg.pt",
        confidence: float = 0.5,
        classes: list[int] | None = None,
        min_instance_area: int = 500,
        max_instances: int = 8,
    ):
        from ultralytics import YOLO

        self.model_path = model_path
        self.confidence = confidence
        self.classes = classes if classes is not None else [0]
        self.min_instance_area = min_instance_area
        self.max_instances = max_instances
        self._model = YOLO(model_path)
        logger.info(f"YOLO segmentation model loaded: {model_path}")

    def segment(self, image: np.ndarray) -> list[InstanceMask]:
        if image is None or image.ndim != 3 or image.size == 0:
            raise SegmentationFailure("YOLO engine needs a non-empty RGB frame")

        height, width = image.shape[:2]
        # ultralytics expects BGR arrays
        bgr = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
        try:
            results = self._model(bgr, conf=self.confidence, classes=self.classes, verbose=False)
        except Exception as e:
            raise SegmentationFailure(f"YOLO inference failed: {e}") from e

        result = results[0]
        if result.masks is None:
            return []

        data = result.masks.data.cpu().numpy()
        scores = result.boxes.conf.cpu().numpy()
        class_ids = result.boxes.cls.cpu().numpy().astype(int)

        masks = []
        for raw, score, class_id in zip(data, scores, class_ids):
            resized = cv2.resize(raw, (width, height), interpolation=cv2.INTER_NEAREST) > 0.5
            instance = InstanceMask(
                mask=resized,
                score=float(score),
                label=result.names.get(int(class_id), str(class_id)),
            )
            if instance.area >= self.min_instance_area:
                masks.append(instance)

        masks.sort(key=lambda m: m.score, reverse=True)
        return masks[: self.max_instances]

    def cleanup(self) -> None:
        self._model = None
        logger.info("YOLO segmentation model released")


# Factory function
def create_segmentation_engine() -> SegmentationEngine:
    """Create the segmentation engine from config."""
    from blendcam.config import segmentation_config

    if segmentation_config.engine == "yolo":
        return YoloSegmentationEngine(
            model_path=segmentation_config.model_path,
            confidence=segmentation_config.confidence,
            min_instance_area=segmentation_config.min_instance_area,
            max_instances=segmentation_config.max_instances,
        )
    return ForegroundSegmentationEngine(
        min_instance_area=segmentation_config.min_instance_area,
        max_instances=segmentation_config.max_instances,
    )
