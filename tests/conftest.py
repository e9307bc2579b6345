"""
Pytest configuration and shared fixtures for BlendCam tests.
"""

import sys
import threading
import time
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from blendcam.camera.backends import SyntheticCameraBackend
from blendcam.camera.frames import CameraPosition, RawFrame
from blendcam.display.sink import DisplaySink
from blendcam.errors import SegmentationFailure
from blendcam.pipeline.frame_processor import FrameProcessor
from blendcam.segmentation.engine import SegmentationEngine
from blendcam.segmentation.masks import InstanceMask


class ScriptedEngine(SegmentationEngine):
    """
    Test engine returning a fixed square mask.

    Can be told to fail, return nothing, or block until released.
    """

    name = "scripted"

    def __init__(self, mode: str = "square", block: bool = False):
        self.mode = mode
        self.calls = 0
        self.seen_sequences: list[int] = []
        self.started = threading.Event()
        self.release = threading.Event()
        if not block:
            self.release.set()
        self.seen_pixels: list[np.ndarray] = []

    def segment(self, image: np.ndarray) -> list[InstanceMask]:
        self.calls += 1
        self.seen_pixels.append(image)
        self.started.set()
        self.release.wait(timeout=5.0)

        if self.mode == "fail":
            raise SegmentationFailure("scripted failure")
        if self.mode == "empty":
            return []
        if self.mode == "crash":
            raise ValueError("unexpected engine bug")

        mask = np.zeros(image.shape[:2], dtype=bool)
        h, w = mask.shape
        mask[h // 4 : h // 2, w // 4 : w // 2] = True
        return [InstanceMask(mask=mask)]


def make_frame(
    sequence: int = 1,
    width: int = 64,
    height: int = 48,
    value: int | None = None,
    position: CameraPosition = CameraPosition.FRONT,
) -> RawFrame:
    """Build a RawFrame whose pixels encode its sequence number."""
    fill = sequence % 256 if value is None else value
    pixels = np.full((height, width, 3), fill, dtype=np.uint8)
    return RawFrame(
        pixels=pixels,
        timestamp=time.monotonic(),
        sequence=sequence,
        position=position,
    )


@pytest.fixture
def sink():
    """An empty display sink."""
    return DisplaySink("test")


@pytest.fixture
def engine():
    """A scripted engine that answers immediately with one mask."""
    return ScriptedEngine()


@pytest.fixture
def blocking_engine():
    """A scripted engine that waits for engine.release before answering."""
    engine = ScriptedEngine(block=True)
    yield engine
    engine.release.set()


@pytest.fixture
def processor(engine, sink):
    """An active processor with inline delivery."""
    proc = FrameProcessor(engine=engine, sink=sink)
    proc.activate()
    yield proc
    proc.close(wait=True)


@pytest.fixture
def synthetic_backend():
    """Synthetic backend with both cameras available."""
    return SyntheticCameraBackend()


@pytest.fixture
def sample_frame():
    """A sample 64x48 RGB frame."""
    return make_frame()


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll predicate until it returns True or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
