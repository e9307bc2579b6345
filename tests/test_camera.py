"""
Tests for camera frames, backends and CameraSource (no hardware needed).
"""

import threading
import time
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from blendcam.camera.backends import (
    OpenCVCameraBackend,
    SyntheticCameraBackend,
    SyntheticFrameGrabber,
)
from blendcam.camera.camera_source import CameraSource
from blendcam.camera.frames import CameraDescriptor, CameraPosition, RawFrame
from blendcam.errors import CameraOpenError

from conftest import make_frame, wait_for


class TestFrames:
    """Tests for frame data structures."""

    def test_position_parse(self):
        """Test config strings map to positions."""
        assert CameraPosition.parse("FRONT") is CameraPosition.FRONT
        assert CameraPosition.parse("back") is CameraPosition.BACK
        assert CameraPosition.parse(CameraPosition.BACK) is CameraPosition.BACK
        with pytest.raises(ValueError):
            CameraPosition.parse("side")

    def test_descriptor_immutable(self):
        """Test descriptors cannot be modified."""
        descriptor = CameraDescriptor(CameraPosition.FRONT, 1, "video1")
        with pytest.raises(AttributeError):
            descriptor.device_id = 2
        assert str(descriptor) == "front:video1"

    def test_own_copy_detaches_buffer(self):
        """Test own_copy() does not alias the capture buffer."""
        frame = make_frame(4, value=10)
        owned = frame.own_copy()
        frame.pixels[:] = 200
        assert np.all(owned.pixels == 10)
        assert owned.sequence == 4
        assert owned.position == frame.position

    def test_dimensions_and_empty(self):
        """Test width/height and the empty check."""
        frame = make_frame(1, width=30, height=20)
        assert (frame.width, frame.height) == (30, 20)
        assert not frame.is_empty

        empty = RawFrame(np.zeros((0, 0, 3), np.uint8), 0.0, 1, CameraPosition.FRONT)
        assert empty.is_empty


class TestSyntheticBackend:
    """Tests for the generated-frame backend."""

    def test_enumerate_available(self, synthetic_backend):
        """Test both positions resolve by default."""
        front = synthetic_backend.enumerate(CameraPosition.FRONT)
        assert front is not None
        assert front.position is CameraPosition.FRONT
        assert synthetic_backend.is_available(front)

    def test_enumerate_unavailable(self):
        """Test a missing camera resolves to None."""
        backend = SyntheticCameraBackend(available=(CameraPosition.BACK,))
        assert backend.enumerate(CameraPosition.FRONT) is None
        descriptor = CameraDescriptor(CameraPosition.FRONT, "synthetic-front")
        assert backend.is_available(descriptor) is False
        with pytest.raises(CameraOpenError):
            backend.open(descriptor, (64, 48), 30)

    def test_grabber_recycles_buffer(self):
        """Test consecutive reads reuse the same buffer."""
        grabber = SyntheticFrameGrabber((64, 48))
        first = grabber.read()
        second = grabber.read()
        assert first is second
        assert first.shape == (48, 64, 3)

    def test_grabber_subject_moves(self):
        """Test the generated subject changes position between frames."""
        grabber = SyntheticFrameGrabber((160, 120))
        first = grabber.read().copy()
        second = grabber.read().copy()
        assert not np.array_equal(first, second)

    def test_grabber_without_subject(self):
        """Test frames without a subject are plain background."""
        grabber = SyntheticFrameGrabber((64, 48), subject=False)
        assert grabber.read().max() <= 50

    def test_released_grabber_returns_none(self):
        """Test read after release."""
        grabber = SyntheticFrameGrabber((64, 48))
        grabber.release()
        assert grabber.read() is None


class TestOpenCVBackend:
    """Tests for OpenCVCameraBackend with cv2.VideoCapture mocked."""

    def test_unmapped_position(self):
        """Test a position without a device index is unavailable."""
        backend = OpenCVCameraBackend(device_indices={CameraPosition.BACK: 0})
        assert backend.enumerate(CameraPosition.FRONT) is None

    def test_enumerate_probes_device(self):
        """Test enumerate returns a descriptor when the device opens."""
        capture = MagicMock()
        capture.isOpened.return_value = True
        with patch("blendcam.camera.backends.cv2.VideoCapture", return_value=capture):
            backend = OpenCVCameraBackend(device_indices={CameraPosition.FRONT: 3})
            descriptor = backend.enumerate(CameraPosition.FRONT)
        assert descriptor == CameraDescriptor(CameraPosition.FRONT, 3, "video3")
        capture.release.assert_called()

    def test_enumerate_missing_device(self):
        """Test enumerate returns None when the device does not open."""
        capture = MagicMock()
        capture.isOpened.return_value = False
        with patch("blendcam.camera.backends.cv2.VideoCapture", return_value=capture):
            backend = OpenCVCameraBackend(device_indices={CameraPosition.FRONT: 3})
            assert backend.enumerate(CameraPosition.FRONT) is None

    def test_open_retries_then_fails(self):
        """Test open is retried and finally raises CameraOpenError."""
        capture = MagicMock()
        capture.isOpened.return_value = False
        with patch("blendcam.camera.backends.cv2.VideoCapture", return_value=capture) as ctor:
            backend = OpenCVCameraBackend(
                device_indices={CameraPosition.FRONT: 1}, open_attempts=3, retry_delay=0
            )
            with pytest.raises(CameraOpenError):
                backend.open(CameraDescriptor(CameraPosition.FRONT, 1), (640, 480), 30)
        assert ctor.call_count == 3

    def test_grabber_converts_to_rgb(self):
        """Test frames are converted from BGR to RGB."""
        bgr = np.zeros((4, 4, 3), dtype=np.uint8)
        bgr[:, :, 0] = 255  # blue in BGR
        capture = MagicMock()
        capture.isOpened.return_value = True
        capture.read.return_value = (True, bgr)
        capture.get.return_value = 30
        with patch("blendcam.camera.backends.cv2.VideoCapture", return_value=capture):
            backend = OpenCVCameraBackend(device_indices={CameraPosition.FRONT: 1})
            grabber = backend.open(CameraDescriptor(CameraPosition.FRONT, 1), (4, 4), 30)
        rgb = grabber.read()
        assert rgb[0, 0, 2] == 255 and rgb[0, 0, 0] == 0

        capture.read.return_value = (False, None)
        assert grabber.read() is None


class SlowOpenBackend(SyntheticCameraBackend):
    """Synthetic backend whose devices take a while to open."""

    def open(self, descriptor, resolution, framerate):
        time.sleep(0.5)
        return super().open(descriptor, resolution, framerate)


class FailingBackend(SyntheticCameraBackend):
    """Synthetic backend whose devices never open."""

    def open(self, descriptor, resolution, framerate):
        raise CameraOpenError("device busy")


class GatedOpenBackend(SyntheticCameraBackend):
    """Synthetic backend whose first open blocks until the gate is set."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()
        self.grabbers = []
        self._first = True

    def open(self, descriptor, resolution, framerate):
        if self._first:
            self._first = False
            self.gate.wait(5.0)
        grabber = super().open(descriptor, resolution, framerate)
        self.grabbers.append(grabber)
        return grabber


class TestCameraSource:
    """Tests for the push-based capture thread."""

    def _descriptor(self, backend):
        return backend.enumerate(CameraPosition.FRONT)

    def test_frames_delivered_in_order(self, synthetic_backend):
        """Test sequence numbers and timestamps increase."""
        frames = []
        source = CameraSource(self._descriptor(synthetic_backend), synthetic_backend, (64, 48), 100)
        source.start(lambda f: frames.append((f.sequence, f.timestamp, f.position)))
        try:
            assert wait_for(lambda: len(frames) >= 5)
        finally:
            source.stop()

        sequences = [f[0] for f in frames]
        timestamps = [f[1] for f in frames]
        assert sequences == list(range(1, len(frames) + 1))
        assert timestamps == sorted(timestamps)
        assert all(f[2] is CameraPosition.FRONT for f in frames)

    def test_no_frames_after_stop(self, synthetic_backend):
        """Test delivery ends when stop() returns."""
        count = 0

        def on_frame(frame):
            nonlocal count
            count += 1

        source = CameraSource(self._descriptor(synthetic_backend), synthetic_backend, (64, 48), 100)
        source.start(on_frame)
        assert wait_for(lambda: count >= 2)
        source.stop()

        stopped_at = count
        time.sleep(0.1)
        assert count == stopped_at
        assert source.is_running is False

    def test_start_does_not_block_on_device_open(self):
        """Test start() returns before the device has opened."""
        backend = SlowOpenBackend()
        opened = threading.Event()
        source = CameraSource(self._descriptor(backend), backend, (64, 48), 30)

        started = time.perf_counter()
        source.start(lambda f: opened.set())
        elapsed = time.perf_counter() - started
        try:
            assert elapsed < 0.3
            assert opened.wait(3.0)
        finally:
            source.stop()

    def test_open_failure_is_reported_not_raised(self):
        """Test a device that cannot open marks the source failed."""
        backend = FailingBackend()
        source = CameraSource(self._descriptor(backend), backend, (64, 48), 30)
        source.start(lambda f: None)
        try:
            assert wait_for(lambda: source.get_status()["open_failed"])
        finally:
            source.stop()

    def test_callback_error_does_not_stop_capture(self, synthetic_backend):
        """Test exceptions in the callback are logged and capture continues."""
        calls = 0

        def on_frame(frame):
            nonlocal calls
            calls += 1
            raise RuntimeError("consumer bug")

        source = CameraSource(self._descriptor(synthetic_backend), synthetic_backend, (64, 48), 100)
        source.start(on_frame)
        try:
            assert wait_for(lambda: calls >= 3)
        finally:
            source.stop()

    def test_restart(self, synthetic_backend):
        """Test a stopped source can be started again."""
        frames = []
        source = CameraSource(self._descriptor(synthetic_backend), synthetic_backend, (64, 48), 100)
        source.start(lambda f: frames.append(f.sequence))
        assert wait_for(lambda: len(frames) >= 1)
        source.stop()

        before = len(frames)
        source.start(lambda f: frames.append(f.sequence))
        try:
            assert wait_for(lambda: len(frames) > before)
        finally:
            source.stop()
        assert synthetic_backend.open_count == 2

    def test_restart_after_stop_timeout_keeps_one_stream(self):
        """Test a capture thread that outlived stop() never delivers frames."""
        backend = GatedOpenBackend()
        threads = []
        sequences = []

        def on_frame(frame):
            threads.append(threading.get_ident())
            sequences.append(frame.sequence)

        source = CameraSource(self._descriptor(backend), backend, (64, 48), 100)
        source.start(on_frame)
        source.stop(timeout=0.05)

        source.start(on_frame)
        try:
            assert wait_for(lambda: len(sequences) >= 3)
            backend.gate.set()
            assert wait_for(lambda: len(backend.grabbers) == 2)
            # The late open belongs to the stopped run and is released
            assert wait_for(lambda: backend.grabbers[1].read() is None)
            count = len(sequences)
            assert wait_for(lambda: len(sequences) >= count + 3)
        finally:
            source.stop()

        assert len(set(threads)) == 1
        assert sequences == sorted(sequences)
        assert len(sequences) == len(set(sequences))
