"""Tests for segment detector module."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from gensrt_app.buffer import CircularBuffer
from gensrt_app.detector import SegmentDetector
from gensrt_app.pipeline import CancellationToken, JobCancelledError


class FakeVad:
    """In-memory VAD: every window whose peak exceeds 0.5 becomes a region."""

    def __init__(self):
        self.windows = []
        self.queue = []
        self.flushed = 0
        self._offset = 0

    def accept_waveform(self, samples):
        self.windows.append(np.array(samples))
        if np.max(np.abs(samples)) > 0.5:
            self.queue.append(SimpleNamespace(start=self._offset, samples=list(samples)))
        self._offset += len(samples)

    def flush(self):
        self.flushed += 1

    def empty(self):
        return not self.queue

    @property
    def front(self):
        return self.queue[0]

    def pop(self):
        self.queue.pop(0)


@pytest.fixture
def vad():
    return FakeVad()


class TestSegmentDetectorFeed:
    """Tests for windowed feeding."""

    def test_feed_whole_windows_only(self, vad):
        """Test only whole windows are fed; the remainder stays buffered."""
        detector = SegmentDetector(vad, window_size=4)
        buf = CircularBuffer(16)
        buf.push(np.zeros(10, dtype=np.float32))

        fed = detector.feed(buf)

        assert fed == 2
        assert buf.size == 2
        assert buf.head == 8
        assert all(len(w) == 4 for w in vad.windows)

    def test_push_samples_larger_than_buffer(self, vad):
        """Test a chunk larger than the buffer is sliced without overflow."""
        detector = SegmentDetector(vad, window_size=4)
        buf = CircularBuffer(8)
        samples = np.arange(30, dtype=np.float32) / 100

        detector.push_samples(buf, samples)

        assert detector.windows_fed == 7
        assert buf.size == 2
        np.testing.assert_allclose(np.concatenate(vad.windows), samples[:28])

    def test_push_samples_preserves_order_across_chunks(self, vad):
        """Test windows span chunk boundaries in receipt order."""
        detector = SegmentDetector(vad, window_size=4)
        buf = CircularBuffer(8)
        detector.push_samples(buf, np.array([1, 2, 3], dtype=np.float32))
        detector.push_samples(buf, np.array([4, 5], dtype=np.float32))

        assert len(vad.windows) == 1
        np.testing.assert_array_equal(vad.windows[0], [1, 2, 3, 4])

    def test_capacity_smaller_than_window(self, vad):
        """Test a buffer that cannot hold one window is rejected."""
        detector = SegmentDetector(vad, window_size=8)
        with pytest.raises(ValueError, match="smaller than window"):
            detector.push_samples(CircularBuffer(4), np.zeros(4, dtype=np.float32))

    def test_cancellation_checked_per_window(self, vad):
        """Test a cancelled token stops feeding before the next window."""
        detector = SegmentDetector(vad, window_size=4)
        buf = CircularBuffer(16)
        buf.push(np.zeros(12, dtype=np.float32))
        token = CancellationToken()
        token.cancel()

        with pytest.raises(JobCancelledError):
            detector.feed(buf, token)
        assert vad.windows == []

    def test_invalid_window_size(self, vad):
        with pytest.raises(ValueError):
            SegmentDetector(vad, window_size=0)


class TestSegmentDetectorDrain:
    """Tests for flush and drain."""

    def test_drain_in_detection_order(self, vad):
        """Test regions come out FIFO with their start sample."""
        detector = SegmentDetector(vad, window_size=4)
        buf = CircularBuffer(16)
        samples = np.zeros(12, dtype=np.float32)
        samples[0:4] = 0.9
        samples[8:12] = 0.8
        detector.push_samples(buf, samples)

        regions = list(detector.drain())

        assert [r.start_sample for r in regions] == [0, 8]
        assert regions[0].samples.dtype == np.float32
        assert vad.empty()

    def test_flush_once(self, vad):
        """Test flush reaches the engine only once."""
        detector = SegmentDetector(vad)
        detector.flush()
        detector.flush()
        assert vad.flushed == 1

    def test_dispose(self):
        """Test dispose drops the engine."""
        detector = SegmentDetector(MagicMock())
        detector.dispose()
        assert detector._engine is None
