"""Fixed-capacity ring of decoded audio samples."""

import logging

import numpy as np

logger = logging.getLogger(__name__)


class BufferOverflowError(Exception):
    """Push would exceed the buffer's fixed capacity."""

    pass


class CircularBuffer:
    """Fixed-capacity ring of float32 samples.

    ``head`` is the logical index of the oldest un-popped sample and only ever
    increases. ``get`` addresses samples by that logical index, so callers that
    window the stream pass ``buffer.head`` as the offset.

    Single writer and single reader in one execution context; no locking.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._data = np.zeros(capacity, dtype=np.float32)
        self._capacity = capacity
        self._head = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._size

    @property
    def head(self) -> int:
        return self._head

    @property
    def free(self) -> int:
        return self._capacity - self._size

    def push(self, samples: np.ndarray) -> None:
        """Append samples at the logical tail.

        Raises:
            BufferOverflowError: If the samples do not fit in the free space
        """
        samples = np.asarray(samples, dtype=np.float32)
        count = len(samples)
        if count == 0:
            return
        if count > self.free:
            raise BufferOverflowError(
                f"Cannot push {count} samples: {self.free} of {self._capacity} free"
            )

        start = (self._head + self._size) % self._capacity
        first = min(count, self._capacity - start)
        self._data[start:start + first] = samples[:first]
        if first < count:
            self._data[:count - first] = samples[first:]
        self._size += count

    def get(self, offset: int, length: int) -> np.ndarray:
        """Return a copy of ``length`` samples starting at logical ``offset``.

        Never mutates buffer state.

        Raises:
            ValueError: If the range is not fully held by the buffer
        """
        if length < 0:
            raise ValueError("length must be non-negative")
        if offset < self._head or offset + length > self._head + self._size:
            raise ValueError(
                f"Range [{offset}, {offset + length}) outside buffered "
                f"[{self._head}, {self._head + self._size})"
            )

        start = offset % self._capacity
        first = min(length, self._capacity - start)
        if first == length:
            return self._data[start:start + length].copy()
        return np.concatenate((self._data[start:], self._data[:length - first]))

    def pop(self, n: int) -> None:
        """Remove ``n`` samples from the front, advancing ``head``.

        Raises:
            ValueError: If ``n`` is negative or larger than ``size``
        """
        if n < 0:
            raise ValueError("n must be non-negative")
        if n > self._size:
            raise ValueError(f"Cannot pop {n} samples, only {self._size} buffered")
        self._head += n
        self._size -= n

    def dispose(self) -> None:
        """Release sample storage."""
        self._data = np.zeros(0, dtype=np.float32)
        self._capacity = 0
        self._size = 0
        logger.debug("Circular buffer disposed (head=%d)", self._head)
