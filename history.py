"""
Bounded per-link sample history, read by plotting code.
"""

from __future__ import annotations

import math
from typing import Iterator, Tuple

import numpy as np

from pendulum import HISTORY_SAMPLES, HISTORY_SECONDS


class HistoryBuffer:
    """
    Time-ordered ``(t, value)`` samples in a preallocated ring buffer.

    After every push the oldest samples are dropped while the buffer holds
    more than ``capacity`` samples or spans more than ``window`` seconds.
    """

    def __init__(self, capacity: int = HISTORY_SAMPLES, window: float = HISTORY_SECONDS):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if not window > 0:
            raise ValueError(f"window must be positive, got {window}")
        self.capacity = int(capacity)
        self.window = float(window)
        # one spare slot: a push lands before eviction runs
        self._data = np.zeros((self.capacity + 1, 2))
        self._start = 0
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[Tuple[float, float]]:
        for t, v in self.samples():
            yield float(t), float(v)

    def _slot(self, i: int) -> int:
        return (self._start + i) % len(self._data)

    def push(self, t: float, value: float) -> None:
        """Append a sample; *t* must be finite and not earlier than the newest sample."""
        if not math.isfinite(t):
            raise ValueError(f"Sample timestamp must be finite, got {t}")
        if self._size and t < self._data[self._slot(self._size - 1), 0]:
            raise ValueError(f"Sample at t={t} is older than the newest sample")
        self._data[self._slot(self._size)] = (t, value)
        self._size += 1

        while self._size:
            oldest = self._data[self._start, 0]
            if t - oldest > self.window or self._size > self.capacity:
                self._start = self._slot(1)
                self._size -= 1
            else:
                break

    def clear(self) -> None:
        self._start = 0
        self._size = 0

    def samples(self) -> np.ndarray:
        """Copy of the stored samples, oldest first, shape (len, 2)."""
        idx = (self._start + np.arange(self._size)) % len(self._data)
        return self._data[idx]

    @property
    def times(self) -> np.ndarray:
        return self.samples()[:, 0]

    @property
    def values(self) -> np.ndarray:
        return self.samples()[:, 1]

    def latest(self) -> Tuple[float, float]:
        if not self._size:
            raise IndexError("History is empty")
        t, v = self._data[self._slot(self._size - 1)]
        return float(t), float(v)
