"""Tests for the bounded per-link history buffer."""

from __future__ import annotations

import numpy as np
import pytest

from history import HistoryBuffer
from pendulum import HISTORY_SAMPLES, HISTORY_SECONDS


def test_defaults():
    h = HistoryBuffer()
    assert h.capacity == HISTORY_SAMPLES
    assert h.window == HISTORY_SECONDS
    assert len(h) == 0


def test_sample_cap_evicts_oldest_first():
    h = HistoryBuffer(capacity=1024, window=60.0)
    for k in range(2000):
        h.push(k * 0.001, float(k))

    assert len(h) == 1024
    values = h.values
    np.testing.assert_array_equal(values, np.arange(976, 2000, dtype=float))
    times = h.times
    assert np.all(np.diff(times) > 0)
    assert times[-1] - times[0] <= 60.0


def test_time_window_evicts_old_samples():
    h = HistoryBuffer(capacity=100, window=60.0)
    h.push(0.0, 1.0)
    h.push(30.0, 2.0)
    h.push(60.0, 3.0)
    # a span of exactly the window is kept
    assert len(h) == 3

    h.push(61.0, 4.0)
    assert list(h) == [(30.0, 2.0), (60.0, 3.0), (61.0, 4.0)]


def test_large_time_jump_keeps_only_newest():
    h = HistoryBuffer(capacity=10, window=1.0)
    for k in range(5):
        h.push(k * 0.1, k)
    h.push(100.0, 42.0)
    assert list(h) == [(100.0, 42.0)]


def test_ring_wraps_many_times():
    h = HistoryBuffer(capacity=3, window=1e9)
    for k in range(50):
        h.push(float(k), float(k) * 2)
    assert list(h) == [(47.0, 94.0), (48.0, 96.0), (49.0, 98.0)]
    assert h.latest() == (49.0, 98.0)


def test_equal_timestamps_allowed():
    h = HistoryBuffer(capacity=5)
    h.push(1.0, 0.1)
    h.push(1.0, 0.2)
    assert len(h) == 2


def test_rejects_out_of_order_sample():
    h = HistoryBuffer()
    h.push(2.0, 0.0)
    with pytest.raises(ValueError):
        h.push(1.0, 0.0)
    assert len(h) == 1


def test_clear_then_reuse():
    h = HistoryBuffer(capacity=4)
    for k in range(7):
        h.push(float(k), float(k))
    h.clear()
    assert len(h) == 0
    assert h.samples().shape == (0, 2)

    # timestamps may restart after a reset
    h.push(0.0, 5.0)
    h.push(0.5, 6.0)
    assert list(h) == [(0.0, 5.0), (0.5, 6.0)]


def test_latest_on_empty_raises():
    with pytest.raises(IndexError):
        HistoryBuffer().latest()


@pytest.mark.parametrize("capacity, window", [(0, 1.0), (5, 0.0), (5, -1.0)])
def test_invalid_bounds(capacity, window):
    with pytest.raises(ValueError):
        HistoryBuffer(capacity=capacity, window=window)


@pytest.mark.parametrize("t", [float("nan"), float("inf"), float("-inf")])
def test_rejects_non_finite_timestamp(t):
    h = HistoryBuffer(capacity=10, window=60.0)
    h.push(0.0, 1.0)
    with pytest.raises(ValueError):
        h.push(t, 2.0)
    h.push(0.5, 3.0)

    assert list(h) == [(0.0, 1.0), (0.5, 3.0)]
    assert np.all(np.diff(h.times) >= 0)
