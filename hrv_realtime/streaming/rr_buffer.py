# Keeps the most recent accepted beat intervals of one device session
"""
In-memory interval ring buffer for real-time HRV analysis.

Responsibilities:
    - Store the last `capacity` accepted beat intervals of one session.
    - Report readiness once enough samples have accumulated for spectral work.
    - Hand out read-only, chronologically ordered snapshots to the metric code.

Configuration:
    - capacity and readiness threshold come from settings.hrv
      (buffer_capacity, min_ready_samples)

The buffer is owned by a single HRVAnalysisService, which serializes all
access to it; the buffer itself does no locking.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Tuple

import numpy as np

from hrv_realtime.config.settings import settings


@dataclass(frozen=True)
class IntervalSample:
    """
    Single beat interval as reported by the upstream beat detector.

    Attributes:
        ts:
            Epoch timestamp in seconds (float, time.time()) of the beat.
        rr_ms:
            Beat-to-beat interval in milliseconds.
        sensor_contacted:
            Whether the sensor reported skin contact for this beat.
        quality_score:
            Signal quality index in [0, 100].
    """
    ts: float
    rr_ms: float
    sensor_contacted: bool = True
    quality_score: float = 100.0


class IntervalRingBuffer:
    """
    Fixed-capacity, time-ordered rolling window of accepted intervals.

    Appending to a full buffer evicts the oldest sample (deque with maxlen),
    so length never exceeds capacity and insertion order is preserved.
    Samples are frozen dataclasses and are never modified after insertion.
    """

    def __init__(
        self,
        capacity: int = settings.hrv.buffer_capacity,
        min_ready_samples: int = settings.hrv.min_ready_samples,
    ) -> None:
        """
        Args:
            capacity:
                Maximum number of samples retained.
            min_ready_samples:
                Sample count from which the buffer reports itself ready.
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if not 0 < min_ready_samples <= capacity:
            raise ValueError("min_ready_samples must be in (0, capacity]")

        self.capacity: int = int(capacity)
        self.min_ready_samples: int = int(min_ready_samples)
        self._data: Deque[IntervalSample] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._data)

    def push(self, sample: IntervalSample) -> None:
        """Append a sample, dropping the oldest one when at capacity."""
        self._data.append(sample)

    def is_ready(self) -> bool:
        return len(self._data) >= self.min_ready_samples

    def snapshot(self, window: Optional[int] = None) -> Tuple[IntervalSample, ...]:
        """
        Return the most recent samples, oldest first.

        Args:
            window:
                If None: all samples currently stored.
                If > 0: only the last `window` samples (capped at len()).

        Returns:
            Immutable tuple of IntervalSample in chronological order.
        """
        if window is None or window >= len(self._data):
            return tuple(self._data)
        if window <= 0:
            return ()
        start = len(self._data) - int(window)
        return tuple(self._data)[start:]

    def rr_ms_array(self, window: Optional[int] = None) -> np.ndarray:
        """Intervals (ms) of `snapshot(window)` as a fresh float64 array."""
        return np.fromiter(
            (s.rr_ms for s in self.snapshot(window)), dtype=np.float64
        )

    def since(self, start_ts: float) -> Tuple[IntervalSample, ...]:
        """Samples with ts >= start_ts, oldest first."""
        return tuple(s for s in self._data if s.ts >= start_ts)

    def latest(self) -> Optional[IntervalSample]:
        return self._data[-1] if self._data else None

    def clear(self) -> None:
        self._data.clear()
