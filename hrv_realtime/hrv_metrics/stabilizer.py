# hrv_realtime/hrv_metrics/stabilizer.py
"""
Per-metric moving-average smoothing.

Each metric keeps an independent bounded history of its last `window` raw
values. A stabilized value only exists once that history is full; from then
on it is the mean of the sliding window, so a single noisy reading never
registers as stabilized.
"""

import math
from collections import deque
from typing import Deque, Dict, Hashable, Optional, Tuple

import numpy as np

from hrv_realtime.config.settings import settings


class MovingAverageStabilizer:
    def __init__(self, window: int = settings.hrv.stabilizer_window) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        self.window: int = int(window)
        self._history: Dict[Hashable, Deque[float]] = {}
        self._stabilized: Dict[Hashable, float] = {}

    def admit(self, metric: Hashable, raw: Optional[float]) -> Optional[float]:
        """
        Push `raw` into the metric's history (evicting the oldest when full)
        and return the stabilized value, or None while the window is filling.

        Missing or non-finite raw values are not admitted.
        """
        if raw is None or not math.isfinite(raw):
            return self.stabilized(metric)

        history = self._history.setdefault(metric, deque(maxlen=self.window))
        history.append(float(raw))

        if len(history) == self.window:
            self._stabilized[metric] = float(np.mean(history))
        return self._stabilized.get(metric)

    def stabilized(self, metric: Hashable) -> Optional[float]:
        return self._stabilized.get(metric)

    def history(self, metric: Hashable) -> Tuple[float, ...]:
        return tuple(self._history.get(metric, ()))

    def discard(self, metric: Hashable) -> None:
        """Drops the history of one metric; its stabilized value is absent again."""
        self._history.pop(metric, None)
        self._stabilized.pop(metric, None)

    def reset(self) -> None:
        self._history.clear()
        self._stabilized.clear()
