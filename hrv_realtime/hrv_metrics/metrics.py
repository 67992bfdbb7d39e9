# hrv_realtime/hrv_metrics/metrics.py
# Pure time-domain HRV metric computations from RR intervals (ms).
# Undefined results are returned as NaN; the snapshot layer reports them as
# unavailable.

from typing import Dict, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from hrv_realtime.config.settings import settings
from hrv_realtime.hrv_metrics.snapshot import MetricId
from hrv_realtime.streaming.rr_buffer import IntervalSample


ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


def _to_numpy(rr_ms: ArrayLike) -> np.ndarray:
    """Converts input RR series to a clean 1D numpy array (ms)."""
    arr = np.asarray(rr_ms, dtype=np.float64).ravel()
    # drop NaN values if any
    arr = arr[~np.isnan(arr)]
    return arr


def successive_differences(rr_ms: ArrayLike) -> np.ndarray:
    """d_i = r_{i+1} - r_i (ms)."""
    return np.diff(_to_numpy(rr_ms))


def avnn(rr_ms: ArrayLike) -> float:
    """Calculates AVNN (mean NN interval, ms)."""
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return np.nan
    return float(np.mean(rr))


def sdnn(rr_ms: ArrayLike) -> float:
    """Calculates SDNN (population standard deviation of NN intervals, ms)."""
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return np.nan
    return float(np.std(rr, ddof=0))


def sdsd(rr_ms: ArrayLike) -> float:
    """Calculates SDSD (population standard deviation of successive differences, ms)."""
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return np.nan
    return float(np.std(np.diff(rr), ddof=0))


def rmssd(rr_ms: ArrayLike) -> float:
    """Calculates RMSSD (root mean square of successive differences, ms)."""
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return np.nan
    diff = np.diff(rr)
    return float(np.sqrt(np.mean(diff ** 2)))


def nn_count(rr_ms: ArrayLike, threshold_ms: float = 50.0) -> int:
    """Counts successive RR differences whose magnitude exceeds threshold_ms."""
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return 0
    diff = np.abs(np.diff(rr))
    return int(np.sum(diff > threshold_ms))


def pnn(rr_ms: ArrayLike, threshold_ms: float) -> float:
    """Calculates pNNx (% of successive RR differences > threshold_ms)."""
    rr = _to_numpy(rr_ms)
    n = rr.size
    if n < 2:
        return np.nan
    # number of successive pairs is (n - 1)
    return float(100.0 * nn_count(rr, threshold_ms=threshold_ms) / (n - 1))


def pnn50(rr_ms: ArrayLike) -> float:
    return pnn(rr_ms, threshold_ms=50.0)


def pnn20(rr_ms: ArrayLike) -> float:
    return pnn(rr_ms, threshold_ms=20.0)


def heart_rate(rr_ms: ArrayLike) -> float:
    """Averaged heart rate (bpm) = 60000 / AVNN."""
    mean_rr = avnn(rr_ms)
    if not np.isfinite(mean_rr) or mean_rr <= 0:
        return np.nan
    return float(60000.0 / mean_rr)


def hr_min(rr_ms: ArrayLike) -> float:
    """Calculates minimum instantaneous heart rate (bpm) from RR intervals in ms."""
    rr = _to_numpy(rr_ms)
    rr = rr[rr > 0]
    if rr.size < 2:
        return np.nan
    return float(np.min(60000.0 / rr))


def hr_max(rr_ms: ArrayLike) -> float:
    """Calculates maximum instantaneous heart rate (bpm) from RR intervals in ms."""
    rr = _to_numpy(rr_ms)
    rr = rr[rr > 0]
    if rr.size < 2:
        return np.nan
    return float(np.max(60000.0 / rr))


def trailing_window(
    samples: Sequence[IntervalSample],
    window_s: float,
) -> Tuple[IntervalSample, ...]:
    """
    Samples whose timestamp lies within `window_s` seconds of the newest one.

    The window is anchored on the newest sample rather than the wall clock,
    so the result depends only on the snapshot.
    """
    if not samples:
        return ()
    cutoff = samples[-1].ts - float(window_s)
    return tuple(s for s in samples if s.ts >= cutoff)


def compute_time_domain_metrics(
    samples: Sequence[IntervalSample],
    hr_window_s: float = settings.hrv.hr_window_s,
    pnn50_threshold_ms: float = settings.hrv.pnn50_threshold_ms,
    pnn20_threshold_ms: float = settings.hrv.pnn20_threshold_ms,
) -> Dict[MetricId, float]:
    """
    Computes the time-domain HRV family from a buffer snapshot.

    Args:
        samples:
            Chronological IntervalSample snapshot.
        hr_window_s:
            Trailing window (seconds) over which HR max / min are taken.

    Returns:
        Dict MetricId -> float (NaN when undefined, e.g. fewer than 2 samples).
    """
    rr = np.fromiter((s.rr_ms for s in samples), dtype=np.float64)
    recent = np.fromiter(
        (s.rr_ms for s in trailing_window(samples, hr_window_s)), dtype=np.float64
    )

    return {
        MetricId.AVNN: avnn(rr),
        MetricId.SDNN: sdnn(rr),
        MetricId.SDSD: sdsd(rr),
        MetricId.RMSSD: rmssd(rr),
        MetricId.PNN50: pnn(rr, threshold_ms=pnn50_threshold_ms),
        MetricId.PNN20: pnn(rr, threshold_ms=pnn20_threshold_ms),
        MetricId.HEART_RATE: heart_rate(rr),
        MetricId.HR_MAX: hr_max(recent),
        MetricId.HR_MIN: hr_min(recent),
    }
