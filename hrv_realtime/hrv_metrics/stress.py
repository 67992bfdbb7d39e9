# hrv_realtime/hrv_metrics/stress.py
# Baevsky-style stress index from the RR interval histogram.

from typing import Dict

import numpy as np

from hrv_realtime.config.settings import settings
from hrv_realtime.hrv_metrics.metrics import ArrayLike, _to_numpy


def rr_histogram_stats(
    rr_ms: ArrayLike,
    bin_ms: float = settings.hrv.stress_bin_ms,
) -> Dict[str, float]:
    """
    Histogram statistics of the interval distribution.

    Bins have a fixed width of `bin_ms`, starting at the observed minimum.
    Ties between modal bins resolve to the shortest interval bin.

    Returns:
        dict with
            mo_s:     midpoint of the modal bin (seconds)
            amo_pct:  share of samples in the modal bin (%)
            mxdmn_s:  max - min interval (seconds)
        all NaN if the series is empty.
    """
    rr = _to_numpy(rr_ms)
    if rr.size == 0:
        return {"mo_s": np.nan, "amo_pct": np.nan, "mxdmn_s": np.nan}

    rr_min = float(np.min(rr))
    rr_max = float(np.max(rr))

    n_bins = int(np.floor((rr_max - rr_min) / bin_ms)) + 1
    edges = rr_min + bin_ms * np.arange(n_bins + 1)
    counts, _ = np.histogram(rr, bins=edges)

    modal = int(np.argmax(counts))
    mo_ms = rr_min + bin_ms * (modal + 0.5)

    return {
        "mo_s": mo_ms / 1000.0,
        "amo_pct": float(100.0 * counts[modal] / rr.size),
        "mxdmn_s": (rr_max - rr_min) / 1000.0,
    }


def stress_index(
    rr_ms: ArrayLike,
    bin_ms: float = settings.hrv.stress_bin_ms,
    scale: float = settings.hrv.stress_scale,
) -> float:
    """
    SI = scale * AMo / (2 * Mo * MxDMn)

    With Mo and MxDMn in seconds and AMo in percent this is Baevsky's index;
    the default scale of 1e-3 maps it onto a ~0.1-1.0+ range.

    Returns NaN (unavailable) for fewer than 2 intervals or when Mo or MxDMn
    is zero, e.g. a single distinct interval value.
    """
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return np.nan

    stats = rr_histogram_stats(rr, bin_ms=bin_ms)
    mo, amo, mxdmn = stats["mo_s"], stats["amo_pct"], stats["mxdmn_s"]
    if mo <= 0 or mxdmn <= 0:
        return np.nan
    return float(scale * amo / (2.0 * mo * mxdmn))
