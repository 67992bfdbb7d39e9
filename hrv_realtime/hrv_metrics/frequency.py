# hrv_realtime/hrv_metrics/frequency.py
"""
Frequency-domain HRV: LF / HF band powers and their ratio.

Pipeline (RR in ms):
    cumulative beat times -> uniform grid (linear interpolation, 4 Hz)
    -> linear detrend -> Welch PSD with Hann window -> band integration.

Spectral estimation is the most expensive step of the pipeline, so the
service runs it on a cadence instead of per beat.
"""

from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy.integrate import trapezoid
from scipy.signal import detrend, welch

from hrv_realtime.config.settings import settings
from hrv_realtime.hrv_metrics.metrics import ArrayLike, _to_numpy


Band = Tuple[float, float]

# HF power (ms^2) at or below this is treated as zero for the LF/HF ratio
MIN_BAND_POWER_MS2: float = 1e-9


def unstable_fraction(rr_ms: ArrayLike, change_ratio: float) -> float:
    """
    Fraction of successive intervals that change by more than `change_ratio`
    relative to the preceding interval (e.g. 0.25 = 25 %).
    """
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return 0.0
    prev = rr[:-1]
    change = np.abs(np.diff(rr)) / np.where(prev > 0, prev, np.nan)
    return float(np.mean(np.nan_to_num(change, nan=np.inf) > change_ratio))


def resample_tachogram(
    rr_ms: ArrayLike,
    fs_resample: float = settings.hrv.fs_resample,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Places RR intervals on their cumulative beat times and resamples them
    onto a uniform grid.

    Returns:
        (t_uniform [s], rr_uniform [ms]); both empty if the series spans no time.
    """
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return np.empty(0), np.empty(0)

    # 1) Time axis: cumulative RR (seconds), starting at 0
    t = np.cumsum(rr) / 1000.0
    t = t - t[0]
    if t[-1] <= 0:
        return np.empty(0), np.empty(0)

    # 2) Uniform time axis
    t_uniform = np.arange(0.0, t[-1], 1.0 / fs_resample)

    # 3) Linear interpolation onto the grid
    rr_uniform = np.interp(t_uniform, t, rr)
    return t_uniform, rr_uniform


def band_power(freq: np.ndarray, psd: np.ndarray, band: Band) -> float:
    """Integrates the PSD over [low, high) Hz."""
    low, high = band
    mask = (freq >= low) & (freq < high)
    if np.count_nonzero(mask) < 2:
        # a single bin carries its density times the resolution
        if np.any(mask) and freq.size > 1:
            return float(psd[mask][0] * (freq[1] - freq[0]))
        return 0.0
    return float(trapezoid(psd[mask], freq[mask]))


def compute_freq_domain_from_rr(
    rr_ms: ArrayLike,
    fs_resample: float = settings.hrv.fs_resample,
    lf_band: Band = settings.hrv.lf_band,
    hf_band: Band = settings.hrv.hf_band,
    min_points: int = settings.hrv.min_spectral_points,
    unstable_change_ratio: float = settings.hrv.unstable_change_ratio,
    max_unstable_fraction: float = settings.hrv.max_unstable_fraction,
) -> Optional[Dict[str, Any]]:
    """
    Computes LF / HF band powers (ms^2) and the LF/HF ratio.

    Args:
        rr_ms:
            Chronological RR intervals in milliseconds.
        fs_resample:
            Uniform resampling frequency (Hz).
        lf_band, hf_band:
            Band limits (Hz), lower bound inclusive.
        min_points:
            Minimum uniform points for a stable estimate.
        unstable_change_ratio, max_unstable_fraction:
            The cycle is skipped when more than `max_unstable_fraction` of the
            successive intervals jump by more than `unstable_change_ratio`.

    Returns:
        None when the series is too short or unstable for this cycle
        (the caller keeps the previous values), otherwise a dict:
            freq:        frequency axis (Hz)
            psd:         PSD values (ms^2/Hz)
            band_powers: {"LF": ..., "HF": ...}
            lf_hf_ratio: LF/HF, NaN when HF power is (numerically) 0
    """
    rr = _to_numpy(rr_ms)

    if unstable_fraction(rr, unstable_change_ratio) > max_unstable_fraction:
        return None

    _, rr_uniform = resample_tachogram(rr, fs_resample=fs_resample)
    if rr_uniform.size < max(int(min_points), 8):
        return None

    # 4) Linear trend removal
    rr_detrended = detrend(rr_uniform, type="linear")

    # 5) Welch PSD with Hann taper
    nperseg = min(256, rr_detrended.size)
    freq, psd = welch(
        rr_detrended,
        fs=fs_resample,
        window="hann",
        nperseg=nperseg,
        detrend="linear",
    )

    # 6) Band powers
    lf_power = band_power(freq, psd, lf_band)
    hf_power = band_power(freq, psd, hf_band)
    lf_hf_ratio = (
        float(lf_power / hf_power) if hf_power > MIN_BAND_POWER_MS2 else float("nan")
    )

    return {
        "freq": freq.tolist(),
        "psd": psd.tolist(),
        "band_powers": {"LF": lf_power, "HF": hf_power},
        "lf_hf_ratio": lf_hf_ratio,
    }
