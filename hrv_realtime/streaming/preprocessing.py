# hrv_realtime/streaming/preprocessing.py
# Online preprocessing of incoming beat intervals:
#   - physiological range + monotonic timestamp check (IntervalValidator)
#   - sensor contact + signal quality check (SignalQualityGate)

import math
from collections import Counter
from typing import Dict, Optional

from hrv_realtime.config.settings import settings
from hrv_realtime.streaming.rr_buffer import IntervalSample


# Rejection reasons (counter keys)
NON_FINITE = "non_finite"
OUT_OF_RANGE = "out_of_range"
NON_MONOTONIC = "non_monotonic"
NO_CONTACT = "no_contact"
LOW_QUALITY = "low_quality"


# -------------------- PHYSIOLOGICAL VALIDATION -------------------- #

class IntervalValidator:
    """
    Drops physically impossible beat intervals before they reach any
    stateful component.

    A sample is rejected when:
        - rr_ms is NaN / infinite,
        - rr_ms lies outside [rr_min, rr_max] (ms),
        - its timestamp is not strictly after the last committed one
          (the last sample that made it into the buffer).

    Beat-detection noise is expected continuously, so nothing is raised:
    invalid samples are dropped and counted per reason.

    Note:
        250-3000 ms corresponds to roughly 240-20 instantaneous bpm.
    """

    def __init__(
        self,
        rr_min: Optional[float] = None,
        rr_max: Optional[float] = None,
    ) -> None:
        if rr_min is None:
            rr_min = settings.hrv.rr_min_ms
        if rr_max is None:
            rr_max = settings.hrv.rr_max_ms
        if rr_min >= rr_max:
            raise ValueError("rr_min must be lower than rr_max")

        self.rr_min: float = float(rr_min)
        self.rr_max: float = float(rr_max)
        self._last_ts: Optional[float] = None
        self._rejections: Counter = Counter()

    @property
    def rejections(self) -> Dict[str, int]:
        return dict(self._rejections)

    @property
    def rejected_total(self) -> int:
        return sum(self._rejections.values())

    def rejection_reason(self, sample: IntervalSample) -> Optional[str]:
        """Why `sample` would be rejected, or None if it is valid. No side effects."""
        rr = float(sample.rr_ms)
        if not math.isfinite(rr) or not math.isfinite(float(sample.ts)):
            return NON_FINITE
        if rr < self.rr_min or rr > self.rr_max:
            return OUT_OF_RANGE
        if self._last_ts is not None and sample.ts <= self._last_ts:
            return NON_MONOTONIC
        return None

    def record_rejection(self, reason: str) -> None:
        self._rejections[reason] += 1

    def commit(self, sample: IntervalSample) -> None:
        """Makes `sample` the ordering reference for the next timestamps."""
        self._last_ts = float(sample.ts)

    def validate(self, sample: IntervalSample) -> bool:
        """
        Check and commit in one step, for callers without a second gate.

        Returns True and remembers the timestamp if the sample is plausible,
        otherwise counts the rejection and returns False.
        """
        reason = self.rejection_reason(sample)
        if reason is not None:
            self.record_rejection(reason)
            return False
        self.commit(sample)
        return True

    def reset(self) -> None:
        self._last_ts = None
        self._rejections.clear()


# -------------------- SIGNAL QUALITY GATE -------------------- #

class SignalQualityGate:
    """
    Admits a sample only with sensor contact AND quality_score >= threshold.

    Pure predicate over the configured threshold: HRV statistics are very
    sensitive to spurious beats from motion artifacts or poor optical contact,
    so low-quality beats are stopped before the buffer.
    """

    def __init__(self, threshold: Optional[float] = None) -> None:
        if threshold is None:
            threshold = settings.hrv.quality_threshold
        if not 0.0 <= threshold <= 100.0:
            raise ValueError("threshold must be within [0, 100]")
        self.threshold: float = float(threshold)

    def rejection_reason(self, sample: IntervalSample) -> Optional[str]:
        if not sample.sensor_contacted:
            return NO_CONTACT
        # NaN scores compare False and are refused as well
        if not sample.quality_score >= self.threshold:
            return LOW_QUALITY
        return None

    def accept(self, sample: IntervalSample) -> bool:
        return self.rejection_reason(sample) is None
