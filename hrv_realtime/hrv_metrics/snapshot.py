# hrv_realtime/hrv_metrics/snapshot.py
"""
Metric identifiers and the immutable structures published to consumers.

MetricsSnapshot is the only structure exposed across the module boundary.
Every metric is addressed through the closed MetricId enumeration; a value is
either a finite float or explicitly unavailable (never NaN / inf).
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


class MetricId(str, Enum):
    AVNN = "avnn"
    SDNN = "sdnn"
    SDSD = "sdsd"
    RMSSD = "rmssd"
    PNN50 = "pnn50"
    PNN20 = "pnn20"
    HEART_RATE = "heart_rate"
    HR_MAX = "hr_max"
    HR_MIN = "hr_min"
    LF_POWER = "lf_power"
    HF_POWER = "hf_power"
    LF_HF_RATIO = "lf_hf_ratio"
    STRESS_INDEX = "stress_index"


# Recomputed on every accepted sample
TIME_DOMAIN_METRICS = (
    MetricId.AVNN,
    MetricId.SDNN,
    MetricId.SDSD,
    MetricId.RMSSD,
    MetricId.PNN50,
    MetricId.PNN20,
    MetricId.HEART_RATE,
    MetricId.HR_MAX,
    MetricId.HR_MIN,
)

# Recomputed on the spectral cadence
SPECTRAL_METRICS = (
    MetricId.LF_POWER,
    MetricId.HF_POWER,
    MetricId.LF_HF_RATIO,
    MetricId.STRESS_INDEX,
)


@dataclass(frozen=True)
class MetricValue:
    """
    Raw (unsmoothed) scalar result of one computation.

    Attributes:
        value:
            Finite float, or None when the metric is unavailable.
        computed_at:
            Epoch seconds of the computation (0.0 if never computed).
    """
    value: Optional[float]
    computed_at: float

    @property
    def available(self) -> bool:
        return self.value is not None

    @classmethod
    def from_raw(cls, raw: Optional[float], computed_at: float) -> "MetricValue":
        """Maps None / NaN / inf to an unavailable value."""
        if raw is None:
            return cls(value=None, computed_at=computed_at)
        raw = float(raw)
        if not math.isfinite(raw):
            return cls(value=None, computed_at=computed_at)
        return cls(value=raw, computed_at=computed_at)

    @classmethod
    def unavailable(cls, computed_at: float = 0.0) -> "MetricValue":
        return cls(value=None, computed_at=computed_at)


@dataclass(frozen=True)
class MetricReading:
    raw: MetricValue
    stabilized: Optional[float] = None

    @property
    def value(self) -> Optional[float]:
        """
        Stabilized value if available, else raw value, else None.

        A currently unavailable raw reading makes the metric unavailable even
        if an older stabilized value is still around.
        """
        if not self.raw.available:
            return None
        if self.stabilized is not None:
            return self.stabilized
        return self.raw.value

    @property
    def available(self) -> bool:
        return self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "raw": self.raw.value,
            "stabilized": self.stabilized,
            "available": self.available,
            "computed_at": self.raw.computed_at,
        }


def _empty_metrics() -> Mapping[MetricId, MetricReading]:
    return MappingProxyType(
        {m: MetricReading(raw=MetricValue.unavailable()) for m in MetricId}
    )


@dataclass(frozen=True)
class MetricsSnapshot:
    """
    Immutable view of one analysis session at a point in time.

    Attributes:
        metrics:
            Read-only mapping MetricId -> MetricReading (always holds every id).
        ready:
            True once the buffer holds the minimum sample count.
        sample_count:
            Current number of buffered samples.
        state:
            Service state name ("idle", "accumulating", "ready").
        accepted:
            Samples admitted into the buffer during this session.
        rejections:
            Per-reason rejection counters (validator + quality gate).
        generated_at:
            Epoch seconds when the snapshot was published.
    """
    metrics: Mapping[MetricId, MetricReading] = field(default_factory=_empty_metrics)
    ready: bool = False
    sample_count: int = 0
    state: str = "idle"
    accepted: int = 0
    rejections: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType({})
    )
    generated_at: float = 0.0

    @property
    def rejected(self) -> int:
        return sum(self.rejections.values())

    def __getitem__(self, metric: MetricId) -> MetricReading:
        return self.metrics[MetricId(metric)]

    def value(self, metric: MetricId) -> Optional[float]:
        return self[metric].value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ready": self.ready,
            "state": self.state,
            "sample_count": self.sample_count,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "rejections": dict(self.rejections),
            "generated_at": self.generated_at,
            "metrics": {m.value: r.to_dict() for m, r in self.metrics.items()},
        }
