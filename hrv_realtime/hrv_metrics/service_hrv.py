# hrv_realtime/hrv_metrics/service_hrv.py
"""
Per-session HRV analysis service.

Responsibilities:
    - Own the validator, quality gate, ring buffer and stabilizer of one
      device session.
    - Recompute time-domain metrics on every accepted sample and the
      spectral family + stress index on a slower cadence (tick()).
    - Publish an immutable MetricsSnapshot after every ingest / tick / reset.

Concurrency:
    ingest() and tick() are serialized by a single Lock. The snapshot is
    published by swapping one reference to a frozen object, so
    current_snapshot() never blocks and never sees a half-updated state.
"""

import threading
import time
from collections import Counter
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Optional

from hrv_realtime.config.settings import HRVSettings, settings
from hrv_realtime.hrv_metrics.frequency import compute_freq_domain_from_rr
from hrv_realtime.hrv_metrics.metrics import compute_time_domain_metrics
from hrv_realtime.hrv_metrics.snapshot import (
    MetricId,
    MetricReading,
    MetricsSnapshot,
    MetricValue,
)
from hrv_realtime.hrv_metrics.stabilizer import MovingAverageStabilizer
from hrv_realtime.hrv_metrics.stress import stress_index
from hrv_realtime.streaming.preprocessing import IntervalValidator, SignalQualityGate
from hrv_realtime.streaming.rr_buffer import IntervalRingBuffer, IntervalSample
from hrv_realtime.utils.logging_utils import get_logger


logger = get_logger(module_name="hrv_service", logfile_name="service.log")


class ServiceState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    READY = "ready"


class SpectralScheduler(threading.Thread):
    """
    Background thread calling service.tick() every `interval_s` seconds
    until cancel() is called.
    """

    def __init__(self, service: "HRVAnalysisService", interval_s: float) -> None:
        super().__init__(name=f"hrv-spectral-{service.name}", daemon=True)
        self.service = service
        self.interval_s = float(interval_s)
        self._cancelled = threading.Event()

    def run(self) -> None:
        while not self._cancelled.wait(self.interval_s):
            try:
                self.service.tick()
            except Exception:
                # keep the cadence alive; the next tick starts from a clean state
                logger.error(
                    "Spectral tick failed for session '%s'",
                    self.service.name,
                    exc_info=True,
                )

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class HRVAnalysisService:
    """
    Facade / state machine: IDLE -> ACCUMULATING -> READY -> IDLE (reset).

    The first sample ingested while IDLE opens a session.
    """

    def __init__(
        self,
        config: HRVSettings = settings.hrv,
        clock: Callable[[], float] = time.time,
        name: str = "default",
    ) -> None:
        """
        Args:
            config:
                Construction-time parameters (capacity, thresholds, cadence ...).
            clock:
                Time source (epoch seconds) for the cadence and computed_at.
            name:
                Session / device identifier used in logs.
        """
        self.config = config
        self.name = str(name)
        self._clock = clock
        self._lock = threading.Lock()

        self.validator = IntervalValidator(rr_min=config.rr_min_ms, rr_max=config.rr_max_ms)
        self.gate = SignalQualityGate(threshold=config.quality_threshold)
        self.buffer = IntervalRingBuffer(
            capacity=config.buffer_capacity,
            min_ready_samples=config.min_ready_samples,
        )
        self.stabilizer = MovingAverageStabilizer(window=config.stabilizer_window)

        self._scheduler: Optional[SpectralScheduler] = None
        self._resume_scheduler = False
        self._clear_state()
        self._snapshot: MetricsSnapshot = self._build_snapshot()

    # -------------------- PUBLIC API -------------------- #

    @property
    def state(self) -> ServiceState:
        return self._state

    def ingest(self, sample: IntervalSample) -> bool:
        """
        validator -> gate -> buffer push + time-domain recompute.

        Returns:
            True if the sample was admitted into the buffer.
        """
        with self._lock:
            if self._state is ServiceState.IDLE:
                self._state = ServiceState.ACCUMULATING
                logger.info("Session '%s' started.", self.name)
                if self._resume_scheduler:
                    self._resume_scheduler = False
                    self.start_scheduler()

            reason = self.validator.rejection_reason(sample)
            if reason is not None:
                self.validator.record_rejection(reason)
                logger.debug(
                    "Session '%s': dropped implausible sample %r (%s)", self.name, sample, reason
                )
                self._publish()
                return False

            reason = self.gate.rejection_reason(sample)
            if reason is not None:
                self._gate_rejections[reason] += 1
                logger.debug("Session '%s': gate rejected sample (%s)", self.name, reason)
                self._publish()
                return False

            self.buffer.push(sample)
            self.validator.commit(sample)
            self._accepted += 1
            self._recompute_time_domain()

            if self._state is ServiceState.ACCUMULATING and self.buffer.is_ready():
                self._state = ServiceState.READY
                logger.info(
                    "Session '%s' ready with %d samples.", self.name, len(self.buffer)
                )

            self._publish()
            return True

    def tick(self, now: Optional[float] = None) -> bool:
        """
        Cadence-driven spectral + stress recompute.

        Does nothing unless the session is READY and `spectral_interval_s`
        has elapsed since the previous recompute (the first tick in READY
        always runs).

        Returns:
            True if a recompute happened.
        """
        with self._lock:
            if self._state is not ServiceState.READY:
                return False

            now = self._clock() if now is None else float(now)
            last = self._last_spectral_at
            if last is not None and now - last < self.config.spectral_interval_s:
                return False

            self._last_spectral_at = now
            self._recompute_spectral(now)
            self._publish()
            return True

    def current_snapshot(self) -> MetricsSnapshot:
        return self._snapshot

    def reset(self) -> None:
        """End of session / device reconnection: drop every piece of state."""
        # a reconnecting device gets its cadence back on the next ingest
        self._resume_scheduler = self._resume_scheduler or self.scheduler_running
        self.stop_scheduler()
        with self._lock:
            was_active = self._state is not ServiceState.IDLE
            self._clear_state()
            self._publish()
        if was_active:
            logger.info("Session '%s' reset.", self.name)

    # -------------------- CADENCE SCHEDULER -------------------- #

    @property
    def scheduler_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_alive()

    def start_scheduler(self) -> None:
        if self.scheduler_running:
            return
        self._scheduler = SpectralScheduler(self, self.config.spectral_interval_s)
        self._scheduler.start()
        logger.info(
            "Session '%s': spectral scheduler started (every %.1fs).",
            self.name,
            self.config.spectral_interval_s,
        )

    def stop_scheduler(self, timeout: Optional[float] = 5.0) -> None:
        scheduler = self._scheduler
        if scheduler is None:
            return
        scheduler.cancel()
        if scheduler is not threading.current_thread():
            scheduler.join(timeout)
        self._scheduler = None

    def close(self) -> None:
        self._resume_scheduler = False
        self.stop_scheduler()

    def __enter__(self) -> "HRVAnalysisService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -------------------- INTERNALS (caller holds the lock) -------------------- #

    def _clear_state(self) -> None:
        self._state = ServiceState.IDLE
        self.validator.reset()
        self.buffer.clear()
        self.stabilizer.reset()
        self._raw: Dict[MetricId, MetricValue] = {
            m: MetricValue.unavailable() for m in MetricId
        }
        self._gate_rejections: Counter = Counter()
        self._accepted = 0
        self._last_spectral_at: Optional[float] = None

    def _set_raw(self, metric: MetricId, raw: Optional[float], computed_at: float) -> None:
        value = MetricValue.from_raw(raw, computed_at)
        self._raw[metric] = value
        if value.available:
            self.stabilizer.admit(metric, value.value)
        else:
            # an unavailable reading breaks the series; smoothing restarts
            self.stabilizer.discard(metric)

    def _recompute_time_domain(self) -> None:
        computed_at = self._clock()
        td = compute_time_domain_metrics(
            self.buffer.snapshot(),
            hr_window_s=self.config.hr_window_s,
            pnn50_threshold_ms=self.config.pnn50_threshold_ms,
            pnn20_threshold_ms=self.config.pnn20_threshold_ms,
        )
        for metric, raw in td.items():
            self._set_raw(metric, raw, computed_at)

    def _recompute_spectral(self, computed_at: float) -> None:
        rr = self.buffer.rr_ms_array()

        fd = compute_freq_domain_from_rr(
            rr,
            fs_resample=self.config.fs_resample,
            lf_band=self.config.lf_band,
            hf_band=self.config.hf_band,
            min_points=self.config.min_spectral_points,
            unstable_change_ratio=self.config.unstable_change_ratio,
            max_unstable_fraction=self.config.max_unstable_fraction,
        )
        if fd is None:
            # too short or unstable this cycle: previous values stay
            logger.debug(
                "Session '%s': spectral estimate skipped (%d samples).",
                self.name,
                rr.size,
            )
        else:
            self._set_raw(MetricId.LF_POWER, fd["band_powers"]["LF"], computed_at)
            self._set_raw(MetricId.HF_POWER, fd["band_powers"]["HF"], computed_at)
            self._set_raw(MetricId.LF_HF_RATIO, fd["lf_hf_ratio"], computed_at)

        self._set_raw(
            MetricId.STRESS_INDEX,
            stress_index(rr, bin_ms=self.config.stress_bin_ms, scale=self.config.stress_scale),
            computed_at,
        )

    def _build_snapshot(self) -> MetricsSnapshot:
        metrics = {
            m: MetricReading(raw=self._raw[m], stabilized=self.stabilizer.stabilized(m))
            for m in MetricId
        }
        rejections = Counter(self.validator.rejections)
        rejections.update(self._gate_rejections)
        return MetricsSnapshot(
            metrics=MappingProxyType(metrics),
            ready=self.buffer.is_ready(),
            sample_count=len(self.buffer),
            state=self._state.value,
            accepted=self._accepted,
            rejections=MappingProxyType(dict(rejections)),
            generated_at=self._clock(),
        )

    def _publish(self) -> None:
        self._snapshot = self._build_snapshot()
