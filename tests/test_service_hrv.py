"""Tests for the HRVAnalysisService facade and its cadence scheduler."""

import dataclasses
import math
import threading
import time

import pytest

from conftest import FakeClock
from hrv_realtime.config.settings import HRVSettings
from hrv_realtime.hrv_metrics import service_hrv
from hrv_realtime.hrv_metrics.service_hrv import HRVAnalysisService, ServiceState
from hrv_realtime.hrv_metrics.snapshot import SPECTRAL_METRICS, TIME_DOMAIN_METRICS, MetricId
from hrv_realtime.streaming.preprocessing import (
    LOW_QUALITY,
    NO_CONTACT,
    NON_MONOTONIC,
    OUT_OF_RANGE,
)
from hrv_realtime.streaming.rr_buffer import IntervalSample


def _ingest_all(service, samples):
    return [service.ingest(s) for s in samples]


def _raw_values(snapshot):
    return {m: r.raw.value for m, r in snapshot.metrics.items()}


class TestLifecycle:
    """IDLE -> ACCUMULATING -> READY -> IDLE."""

    def test_starts_idle_with_empty_snapshot(self, service):
        snapshot = service.current_snapshot()
        assert service.state is ServiceState.IDLE
        assert snapshot.state == "idle"
        assert snapshot.sample_count == 0
        assert not any(r.available for r in snapshot.metrics.values())

    def test_first_sample_opens_session(self, service, make_samples):
        service.ingest(make_samples([800.0])[0])
        assert service.state is ServiceState.ACCUMULATING

    def test_ready_at_minimum_sample_count(self, service, make_samples):
        samples = make_samples([800.0] * 120)
        _ingest_all(service, samples[:119])
        assert service.state is ServiceState.ACCUMULATING
        assert not service.current_snapshot().ready
        service.ingest(samples[119])
        assert service.state is ServiceState.READY
        assert service.current_snapshot().ready

    def test_reset_returns_to_idle(self, service, make_samples):
        _ingest_all(service, make_samples([800.0] * 130))
        service.reset()
        snapshot = service.current_snapshot()
        assert service.state is ServiceState.IDLE
        assert snapshot.sample_count == 0
        assert snapshot.accepted == 0
        assert not any(r.available for r in snapshot.metrics.values())


class TestTimeDomainIngestion:
    def test_constant_interval_session(self, service, make_samples):
        _ingest_all(service, make_samples([800.0] * 150))
        snapshot = service.current_snapshot()
        assert snapshot.sample_count == 150
        assert snapshot[MetricId.SDNN].raw.value == pytest.approx(0.0)
        assert snapshot[MetricId.RMSSD].raw.value == pytest.approx(0.0)
        assert snapshot[MetricId.AVNN].raw.value == pytest.approx(800.0)
        assert snapshot[MetricId.HEART_RATE].raw.value == pytest.approx(75.0)

    def test_reference_sequence(self, service, make_samples):
        _ingest_all(service, make_samples([800.0, 810.0, 790.0, 805.0, 800.0]))
        snapshot = service.current_snapshot()
        assert snapshot[MetricId.AVNN].raw.value == pytest.approx(801.0)
        assert snapshot[MetricId.RMSSD].raw.value == pytest.approx(math.sqrt(187.5))

    def test_single_sample_leaves_metrics_unavailable(self, service, make_samples):
        service.ingest(make_samples([800.0])[0])
        snapshot = service.current_snapshot()
        for metric in TIME_DOMAIN_METRICS:
            assert not snapshot[metric].available

    def test_spectral_family_waits_for_tick(self, service, make_tachogram, make_samples):
        _ingest_all(service, make_samples(make_tachogram(0.1)))
        snapshot = service.current_snapshot()
        assert snapshot[MetricId.RMSSD].available
        for metric in SPECTRAL_METRICS:
            assert not snapshot[metric].available

    def test_snapshot_never_exposes_nan(self, service, make_samples):
        _ingest_all(service, make_samples([800.0] * 130))
        service.tick()
        for reading in service.current_snapshot().metrics.values():
            for value in (reading.raw.value, reading.stabilized, reading.value):
                assert value is None or math.isfinite(value)


class TestRejections:
    """Rejected samples never touch the buffer or any metric."""

    def test_gate_rejections_do_not_change_state(self, service, make_samples):
        samples = make_samples([800.0, 810.0, 790.0, 805.0, 800.0, 2000.0, 400.0])
        _ingest_all(service, samples[:5])
        before = service.current_snapshot()

        bad = [
            dataclasses.replace(samples[5], quality_score=50.0),
            dataclasses.replace(samples[6], sensor_contacted=False),
        ]
        assert _ingest_all(service, bad) == [False, False]

        after = service.current_snapshot()
        assert after.sample_count == before.sample_count == 5
        assert _raw_values(after) == _raw_values(before)
        assert after.rejections[LOW_QUALITY] == 1
        assert after.rejections[NO_CONTACT] == 1
        assert after.rejected == 2

    def test_validator_rejections_are_counted(self, service):
        assert not service.ingest(IntervalSample(ts=1.0, rr_ms=100.0))
        assert service.ingest(IntervalSample(ts=2.0, rr_ms=800.0))
        assert not service.ingest(IntervalSample(ts=1.5, rr_ms=800.0))
        snapshot = service.current_snapshot()
        assert snapshot.rejections[OUT_OF_RANGE] == 1
        assert snapshot.rejections[NON_MONOTONIC] == 1
        assert snapshot.accepted == 1
        assert snapshot.sample_count == 1

    def test_gate_rejected_sample_does_not_move_ordering_reference(self, service, make_samples):
        samples = make_samples([800.0] * 10)
        _ingest_all(service, samples[:5])

        # low-quality glitch stamped far in the future
        glitch = IntervalSample(ts=samples[4].ts + 1000.0, rr_ms=800.0, quality_score=10.0)
        assert not service.ingest(glitch)

        assert _ingest_all(service, samples[5:]) == [True] * 5
        snapshot = service.current_snapshot()
        assert snapshot.sample_count == 10
        assert dict(snapshot.rejections) == {LOW_QUALITY: 1}


class TestStabilization:
    def test_stabilized_appears_after_window_of_values(self, service, make_samples):
        # the first accepted sample yields no value, so M values need M + 1 samples
        samples = make_samples([800.0, 820.0] * 6)
        _ingest_all(service, samples[:10])
        reading = service.current_snapshot()[MetricId.AVNN]
        assert reading.stabilized is None
        assert reading.value == reading.raw.value

        service.ingest(samples[10])
        reading = service.current_snapshot()[MetricId.AVNN]
        assert reading.stabilized is not None
        assert reading.value == reading.stabilized
        assert len(service.stabilizer.history(MetricId.AVNN)) == 10

    def test_metrics_stabilize_independently(self, service, make_samples, make_tachogram):
        _ingest_all(service, make_samples(make_tachogram(0.1)))
        service.tick()
        snapshot = service.current_snapshot()
        assert snapshot[MetricId.RMSSD].stabilized is not None
        assert snapshot[MetricId.LF_HF_RATIO].raw.available
        assert snapshot[MetricId.LF_HF_RATIO].stabilized is None


    def test_unavailable_reading_drops_stale_stabilized_value(self, service, make_samples):
        samples = make_samples([800.0] * 20)
        _ingest_all(service, samples)
        assert service.current_snapshot()[MetricId.HR_MAX].stabilized == pytest.approx(75.0)

        # a lone beat after a long gap leaves < 2 beats in the HR window
        service.ingest(IntervalSample(ts=samples[-1].ts + 200.0, rr_ms=800.0))
        reading = service.current_snapshot()[MetricId.HR_MAX]
        assert not reading.raw.available
        assert reading.stabilized is None
        assert reading.value is None
        assert not reading.available
        assert service.current_snapshot().to_dict()["metrics"]["hr_max"]["value"] is None
        assert service.current_snapshot()[MetricId.AVNN].available


class TestTick:
    def test_noop_before_ready(self, service, make_samples):
        _ingest_all(service, make_samples([800.0] * 50))
        assert not service.tick()

    def test_cadence(self, service, clock, make_samples, make_tachogram):
        _ingest_all(service, make_samples(make_tachogram(0.1)))
        assert service.tick()
        assert not service.tick()
        clock.advance(service.config.spectral_interval_s - 0.1)
        assert not service.tick()
        clock.advance(0.2)
        assert service.tick()

    def test_explicit_now(self, service, make_samples, make_tachogram):
        _ingest_all(service, make_samples(make_tachogram(0.1)))
        assert service.tick(now=100.0)
        assert not service.tick(now=101.0)
        assert service.tick(now=103.0)

    def test_lf_dominant_ratio(self, service, make_samples, make_tachogram):
        _ingest_all(service, make_samples(make_tachogram(0.1)))
        service.tick()
        snapshot = service.current_snapshot()
        assert snapshot[MetricId.LF_HF_RATIO].raw.value > 1.0
        assert snapshot[MetricId.LF_POWER].available
        assert snapshot[MetricId.STRESS_INDEX].available

    def test_hf_dominant_ratio(self, service, make_samples, make_tachogram):
        _ingest_all(service, make_samples(make_tachogram(0.25)))
        service.tick()
        assert service.current_snapshot()[MetricId.LF_HF_RATIO].raw.value < 1.0

    def test_skipped_estimate_keeps_previous_values(
        self, service, clock, make_samples, make_tachogram, monkeypatch
    ):
        _ingest_all(service, make_samples(make_tachogram(0.1)))
        service.tick()
        first = service.current_snapshot()[MetricId.LF_HF_RATIO].raw

        monkeypatch.setattr(service_hrv, "compute_freq_domain_from_rr", lambda *a, **k: None)
        clock.advance(10.0)
        assert service.tick()
        assert service.current_snapshot()[MetricId.LF_HF_RATIO].raw == first

    def test_short_span_leaves_spectral_unavailable(self, clock, make_samples):
        config = HRVSettings(min_ready_samples=120, min_spectral_points=10_000)
        with HRVAnalysisService(config=config, clock=clock) as service:
            _ingest_all(service, make_samples([800.0, 820.0] * 70))
            assert service.tick()
            snapshot = service.current_snapshot()
            assert not snapshot[MetricId.LF_HF_RATIO].available
            assert snapshot[MetricId.STRESS_INDEX].available

    def test_constant_series_stress_unavailable(self, service, make_samples):
        _ingest_all(service, make_samples([800.0] * 130))
        service.tick()
        assert not service.current_snapshot()[MetricId.STRESS_INDEX].available


class TestSnapshotPublication:
    def test_repeated_reads_are_identical(self, service, make_samples):
        _ingest_all(service, make_samples([800.0, 810.0, 790.0]))
        first = service.current_snapshot()
        second = service.current_snapshot()
        assert first is second
        assert first.to_dict() == second.to_dict()

    def test_published_snapshot_is_not_mutated_by_later_ingest(self, service, make_samples):
        samples = make_samples([800.0, 810.0, 790.0, 805.0])
        _ingest_all(service, samples[:3])
        old = service.current_snapshot()
        old_dict = old.to_dict()
        service.ingest(samples[3])
        assert old.to_dict() == old_dict
        assert service.current_snapshot().sample_count == 4

    def test_reset_then_reingest_matches_fresh_service(self, config, make_samples):
        samples = make_samples([800.0, 810.0, 790.0, 805.0, 800.0] * 30)

        reused = HRVAnalysisService(config=config, clock=FakeClock())
        _ingest_all(reused, make_samples([600.0, 1200.0] * 70, start_ts=0.0))
        reused.ingest(IntervalSample(ts=1.0, rr_ms=10.0))
        reused.tick()
        reused.reset()
        _ingest_all(reused, samples)
        reused.tick()

        fresh = HRVAnalysisService(config=config, clock=FakeClock())
        _ingest_all(fresh, samples)
        fresh.tick()

        assert reused.current_snapshot().to_dict() == fresh.current_snapshot().to_dict()


class TestConcurrency:
    def test_ingest_and_tick_serialize(self, make_samples, make_tachogram):
        config = HRVSettings(spectral_interval_s=0.001)
        service = HRVAnalysisService(config=config)
        samples = make_samples(make_tachogram(0.1, n_beats=400))
        errors = []

        def ticker():
            try:
                for _ in range(200):
                    service.tick()
                    snapshot = service.current_snapshot()
                    assert snapshot.sample_count <= len(samples)
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        t = threading.Thread(target=ticker)
        t.start()
        _ingest_all(service, samples)
        t.join()

        assert errors == []
        assert service.current_snapshot().sample_count == 400

    def test_scheduler_runs_and_reset_cancels_it(self, make_samples, make_tachogram):
        config = HRVSettings(spectral_interval_s=0.02)
        service = HRVAnalysisService(config=config)
        _ingest_all(service, make_samples(make_tachogram(0.1)))

        service.start_scheduler()
        assert service.scheduler_running
        deadline = time.time() + 5.0
        while time.time() < deadline:
            if service.current_snapshot()[MetricId.LF_HF_RATIO].available:
                break
            time.sleep(0.02)
        assert service.current_snapshot()[MetricId.LF_HF_RATIO].available

        service.reset()
        assert not service.scheduler_running
        assert service.state is ServiceState.IDLE
        time.sleep(0.1)
        assert service.current_snapshot().sample_count == 0

    def test_scheduler_resumes_after_reset_on_next_ingest(self, make_samples):
        service = HRVAnalysisService(config=HRVSettings(spectral_interval_s=0.05))
        service.start_scheduler()
        service.reset()
        assert not service.scheduler_running

        service.ingest(make_samples([800.0])[0])
        assert service.state is ServiceState.ACCUMULATING
        assert service.scheduler_running

        service.close()
        assert not service.scheduler_running

    def test_reset_without_scheduler_does_not_start_one(self, service, make_samples):
        service.reset()
        service.ingest(make_samples([800.0])[0])
        assert not service.scheduler_running

    def test_closed_service_stays_without_scheduler(self, make_samples):
        service = HRVAnalysisService(config=HRVSettings(spectral_interval_s=0.05))
        service.start_scheduler()
        service.reset()
        service.close()
        service.ingest(make_samples([800.0])[0])
        assert not service.scheduler_running

    def test_close_stops_scheduler(self):
        with HRVAnalysisService(config=HRVSettings(spectral_interval_s=0.05)) as service:
            service.start_scheduler()
            service.start_scheduler()
            assert service.scheduler_running
        assert not service.scheduler_running
