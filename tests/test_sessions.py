"""Tests for the per-device SessionRegistry."""

import pytest

from hrv_realtime.hrv_metrics.service_hrv import ServiceState
from hrv_realtime.hrv_metrics.sessions import SessionRegistry
from hrv_realtime.streaming.rr_buffer import IntervalSample


@pytest.fixture
def registry(config, clock):
    reg = SessionRegistry(config=config, clock=clock, run_scheduler=False)
    yield reg
    reg.close_all()


class TestSessionRegistry:
    def test_open_creates_once(self, registry):
        first = registry.open("dev-1")
        assert registry.open("dev-1") is first
        assert first.name == "dev-1"
        assert len(registry) == 1
        assert "dev-1" in registry

    def test_sessions_are_isolated(self, registry, make_samples):
        a = registry.open("a")
        b = registry.open("b")
        for s in make_samples([800.0, 810.0, 790.0]):
            a.ingest(s)
        assert a.current_snapshot().sample_count == 3
        assert b.current_snapshot().sample_count == 0
        assert b.state is ServiceState.IDLE

    def test_get_unknown_device(self, registry):
        assert registry.get("missing") is None

    def test_device_ids_sorted(self, registry):
        for device in ("c", "a", "b"):
            registry.open(device)
        assert registry.device_ids() == ["a", "b", "c"]

    def test_close_resets_and_drops(self, registry, make_samples):
        service = registry.open("dev-1")
        service.ingest(make_samples([800.0])[0])
        assert registry.close("dev-1")
        assert service.state is ServiceState.IDLE
        assert "dev-1" not in registry
        assert not registry.close("dev-1")

    def test_close_all(self, registry):
        registry.open("a")
        registry.open("b")
        registry.close_all()
        assert len(registry) == 0

    def test_scheduler_follows_session(self, config, clock):
        registry = SessionRegistry(config=config, clock=clock, run_scheduler=True)
        service = registry.open("dev-1")
        assert service.scheduler_running
        registry.close("dev-1")
        assert not service.scheduler_running

        # a stale reference to a closed session does not revive its thread
        service.ingest(IntervalSample(ts=1.0, rr_ms=800.0))
        assert not service.scheduler_running
