"""Pytest configuration and shared fixtures for the HRV core tests."""

import math
import os
import tempfile

# Must be set before hrv_realtime.config.settings is imported anywhere
os.environ.setdefault("HRV_LOG_DIR", tempfile.mkdtemp(prefix="hrv-logs-"))
os.environ.setdefault("HRV_API_START_CONSUMER", "0")

import pytest

from hrv_realtime.config.settings import HRVSettings
from hrv_realtime.hrv_metrics.service_hrv import HRVAnalysisService
from hrv_realtime.streaming.rr_buffer import IntervalSample


class FakeClock:
    """Manually advanced time source (epoch seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def beat_samples(rr_ms, start_ts=1_700_000_000.0, **kwargs):
    """IntervalSamples whose timestamps follow the cumulative beat times."""
    samples = []
    ts = float(start_ts)
    for rr in rr_ms:
        ts += float(rr) / 1000.0
        samples.append(IntervalSample(ts=ts, rr_ms=float(rr), **kwargs))
    return samples


def sinusoidal_tachogram(freq_hz, n_beats=300, mean_ms=800.0, amplitude_ms=40.0):
    """RR series modulated at `freq_hz`, sampled at the beats themselves."""
    rr = []
    t = 0.0
    for _ in range(n_beats):
        value = mean_ms + amplitude_ms * math.sin(2.0 * math.pi * freq_hz * t)
        rr.append(value)
        t += value / 1000.0
    return rr


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return HRVSettings()


@pytest.fixture
def make_samples():
    return beat_samples


@pytest.fixture
def make_tachogram():
    return sinusoidal_tachogram


@pytest.fixture
def service(config, clock):
    svc = HRVAnalysisService(config=config, clock=clock, name="test-device")
    yield svc
    svc.close()
