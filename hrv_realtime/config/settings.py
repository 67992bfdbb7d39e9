# hrv_realtime/config/settings.py
"""
Central application configuration for the realtime HRV core.

All constants and parameters live here:
    - File paths (replay data, log directory)
    - Kafka settings for the beat-interval stream
    - HRV ingestion, buffering, stabilization and spectral parameters
    - FastAPI snapshot service settings

Read from here:
    from hrv_realtime.config.settings import settings
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple


# Project root: the directory holding pyproject.toml
BASE_DIR = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class PathSettings:
    """
    File and directory paths.

    Environment variables:
        HRV_LOG_DIR
    """

    base_dir: Path = BASE_DIR
    rr_processed_dir: Path = BASE_DIR / "data" / "processed" / "rr_clean"
    log_dir: Path = Path(os.getenv("HRV_LOG_DIR", str(BASE_DIR / "logs")))


@dataclass(frozen=True)
class KafkaSettings:
    """
    Kafka connection settings.

    Environment variables:
        KAFKA_BOOTSTRAP
        KAFKA_RR_TOPIC
        KAFKA_GROUP_ID
    """

    bootstrap_servers: str = os.getenv("KAFKA_BOOTSTRAP", "localhost:9092")
    rr_topic: str = os.getenv("KAFKA_RR_TOPIC", "rr-stream")
    group_id: str = os.getenv("KAFKA_GROUP_ID", "hrv-consumer")


@dataclass(frozen=True)
class HRVSettings:
    """
    Construction-time parameters of one HRVAnalysisService.
    """

    # Physiological RR bounds (ms), roughly 20-240 bpm
    rr_min_ms: float = 250.0
    rr_max_ms: float = 3000.0

    # Signal quality gate: minimum SQI (0-100) with sensor contact
    quality_threshold: float = 80.0

    # Ring buffer capacity and readiness threshold (samples)
    buffer_capacity: int = 3000
    min_ready_samples: int = 120

    # Moving average window of the stabilizer (admitted raw values)
    stabilizer_window: int = 10

    # Spectral recompute cadence (seconds)
    spectral_interval_s: float = 3.0

    # Trailing window for HR max / min (seconds)
    hr_window_s: float = 120.0

    # Successive-difference thresholds for pNN50 / pNN20 (ms)
    pnn50_threshold_ms: float = 50.0
    pnn20_threshold_ms: float = 20.0

    # Frequency-domain resampling frequency (Hz)
    fs_resample: float = 4.0

    # Minimum uniform points for a spectral estimate (60 s at 4 Hz)
    min_spectral_points: int = 240

    # Series stability pre-check before spectral estimation
    unstable_change_ratio: float = 0.25
    max_unstable_fraction: float = 0.25

    # Spectral band limits (Hz)
    lf_band: Tuple[float, float] = (0.04, 0.15)
    hf_band: Tuple[float, float] = (0.15, 0.40)

    # Stress index histogram bin width (ms) and output scale
    stress_bin_ms: float = 50.0
    stress_scale: float = 1e-3

    def __post_init__(self) -> None:
        if self.buffer_capacity <= 0:
            raise ValueError("buffer_capacity must be positive")
        if not 0 < self.min_ready_samples <= self.buffer_capacity:
            raise ValueError("min_ready_samples must be in (0, buffer_capacity]")
        if self.stabilizer_window <= 0:
            raise ValueError("stabilizer_window must be positive")
        if not 0.0 <= self.quality_threshold <= 100.0:
            raise ValueError("quality_threshold must be within [0, 100]")
        if self.rr_min_ms >= self.rr_max_ms:
            raise ValueError("rr_min_ms must be lower than rr_max_ms")
        if self.spectral_interval_s <= 0:
            raise ValueError("spectral_interval_s must be positive")


@dataclass(frozen=True)
class ApiSettings:
    """
    HRV FastAPI service settings.

    Environment variables:
        HRV_API_HOST
        HRV_API_PORT
        HRV_API_START_CONSUMER  ("1" starts the Kafka consumer on startup)
    """

    host: str = os.getenv("HRV_API_HOST", "127.0.0.1")
    port: int = int(os.getenv("HRV_API_PORT", "8000"))
    start_consumer: bool = os.getenv("HRV_API_START_CONSUMER", "1") == "1"


@dataclass(frozen=True)
class AppSettings:
    paths: PathSettings = PathSettings()
    kafka: KafkaSettings = KafkaSettings()
    hrv: HRVSettings = HRVSettings()
    api: ApiSettings = ApiSettings()


# Single global config object
settings = AppSettings()
