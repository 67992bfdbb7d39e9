# Multi-device RR replay producer (round-robin streaming)
"""
Replays cleaned RR series from CSV files to Kafka as beat-interval events,
one simulated device per file, in a round-robin fashion.

Useful to drive the consumer + API end to end without a real sensor.
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from kafka import KafkaProducer

from hrv_realtime.config.settings import settings
from hrv_realtime.utils.logging_utils import get_logger


logger = get_logger(module_name="rr_producer", logfile_name="producer.log")

# Config-driven paths and Kafka parameters
RR_DIR: Path = settings.paths.rr_processed_dir
KAFKA_BOOTSTRAP: str = settings.kafka.bootstrap_servers
KAFKA_TOPIC: str = settings.kafka.rr_topic

# Upper limit for concurrently streamed devices (demo-friendly)
DEFAULT_DEVICE_LIMIT: int = 8


def load_replay_frame(csv_path: Path) -> pd.DataFrame:
    """
    Load one recording for replay.

    Expected columns:
        - 'rr'     : seconds  -> converted to ms
        - 'rr_ms'  : already in milliseconds
    Optional columns (replayed as-is so the quality gate sees them):
        - 'quality'         : SQI 0-100, default 100
        - 'sensor_contact'  : bool / 0-1, default True

    Returns:
        DataFrame with columns rr_ms, quality, sensor_contact; rows with a
        non-finite RR value are dropped.
    """
    df = pd.read_csv(csv_path)

    if "rr_ms" in df.columns:
        rr_ms = df["rr_ms"].astype(float)
    elif "rr" in df.columns:
        rr_ms = df["rr"].astype(float) * 1000.0
    else:
        raise ValueError(f"RR column not found in {csv_path}. Columns={list(df.columns)}")

    quality = df["quality"].astype(float) if "quality" in df.columns else 100.0
    contact = df["sensor_contact"].fillna(1).astype(bool) if "sensor_contact" in df.columns else True

    frame = pd.DataFrame({"rr_ms": rr_ms, "quality": quality, "sensor_contact": contact})
    frame = frame[np.isfinite(frame["rr_ms"].to_numpy())]
    return frame.reset_index(drop=True)


def load_rr_ms(csv_path: Path) -> np.ndarray:
    """RR intervals (ms) of a recording as a float64 array."""
    return load_replay_frame(csv_path)["rr_ms"].to_numpy(dtype=float)


def find_devices(rr_dir: Path = RR_DIR, limit: int = DEFAULT_DEVICE_LIMIT) -> List[str]:
    """
    Discover replayable recordings in the cleaned RR directory.

    Files:
        {code}_clean.csv  -> device id is the prefix.

    Returns:
        Sorted list of device ids, numeric ones first, limited by `limit`.
    """
    codes = [p.stem.replace("_clean", "") for p in rr_dir.glob("*_clean.csv")]

    # numeric sort when possible, non-numeric sent to the end
    def _sort_key(x: str) -> Tuple[int, str]:
        try:
            return int(x), x
        except ValueError:
            return 999_999, x

    return sorted(codes, key=_sort_key)[:limit]


def build_message(
    device: str,
    rr_ms: float,
    ts: Optional[float] = None,
    sensor_contact: bool = True,
    quality: float = 100.0,
) -> Dict[str, Any]:
    """One beat-interval event in the schema expected by rr_consumer."""
    return {
        "device": str(device),
        "ts": time.time() if ts is None else float(ts),
        "rr_ms": float(rr_ms),
        "sensor_contact": bool(sensor_contact),
        "quality": float(quality),
    }


def main(
    devices: Optional[List[str]] = None,
    loop: bool = True,
    min_sleep_s: float = 0.05,
) -> None:
    """
    Main producer loop.

    Args:
        devices:
            Recordings to stream. If None, uses `find_devices()`.
        loop:
            If True, wraps around when the end of a recording is reached.
            If False, stops streaming that device at the end of its series.
        min_sleep_s:
            Minimum sleep between consecutive sends.
    """
    if devices is None:
        devices = find_devices()

    if not devices:
        logger.warning("No recordings found in %s.", RR_DIR)
        return

    series: List[Tuple[str, pd.DataFrame, int]] = []
    for d in devices:
        csv_path = RR_DIR / f"{d}_clean.csv"
        if not csv_path.exists():
            logger.warning("File not found for device %s: %s", d, csv_path)
            continue

        frame = load_replay_frame(csv_path)
        if frame.empty:
            logger.warning("Empty RR series for device %s", d)
            continue

        # (device_id, recording, current_index)
        series.append((d, frame, 0))

    if not series:
        logger.warning("No valid RR series to stream, exiting.")
        return

    producer = KafkaProducer(
        bootstrap_servers=KAFKA_BOOTSTRAP,
        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
        acks=1,
    )

    logger.info(
        "Producing devices=%s to topic='%s' (loop=%s)",
        [d for d, _, _ in series],
        KAFKA_TOPIC,
        loop,
    )

    try:
        while True:
            any_active = False
            new_series: List[Tuple[str, pd.DataFrame, int]] = []

            # round-robin: one beat per device per cycle
            for device, frame, idx in series:
                if idx >= len(frame):
                    if loop:
                        idx = 0
                    else:
                        new_series.append((device, frame, idx))
                        continue

                row = frame.iloc[idx]
                rr = float(row["rr_ms"])
                producer.send(
                    KAFKA_TOPIC,
                    build_message(
                        device,
                        rr,
                        sensor_contact=bool(row["sensor_contact"]),
                        quality=float(row["quality"]),
                    ),
                )
                any_active = True

                # With several devices interleaved this is not exact real time,
                # but every device still gets regular updates.
                time.sleep(max(rr / 1000.0 / max(len(series), 1), min_sleep_s))

                new_series.append((device, frame, idx + 1))

            series = new_series
            producer.flush()

            if not any_active:
                # All devices exhausted and loop=False
                break

    finally:
        producer.flush()
        producer.close()
        logger.info("Producer done.")


if __name__ == "__main__":
    main(devices=None, loop=True)
