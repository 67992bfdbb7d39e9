# Consumes beat-interval events from a Kafka topic and feeds the per-device sessions.
"""
Kafka beat-interval consumer.

Responsibilities:
    - Subscribe to the configured RR topic.
    - Deserialize JSON messages coming from the beat detector (or rr_producer).
    - Route each IntervalSample into the HRVAnalysisService of its device.
    - Run in a resilient loop with automatic reconnect until stopped.

Message schema:
    {
        "device": <str>,            # "subject" accepted for older producers
        "ts": <float, epoch seconds>,
        "rr_ms": <float, milliseconds>,
        "sensor_contact": <bool>,   # optional, default True
        "quality": <float 0-100>    # optional, default 100
    }

Configuration:
    - Kafka connection and topic: hrv_realtime.config.settings.settings.kafka
"""

import json
import threading
import time
from typing import Any, Optional, Tuple

from kafka import KafkaConsumer

from hrv_realtime.config.settings import settings
from hrv_realtime.hrv_metrics.sessions import SessionRegistry
from hrv_realtime.streaming.rr_buffer import IntervalSample
from hrv_realtime.utils.logging_utils import get_logger


logger = get_logger(module_name="rr_consumer", logfile_name="consumer.log")

# Centralized config
KAFKA_BOOTSTRAP: str = settings.kafka.bootstrap_servers
KAFKA_TOPIC: str = settings.kafka.rr_topic
KAFKA_GROUP_ID: str = settings.kafka.group_id

RECONNECT_DELAY_S: float = 2.0


def parse_message(data: Any) -> Optional[Tuple[str, IntervalSample]]:
    """
    Converts one decoded message into (device_id, IntervalSample).

    Returns None for messages that do not follow the schema.
    """
    if not isinstance(data, dict):
        return None
    if "rr_ms" not in data:
        return None

    device = data.get("device", data.get("subject"))
    if device is None:
        return None

    try:
        sample = IntervalSample(
            ts=float(data.get("ts", time.time())),
            rr_ms=float(data["rr_ms"]),
            sensor_contacted=bool(data.get("sensor_contact", True)),
            quality_score=float(data.get("quality", 100.0)),
        )
    except (TypeError, ValueError):
        return None

    return str(device), sample


def handle_message(registry: SessionRegistry, data: Any) -> bool:
    """
    Routes one message into its device session.

    Returns:
        True if the sample was admitted into the session buffer.
    """
    parsed = parse_message(data)
    if parsed is None:
        logger.warning("Skipped malformed message: %r", data)
        return False

    device, sample = parsed
    return registry.open(device).ingest(sample)


def _run_consumer_forever(registry: SessionRegistry, stop_event: threading.Event) -> None:
    """
    Blocking loop that continuously consumes RR messages from Kafka
    and feeds them into the session registry.

    Behaviour:
        - Creates a KafkaConsumer inside a retry loop.
        - On any exception (network, broker restart, etc.), waits briefly
          and then reconnects.
        - The consumer iterator times out every second so `stop_event`
          is honoured promptly.
    """
    while not stop_event.is_set():
        consumer: Optional[KafkaConsumer] = None

        try:
            consumer = KafkaConsumer(
                KAFKA_TOPIC,
                bootstrap_servers=KAFKA_BOOTSTRAP,
                group_id=KAFKA_GROUP_ID,
                auto_offset_reset="latest",
                enable_auto_commit=True,
                consumer_timeout_ms=1000,
                value_deserializer=lambda v: json.loads(v.decode("utf-8")),
            )

            logger.info(
                "Listening on topic='%s' (bootstrap=%s, group_id=%s)",
                KAFKA_TOPIC,
                KAFKA_BOOTSTRAP,
                KAFKA_GROUP_ID,
            )

            while not stop_event.is_set():
                for msg in consumer:
                    handle_message(registry, msg.value)
                    if stop_event.is_set():
                        break

        except Exception as e:
            # Any error (broker down, network, bad payload encoding): log and retry
            logger.error("Consumer error: %r (retrying in %.0fs)", e, RECONNECT_DELAY_S)
            stop_event.wait(RECONNECT_DELAY_S)

        finally:
            if consumer is not None:
                try:
                    consumer.close()
                except Exception:
                    logger.warning("Failed to close Kafka consumer cleanly.", exc_info=True)

    logger.info("Consumer loop stopped.")


def start_consumer_background(
    registry: SessionRegistry,
    stop_event: Optional[threading.Event] = None,
) -> Tuple[threading.Thread, threading.Event]:
    """
    Starts the Kafka RR consumer in a daemon thread.

    Intended to be called once at API startup; set the returned event to stop it.
    """
    if stop_event is None:
        stop_event = threading.Event()

    t = threading.Thread(
        target=_run_consumer_forever,
        args=(registry, stop_event),
        name="rr-consumer",
        daemon=True,
    )
    t.start()
    logger.info("Background consumer thread started (daemon=%s)", t.daemon)
    return t, stop_event


if __name__ == "__main__":
    # Standalone: block in the consumer loop with scheduler-driven sessions.
    _run_consumer_forever(SessionRegistry(), threading.Event())
