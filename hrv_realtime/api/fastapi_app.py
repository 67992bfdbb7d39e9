# hrv_realtime/api/fastapi_app.py
"""
FastAPI-based HRV snapshot service.

This service:
    - Owns a SessionRegistry (one HRVAnalysisService per device session).
    - Optionally starts the Kafka consumer that feeds the sessions.
    - Exposes each session's MetricsSnapshot as JSON.

Endpoints:
    - GET    /health
    - GET    /sessions
    - GET    /sessions/{device_id}/metrics
    - GET    /sessions/{device_id}/status
    - POST   /sessions/{device_id}/samples
    - DELETE /sessions/{device_id}
"""

import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from hrv_realtime.config.settings import settings
from hrv_realtime.hrv_metrics.service_hrv import HRVAnalysisService
from hrv_realtime.hrv_metrics.sessions import SessionRegistry
from hrv_realtime.streaming.rr_buffer import IntervalSample
from hrv_realtime.streaming.rr_consumer import start_consumer_background
from hrv_realtime.utils.logging_utils import get_logger


logger = get_logger(module_name="hrv_api", logfile_name="api.log")


class IntervalSampleIn(BaseModel):
    """Request body of POST /sessions/{device_id}/samples."""

    rr_ms: float = Field(..., description="Beat-to-beat interval in milliseconds")
    ts: Optional[float] = Field(None, description="Epoch seconds; server time if omitted")
    sensor_contact: bool = True
    quality: float = Field(100.0, ge=0.0, le=100.0, description="Signal quality index")


def _get_session_or_404(registry: SessionRegistry, device_id: str) -> HRVAnalysisService:
    service = registry.get(device_id)
    if service is None:
        raise HTTPException(status_code=404, detail=f"No active session for device '{device_id}'")
    return service


def create_app(
    registry: Optional[SessionRegistry] = None,
    start_consumer: Optional[bool] = None,
) -> FastAPI:
    """
    Builds the API around an explicitly owned session registry.

    Args:
        registry:
            Sessions to serve. A new SessionRegistry is created if None.
        start_consumer:
            Start the Kafka consumer on startup. Defaults to
            settings.api.start_consumer.
    """
    if registry is None:
        registry = SessionRegistry()
    if start_consumer is None:
        start_consumer = settings.api.start_consumer

    app = FastAPI(
        title="HRV Realtime Metrics API",
        version="1.0.0",
        description="Exposes quality-gated, stabilized HRV metrics per device session.",
    )

    # CORS open for browser clients during development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.registry = registry
    app.state.consumer_stop = None

    # --- Startup / shutdown --- #

    @app.on_event("startup")
    def startup_event() -> None:
        if not start_consumer:
            logger.info("HRV service starting up without Kafka consumer.")
            return
        logger.info(
            "HRV service starting up. Kafka bootstrap='%s', topic='%s', group_id='%s'",
            settings.kafka.bootstrap_servers,
            settings.kafka.rr_topic,
            settings.kafka.group_id,
        )
        _, app.state.consumer_stop = start_consumer_background(registry)

    @app.on_event("shutdown")
    def shutdown_event() -> None:
        if app.state.consumer_stop is not None:
            app.state.consumer_stop.set()
        registry.close_all()
        logger.info("HRV service shut down; all sessions closed.")

    # --- Health check --- #

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    # --- Sessions --- #

    @app.get("/sessions")
    def list_sessions() -> Dict[str, List[str]]:
        return {"devices": registry.device_ids()}

    @app.get("/sessions/{device_id}/metrics")
    def session_metrics(device_id: str) -> Dict[str, Any]:
        """
        Full MetricsSnapshot: per metric raw value, stabilized value,
        precedence-resolved value and availability flag.
        """
        service = _get_session_or_404(registry, device_id)
        return service.current_snapshot().to_dict()

    @app.get("/sessions/{device_id}/status")
    def session_status(device_id: str) -> Dict[str, Any]:
        """
        Session summary:
            - state (idle / accumulating / ready)
            - sample_count, accepted, rejected and per-reason rejections
            - scheduler_running
        """
        service = _get_session_or_404(registry, device_id)
        snapshot = service.current_snapshot()
        return {
            "device": device_id,
            "state": snapshot.state,
            "ready": snapshot.ready,
            "sample_count": snapshot.sample_count,
            "accepted": snapshot.accepted,
            "rejected": snapshot.rejected,
            "rejections": dict(snapshot.rejections),
            "scheduler_running": service.scheduler_running,
        }

    @app.post("/sessions/{device_id}/samples")
    def ingest_sample(device_id: str, body: IntervalSampleIn) -> Dict[str, Any]:
        sample = IntervalSample(
            ts=body.ts if body.ts is not None else time.time(),
            rr_ms=body.rr_ms,
            sensor_contacted=body.sensor_contact,
            quality_score=body.quality,
        )
        service = registry.open(device_id)
        accepted = service.ingest(sample)
        snapshot = service.current_snapshot()
        return {
            "device": device_id,
            "accepted": accepted,
            "state": snapshot.state,
            "sample_count": snapshot.sample_count,
        }

    @app.delete("/sessions/{device_id}")
    def end_session(device_id: str) -> Dict[str, str]:
        if not registry.close(device_id):
            raise HTTPException(status_code=404, detail=f"No active session for device '{device_id}'")
        logger.info("DELETE /sessions/%s -> session closed", device_id)
        return {"device": device_id, "status": "closed"}

    return app


# --- Local run entrypoint (uvicorn) --- #

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        create_app(),
        host=settings.api.host,
        port=settings.api.port,
    )
