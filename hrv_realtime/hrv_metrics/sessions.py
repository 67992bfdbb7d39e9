# hrv_realtime/hrv_metrics/sessions.py
"""
Explicit owner of one HRVAnalysisService per active device session.

The registry is constructed by the application entry point and injected into
the adapters (Kafka consumer, FastAPI app); there is no module-level instance.
"""

import time
from threading import Lock
from typing import Callable, Dict, List, Optional

from hrv_realtime.config.settings import HRVSettings, settings
from hrv_realtime.hrv_metrics.service_hrv import HRVAnalysisService
from hrv_realtime.utils.logging_utils import get_logger


logger = get_logger(module_name="hrv_sessions", logfile_name="sessions.log")


class SessionRegistry:
    def __init__(
        self,
        config: HRVSettings = settings.hrv,
        clock: Callable[[], float] = time.time,
        run_scheduler: bool = True,
    ) -> None:
        """
        Args:
            config:
                Settings handed to every new HRVAnalysisService.
            clock:
                Time source shared by the services.
            run_scheduler:
                If True, each opened session gets its own spectral scheduler
                thread. Tests drive tick() by hand and pass False.
        """
        self.config = config
        self.run_scheduler = run_scheduler
        self._clock = clock
        self._sessions: Dict[str, HRVAnalysisService] = {}
        self._lock = Lock()

    def open(self, device_id: str) -> HRVAnalysisService:
        """Return the session of `device_id`, creating it if needed."""
        key = str(device_id)
        with self._lock:
            service = self._sessions.get(key)
            if service is None:
                service = HRVAnalysisService(config=self.config, clock=self._clock, name=key)
                if self.run_scheduler:
                    service.start_scheduler()
                self._sessions[key] = service
                logger.info("Opened session for device '%s'.", key)
            return service

    def get(self, device_id: str) -> Optional[HRVAnalysisService]:
        with self._lock:
            return self._sessions.get(str(device_id))

    def close(self, device_id: str) -> bool:
        """Reset and drop the session. Returns False for unknown devices."""
        with self._lock:
            service = self._sessions.pop(str(device_id), None)
        if service is None:
            return False
        service.reset()
        service.close()
        logger.info("Closed session for device '%s'.", device_id)
        return True

    def device_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def close_all(self) -> None:
        for device_id in self.device_ids():
            self.close(device_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return str(device_id) in self._sessions
