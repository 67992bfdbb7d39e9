# hrv_realtime/utils/logging_utils.py
"""
Central logging utilities for the project.

Purpose:
    - Consistent log format for every module.
    - Log files are written to settings.paths.log_dir ("logs" under the
      project root unless HRV_LOG_DIR is set).
    - INFO / WARNING / ERROR levels for lifecycle events; DEBUG for the
      routine per-sample rejections.

Usage:
    from hrv_realtime.utils.logging_utils import get_logger

    logger = get_logger(module_name="hrv_service", logfile_name="service.log")
    logger.info("Session started.")
    logger.error("Unexpected error", exc_info=True)
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from hrv_realtime.config.settings import settings


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(
    module_name: str,
    logfile_name: str,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Returns a file-backed logger for a given module.

    Args:
        module_name:
            Logger name (e.g. "rr_consumer", "hrv_service", "hrv_api").
        logfile_name:
            Log file name (e.g. "consumer.log").
            The file is written into `log_dir`.
        level:
            Log level (logging.INFO, logging.WARNING, logging.ERROR, ...).
        max_bytes:
            Maximum size of a rotating log file (default: 5 MB).
        backup_count:
            Maximum number of backups (e.g. consumer.log.1, consumer.log.2, ...).
        log_dir:
            Target directory. Defaults to settings.paths.log_dir.

    Returns:
        logging.Logger object.
    """
    logger = logging.getLogger(module_name)

    # Configured once; repeated calls must not stack handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    target_dir = Path(log_dir) if log_dir is not None else settings.paths.log_dir
    target_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        filename=target_dir / logfile_name,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(file_handler)

    # No propagation to parent loggers (avoids duplicated lines)
    logger.propagate = False

    return logger
