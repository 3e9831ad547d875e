"""
Logging configuration for the Zone Sync service
"""

import logging
import logging.handlers
import sys
from pathlib import Path

from .config import get_settings


def setup_logging():
    """Configure application logging"""

    settings = get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper())

    if settings.LOG_FILE:
        log_file_path = Path(settings.LOG_FILE)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(settings.LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.LOG_FILE:
        file_handler = logging.handlers.RotatingFileHandler(
            settings.LOG_FILE,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # FastAPI/Uvicorn loggers
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)

    # SQLAlchemy logger (only show warnings and above)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

    # paramiko logs every channel open at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)

    logging.getLogger("zonesync.sync").setLevel(logging.INFO)
    logging.getLogger("zonesync.publish").setLevel(logging.INFO)
    logging.getLogger("zonesync.store").setLevel(logging.INFO)

    if settings.DEBUG:
        root_logger.setLevel(logging.DEBUG)
        logging.getLogger("zonesync").setLevel(logging.DEBUG)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name"""
    return logging.getLogger(name)


def get_sync_logger() -> logging.Logger:
    """Get orchestrator logger"""
    return logging.getLogger("zonesync.sync")


def get_publish_logger() -> logging.Logger:
    """Get zone publisher logger (one line per publish attempt)"""
    return logging.getLogger("zonesync.publish")


def get_store_logger() -> logging.Logger:
    """Get record store logger"""
    return logging.getLogger("zonesync.store")
