import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from koi_availability.base.config import settings

# === Configurable via settings / ENV ===
LOG_DIR = Path(os.getenv("LOG_DIR", "./logs"))
LOG_LEVEL = settings.LOG_LEVEL_NUMERIC
USE_JSON_LOGGING = settings.ENABLE_JSON_LOGS
ENVIRONMENT = settings.ENVIRONMENT.lower()
SERVICE_NAME = os.getenv("SERVICE_NAME", "koi-availability")
SENTRY_DSN = os.getenv("SENTRY_DSN", "")

LOG_DIR.mkdir(parents=True, exist_ok=True)


def get_formatter(use_json: bool, service: str) -> logging.Formatter:
    if use_json:
        return jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level"},
            static_fields={"service": service, "environment": ENVIRONMENT},
        )
    return logging.Formatter(
        fmt=f"%(asctime)s | %(levelname)s | %(name)s | [svc={service}] | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


_sentry_initialized = False


def _init_sentry(logger: logging.Logger) -> None:
    global _sentry_initialized
    if _sentry_initialized:
        return

    import sentry_sdk
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_logging = LoggingIntegration(
        level=logging.ERROR,
        event_level=logging.ERROR
    )
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=ENVIRONMENT,
        integrations=[sentry_logging],
        traces_sample_rate=0.05,
    )
    _sentry_initialized = True
    logger.info("[Logging] Sentry integration initialized.")


def setup_logger(
    name: str,
    log_file: Optional[str] = None,
    level: int = LOG_LEVEL,
    use_json: bool = USE_JSON_LOGGING,
    service: str = SERVICE_NAME
) -> logging.Logger:
    """
    Sets up a logger with rotating file + stream handler
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False  # Avoid double logging in root

    # Clear old handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = get_formatter(use_json, service)

    # === Stream Handler (STDOUT) ===
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    # === File Handler (Rotating) ===
    if log_file:
        file_path = LOG_DIR / log_file
        file_handler = RotatingFileHandler(str(file_path), maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # === Sentry Integration (Optional) ===
    if SENTRY_DSN:
        _init_sentry(logger)

    return logger


# === Preconfigured loggers ===
app_logger = setup_logger("app", log_file="app.log")
ingestor_logger = setup_logger("schedule_ingestor", log_file="ingestor.log")
availability_logger = setup_logger("availability", log_file="availability.log")
fetch_logger = setup_logger("schedule_fetch", log_file="fetch.log")

# Usage:
# logger = logging.getLogger("schedule_fetch")
# logger.warning("[Fetch] Falling back to cache", extra={"master_id": master_id})
