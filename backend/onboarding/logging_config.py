"""Logging setup for the onboarding API, automation scheduler and Temporal worker.

Engine modules log through ``logging.getLogger("onboarding.<area>")`` and
reach the handlers installed on the ``onboarding`` parent by
``configure_engine_logging()``. Long-running areas (automation, SSE, worker,
api) get their own file so a scan or a bulk job can be followed in isolation.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

# Log directory, configurable via LOG_DIR env var for Docker
LOG_DIR = Path(os.getenv("LOG_DIR", str(Path(__file__).parent.parent / "logs")))

LOG_LEVEL = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

# Containers usually ship stdout only
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() in ("1", "true", "yes", "on")

FILE_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(message)s"

ENGINE_LOGGER = "onboarding"

# Prevent duplicate handlers
_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: str, level: Optional[int] = None) -> logging.Logger:
    """Attach console (and optionally file) handlers to ``name`` once.

    Args:
        name: Logger name (e.g., 'onboarding.automation', 'worker', 'api')
        filename: Log file under LOG_DIR (e.g., 'automation.log')
        level: Overrides LOG_LEVEL for this logger

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if name in _configured_loggers:
        return logger

    level = LOG_LEVEL if level is None else level
    logger.setLevel(level)
    logger.propagate = False  # Prevent duplicate logs

    if LOG_TO_FILE:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(LOG_DIR / filename, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(sh)

    _configured_loggers.add(name)
    return logger


def configure_engine_logging() -> logging.Logger:
    """Route every ``onboarding.*`` module logger to onboarding.log."""
    return setup_logger(ENGINE_LOGGER, "onboarding.log")


# Pre-configured loggers
def get_automation_logger() -> logging.Logger:
    """Logger for automation scans, rule actions and the scheduler."""
    return setup_logger("onboarding.automation", "automation.log")


def get_sse_logger() -> logging.Logger:
    """Logger for job and notification streams (FastAPI side)."""
    return setup_logger("sse", "sse.log")


def get_worker_logger() -> logging.Logger:
    """Logger for the Temporal worker and bulk activities."""
    return setup_logger("worker", "worker.log")


def get_api_logger() -> logging.Logger:
    """Logger for API lifecycle and request handling."""
    return setup_logger("api", "api.log")
