"""Centralized logging helpers for the settlement service."""
from __future__ import annotations

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "bell24h-settlement"


def setup_logging(level: str = "INFO", *, env: str | None = None) -> None:
    """Configure root logging with a JSON formatter.

    Every record carries the service name (and environment when given) so
    lines from the API and the scheduler can be told apart downstream.
    """

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    static_fields = {"service": SERVICE_NAME}
    if env:
        static_fields["env"] = env

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            static_fields=static_fields,
        )
    )
    root_logger.addHandler(handler)

    # APScheduler logs every job run at INFO.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Return a logger configured with the shared root settings."""

    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["SERVICE_NAME", "setup_logging", "get_logger"]
