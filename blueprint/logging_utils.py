"""Structured JSON logging for the SDK, the signing service and the CLI."""

from __future__ import annotations

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra={"context": {...}}`` is kept verbatim."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.__dict__.get("tx_hash"):
            payload["tx_hash"] = record.__dict__["tx_hash"]
        if record.__dict__.get("context"):
            payload["context"] = record.__dict__["context"]
        return json.dumps(payload, default=str)


def configure_logging(log_dir: Optional[str] = None, log_level: str = "INFO") -> None:
    """Configure structured logging with rotation.

    Parameters
    ----------
    log_dir:
        Directory where log files will be stored; console only when omitted.
    log_level:
        Logging level name (case insensitive).
    """

    level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = JsonFormatter()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(os.path.join(log_dir, "blueprint.log"), maxBytes=5_000_000, backupCount=5)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)


__all__ = ["JsonFormatter", "configure_logging"]
