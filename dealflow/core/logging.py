"""Logging setup shared by the API process and the job runner."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; extra record fields go under ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _BASE_RECORD_KEYS and not key.startswith("_") and key not in {"args", "msg"}
        }
        if record.exc_info:
            extras["exception"] = self.formatException(record.exc_info)

        payload["fields"] = extras
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Install a single stdout handler on the root logger (idempotent)."""
    root_logger = logging.getLogger()
    if getattr(root_logger, "_dealflow_configured", False):
        return

    handler = logging.StreamHandler(stream=sys.stdout)
    if json_logs:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.addHandler(handler)
    root_logger._dealflow_configured = True  # type: ignore[attr-defined]
