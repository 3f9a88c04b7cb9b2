"""
Structured scenario logging

Every scenario ends with exactly one JSON line describing its verdict:

    {"name": "s3lock", "function": "...", "args": {...}, "duration": 1234,
     "status": "PASS" | "FAIL" | "NA", "alert": "...", "message": "...",
     "error": "..."}

Everything else (state transitions, cleanup trouble) goes through ordinary
loggers under the ``s3lock`` namespace.
"""

import json
import logging
import sys
from typing import Any, Dict, Optional, TextIO

LOGGER_NAME = "s3lock"

# Verdict status -> status field in the log line. Skipped scenarios are
# reported as "NA" (not applicable to this endpoint).
LOG_STATUS = {"PASS": "PASS", "FAIL": "FAIL", "SKIPPED": "NA"}


def get_logger(name: str = "") -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAME}.{name}" if name else LOGGER_NAME)


class JSONFormatter(logging.Formatter):
    """Render records carrying a ``verdict`` extra as one JSON object"""

    def format(self, record: logging.LogRecord) -> str:
        entry = getattr(record, "verdict", None)
        if entry is None:
            entry = {
                "name": LOGGER_NAME,
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, sort_keys=True)


def configure_logging(
    level: int = logging.INFO, stream: Optional[TextIO] = None
) -> logging.Handler:
    """Install the JSON formatter on the ``s3lock`` logger"""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    logger = get_logger()
    logger.handlers = [handler]
    logger.setLevel(level)
    logger.propagate = False
    return handler


def verdict_entry(
    function: str,
    args: Dict[str, Any],
    status: str,
    duration: float,
    message: str = "",
    error: str = "",
) -> Dict[str, Any]:
    entry = {
        "name": LOGGER_NAME,
        "function": function,
        "args": args,
        "duration": int(duration * 1000),
        "status": LOG_STATUS.get(status, status),
    }
    if status == "FAIL":
        entry["alert"] = "object-lock conformance failure"
    if message:
        entry["message"] = message
    if error:
        entry["error"] = error
    return entry


def log_verdict(logger: logging.Logger, entry: Dict[str, Any]) -> None:
    level = logging.ERROR if entry["status"] == "FAIL" else logging.INFO
    logger.log(level, entry.get("message", entry["status"]), extra={"verdict": entry})
