"""Structured logging configuration for the triage app.

Every record is emitted as one JSON object per line so that webhook
handling can be followed per repository, issue and delivery in any log
aggregator.

Usage
-----
::

    from triage_app.logging_config import setup_logging

    setup_logging("triage_app")
    log = logging.getLogger("triage_app.issue_opened")
    log.info("claimed", extra={"repo": "owner/repo", "issue_number": 7})
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = (
    "repo",
    "issue_number",
    "delivery_id",
    "installation_id",
    "threshold_source",
    "reason",
)


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, default=str)


class _StderrHandler(logging.Handler):
    """Handler that resolves ``sys.stderr`` at emit time.

    Keeps pytest's ``capsys`` able to intercept output after setup.
    """

    terminator = "\n"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            sys.stderr.write(msg + self.terminator)
            sys.stderr.flush()
        except Exception:
            self.handleError(record)


def setup_logging(
    name: str = "triage_app",
    level: str | None = None,
) -> logging.Logger:
    """Attach the JSON handler to *name* and return that logger.

    *level* defaults to the ``LOG_LEVEL`` environment variable or ``INFO``.
    Calling this twice is harmless; the second call only adjusts the level.
    """
    resolved_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, resolved_level, logging.INFO))
    if any(isinstance(h, _StderrHandler) for h in logger.handlers):
        return logger

    handler = _StderrHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    return logger
