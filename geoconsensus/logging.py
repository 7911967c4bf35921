"""
Pipeline Logging

One logger tree, rooted at ``geoconsensus``, shared by every stage.
Pipeline events carry their context as ``extra`` fields so a single
evaluation can be followed from gate to fusion:

  - detector failures / timeouts     WARNING  (detector, error_type)
  - vetoes and FP suppressions       INFO     "False positive prevented: ..."
  - completed evaluations            INFO     (evaluation_id, stage, audit_hash)

Production emits JSON lines; development gets a plain text line with the
same context appended as key=value pairs. Selected with
GEOCONSENSUS_LOG_FORMAT ("json" | "text") and GEOCONSENSUS_LOG_LEVEL.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone


LOG_LEVEL = os.getenv("GEOCONSENSUS_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("GEOCONSENSUS_LOG_FORMAT", "json")

# Only these record attributes are copied out of ``extra``
EXTRA_FIELDS = (
    "evaluation_id", "candidate_id", "detector", "stage", "detected",
    "confidence", "quality_score", "duration_ms", "vetoing_agent",
    "rule_id", "pattern_id", "match_score", "audit_hash", "detectors",
    "error", "error_type", "status_code", "method", "path",
)

# Shown on text lines, in this order, when present
TEXT_CONTEXT_FIELDS = ("evaluation_id", "detector", "stage", "rule_id", "pattern_id", "error_type")

QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


def _context(record: logging.LogRecord, fields) -> dict:
    return {
        key: getattr(record, key)
        for key in fields
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record, EXTRA_FIELDS))

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Readable single line, pipeline context appended."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record, TEXT_CONTEXT_FIELDS)
        if not context:
            return line
        pairs = " ".join(f"{k}={v}" for k, v in context.items())
        # Keep a traceback, if any, below the context
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def setup_logging(log_format: str | None = None, level: str | None = None) -> logging.Logger:
    """Install a single stdout handler on the package logger."""
    root = logging.getLogger("geoconsensus")
    root.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if (log_format or LOG_FORMAT) == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"geoconsensus.{name}")
