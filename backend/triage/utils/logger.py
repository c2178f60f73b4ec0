"""
One-line JSON log records for the Actions log viewer.

Every module calls ``get_logger(__name__)`` and passes run context through
``extra=`` (run_id, action, stage, round, tool, ...). GitHub token literals are
masked before a record is written; Actions only masks registered secrets, and a
FIX_TOKEN echoed back in an API error body would otherwise leak.
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone

_CONTEXT_KEYS = (
    "run_id", "action", "stage", "round", "tool", "tokens", "duration_ms", "extra",
)
_TOKEN_PATTERN = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})")
_MASK = "***"


def mask_tokens(text: str) -> str:
    return _TOKEN_PATTERN.sub(_MASK, text)


class JSONFormatter(logging.Formatter):
    """Serializes a record and its context keys; timestamps are the record's creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in _CONTEXT_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return mask_tokens(json.dumps(entry, default=str))


def get_logger(name: str) -> logging.Logger:
    """Logger writing JSON lines to stdout at LOG_LEVEL (default INFO).

    Handlers are attached once per name; records do not propagate to the root
    logger, so library logging configuration cannot duplicate them.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))
    logger.propagate = False
    return logger
