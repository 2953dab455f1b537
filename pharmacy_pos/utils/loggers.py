# pharmacy_pos/utils/loggers.py
"""
Logging helpers.

Public API
----------
- get_logger(name, json_lines=None, file_path=None) -> logging.Logger
      stream logger; human-readable by default, JSON lines when asked for
      (or PHARMACY_POS_LOG_FORMAT=json). A file path (or PHARMACY_POS_LOG_FILE)
      adds a JSON-lines file handler.
- JsonLineFormatter                        one JSON object per line
- log_event(logger, op, phase, message, extra)
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

from ..config import LOG_FILE, LOG_FORMAT, LOG_LEVEL

__all__ = ["get_logger", "JsonLineFormatter", "TextFormatter", "log_event"]

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class TextFormatter(logging.Formatter):
    """The usual one-line format, with any structured payload appended as JSON."""

    def __init__(self) -> None:
        super().__init__(_FORMAT)

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().format(record)
        extra = getattr(record, "extra_payload", None)
        if isinstance(extra, dict):
            line += " " + json.dumps(extra, ensure_ascii=False, default=str, sort_keys=True)
        return line


class JsonLineFormatter(logging.Formatter):
    """
    Minimal JSON-lines formatter:
      {"ts":"2025-09-16T12:00:01.123Z","level":"INFO","name":"pharmacy_pos.ops","msg":"...","extra":{...}}
    """
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        payload = {
            "ts": ts,
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if isinstance(getattr(record, "extra_payload", None), dict):
            payload["extra"] = record.extra_payload
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def get_logger(
    name: str = "pharmacy_pos",
    json_lines: bool | None = None,
    file_path: str | Path | None = None,
) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    if json_lines is None:
        json_lines = LOG_FORMAT == "json"
    ch = logging.StreamHandler()
    ch.setFormatter(JsonLineFormatter() if json_lines else TextFormatter())
    logger.addHandler(ch)

    file_path = file_path or LOG_FILE
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path), mode="a", encoding="utf-8", delay=True)
        fh.setFormatter(JsonLineFormatter())
        logger.addHandler(fh)
    return logger


def log_event(
    logger: logging.Logger,
    op: str,
    phase: str,
    message: str,
    extra: Dict[str, object] | None = None,
    level: int = logging.INFO,
) -> None:
    """
    Log a structured event line.

    Args:
        op: Operation name, e.g. "sales.create".
        phase: "start", "ok" or "error".
        extra: Additional key/values; never overrides op/phase.
    """
    extra_payload: Dict[str, object] = {"op": op, "phase": phase}
    if extra:
        for k, v in extra.items():
            if k not in extra_payload:
                extra_payload[k] = v
    logger.log(level, message, extra={"extra_payload": extra_payload})
