from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import IO, Optional


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 1700000000000, "lvl": "INFO", "name": "wallpaper.cache", "msg": "...", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(level: Optional[str]) -> int:
    name = (os.environ.get("LOG_LEVEL") or level or "INFO").upper()
    if name == "WARN":
        name = "WARNING"
    lvl = logging.getLevelName(name)
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None, *, stream: Optional[IO[str]] = None, force: bool = False) -> None:
    """
    Configure the root logger with JSON output.

    Level precedence:
      - env LOG_LEVEL
      - `level` (usually `logging.level` from config/params.yaml)
      - INFO

    Idempotent unless `force=True` (the service calls it again once the
    config file has been read).
    """
    root = logging.getLogger()
    if getattr(root, "_wallpaper_configured", False) and not force:
        return

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_level(level))
    root._wallpaper_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Module logger; makes sure the root logger is configured."""
    setup_logging()
    return logging.getLogger(name)
