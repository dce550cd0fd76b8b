"""
logs.py

Purpose:
  Process-wide logging setup. Console output always; when LOG_DIR is set a
  JSON-lines copy is written to LOG_DIR/backend.jsonl (tailed by /demo/logs/tail).
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

LOG_FILE_NAME = "backend.jsonl"

_CONFIGURED = False


class JsonLinesFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def log_file_path(log_dir: Optional[str]) -> Optional[str]:
    if not log_dir:
        return None
    return os.path.join(log_dir, LOG_FILE_NAME)


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    root = logging.getLogger("greenguard")
    root.setLevel(level)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(console)

    path = log_file_path(log_dir)
    if path:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(JsonLinesFormatter())
        root.addHandler(file_handler)

    _CONFIGURED = True
