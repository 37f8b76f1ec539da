from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

from .paths import get_logs_dir, resolve_working_dir

_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED_ATTRS or key in payload:
                continue
            try:
                json.dumps(value)
            except TypeError:
                continue
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False)


def configure_json_logging(
    working_dir: Optional[Path] = None,
    name: str = "patientvault",
    *,
    level: int = logging.INFO,
) -> logging.Logger:
    """Attach a JSON-lines file handler to the *name* logger (idempotent)."""

    logs_dir = get_logs_dir(Path(working_dir) if working_dir else resolve_working_dir())
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "patientvault.log.jsonl"
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(log_path):
            break
    else:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
    return logger


class EventLogger:
    """Append structured JSONL events to ``logs/<filename>``."""

    def __init__(self, working_dir: Path, filename: str, *, logger_name: str) -> None:
        self._log_path = get_logs_dir(Path(working_dir)) / filename
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._logger = logging.getLogger(logger_name)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    def _write(self, payload: Dict[str, Any], *, level: int) -> None:
        payload.setdefault("ts", datetime.now(timezone.utc).isoformat())
        line = json.dumps(payload, sort_keys=True, default=str)
        with self._lock:
            try:
                with self._log_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                self._logger.warning("Unable to append to %s: %s", self._log_path, exc)
        self._logger.log(level, "%s", line)

    def event(self, *, event: str, ok: bool, **extra: Any) -> None:
        payload: Dict[str, Any] = {"event": event, "ok": bool(ok)}
        if extra:
            payload.update(extra)
        self._write(payload, level=logging.INFO if ok else logging.WARNING)


def redact_secret(value: str | None) -> str:
    if not value:
        return ""
    if len(value) <= 6:
        return "***"
    return f"{value[:3]}***{value[-2:]}"
