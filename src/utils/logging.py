"""Shared logging configuration and logger factory."""

from __future__ import annotations

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_LOG_DIR_ENV = "SMART_SLIDESHOW_LOG_DIR"
_LOG_FILE_NAME = "smart_slideshow.log"

_CONFIGURE_LOCK = Lock()
_configured = False
_file_handler: RotatingFileHandler | None = None


def _default_log_root() -> Path:
    override = os.getenv(_LOG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return _PROJECT_ROOT / "log"


def _extra_fields(record: logging.LogRecord, ignore: set[str]) -> Dict[str, Any]:
    standard_keys = logging.makeLogRecord({}).__dict__.keys()
    skipped = set(standard_keys) | ignore
    return {key: value for key, value in record.__dict__.items() if key not in skipped}


class _StructuredFormatter(logging.Formatter):
    """Formatter that renders records as single-line JSON objects (JSONL-friendly)."""

    def format(self, record: logging.LogRecord) -> str:
        extras = _extra_fields(record, {"stack_info"})

        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if extras:
            payload.update(extras)

        try:
            return json.dumps(payload, ensure_ascii=False, sort_keys=True)
        except TypeError:
            safe_payload: Dict[str, Any] = {
                key: (str(value) if not isinstance(value, (str, int, float, bool, type(None))) else value)
                for key, value in payload.items()
            }
            return json.dumps(safe_payload, ensure_ascii=False, sort_keys=True)


class _ConsoleFormatter(logging.Formatter):
    """Formatter for console output that renders ``extra`` fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _extra_fields(record, {"stack_info", "asctime", "message"})
        if not extras:
            return base

        parts = [f"{key}={value!r}" for key, value in sorted(extras.items())]
        return f"{base} | " + " ".join(parts)


def _install_file_handler(root: logging.Logger, target_dir: Path) -> None:
    global _file_handler

    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target_dir / _LOG_FILE_NAME,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        # Console logging still works when the log directory is read-only.
        root.warning("log_file_unavailable", extra={"log_dir": str(target_dir), "error": str(exc)})
        return

    handler.setFormatter(_StructuredFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
    _file_handler = handler


def configure_logging(level: str | int = logging.INFO, log_dir: Path | None = None) -> None:
    """Install console and rotating-file handlers on the root logger.

    Safe to call more than once. The first call installs the handlers; later
    calls adjust the level and, when ``log_dir`` is given, move the JSONL
    file to that directory. Library use falls back to the defaults on the
    first :func:`get_logger` call.
    """

    global _configured

    resolved_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(resolved_level, int):
        resolved_level = logging.INFO

    with _CONFIGURE_LOCK:
        root = logging.getLogger()
        root.setLevel(resolved_level)

        if _configured:
            if log_dir is not None and _file_handler is not None:
                current = Path(_file_handler.baseFilename).parent
                if current != log_dir.expanduser().resolve():
                    _install_file_handler(root, log_dir.expanduser())
            return
        _configured = True

        if root.handlers:
            # Host application (or pytest) owns the root handlers.
            return

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(_ConsoleFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(console_handler)

        _install_file_handler(root, (log_dir or _default_log_root()).expanduser())


class _MergingAdapter(logging.LoggerAdapter):
    """Adapter that merges call-site ``extra`` with the adapter-level fields."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        call_extra = kwargs.get("extra") or {}
        kwargs["extra"] = {**(self.extra or {}), **call_extra}
        return msg, kwargs


def get_logger(name: str, extra: Dict[str, Any] | None = None) -> logging.LoggerAdapter:
    """Return a structured logger adapter for the given name.

    Callers can pass a base ``extra`` mapping that is attached to every log
    record emitted through the returned adapter.
    """

    if not _configured:
        configure_logging()
    logger = logging.getLogger(name)
    return _MergingAdapter(logger, extra or {})


__all__ = ["configure_logging", "get_logger"]
