"""Central logging configuration for the grouping service.

Usage: from .logging_config import configure_logging; configure_logging()

Writes key=value lines to stdout by default, JSON lines with LOG_JSON=true,
and optionally per-logger rotating files with LOG_TO_FILES=true.
"""
from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Optional

# record attributes that are logging internals rather than context
_RESERVED_ATTRS = {
    "args", "msg", "message", "exc_info", "exc_text", "stack_info", "lineno",
    "pathname", "filename", "module", "created", "msecs", "relativeCreated",
    "funcName", "thread", "threadName", "processName", "process", "taskName",
    "levelno", "levelname", "name", "asctime",
}

_SIZE_SUFFIXES = (("mb", 1024 * 1024), ("m", 1024 * 1024), ("kb", 1024), ("k", 1024))


def _utc_timestamp(record: logging.LogRecord) -> str:
    stamp = datetime.fromtimestamp(record.created, timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}+00:00"


class KeyValueFormatter(logging.Formatter):
    """Key=value formatter.

    Example output:
        2026-03-02T09:00:00.120+00:00 INFO groupsmith.services.grouping.candidates grouping.candidates done ok=4 request_id=...
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        record.asctime = _utc_timestamp(record)
        extras = []
        for key in ("request_id", "client_ip", "path", "method", "job_id"):
            val = getattr(record, key, None)
            if val is not None:
                extras.append(f"{key}={val}")
        msg = super().format(record)
        extras_s = " " + " ".join(extras) if extras else ""
        return f"{record.asctime} {record.levelname} {record.name} {msg}{extras_s}"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        base = {
            "ts": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key.startswith('_') or key in _RESERVED_ATTRS:
                continue
            if isinstance(value, (str, int, float, bool)) or value is None:
                base.setdefault(key, value)
        if record.exc_info and record.exc_info[0] is not None:
            base["exc_type"] = record.exc_info[0].__name__
        return json.dumps(base, ensure_ascii=False)


class IdMaskFilter(logging.Filter):
    """Mask person ids that look like e-mail addresses (rosters often key people by address)."""

    _email_re = re.compile(r"([a-zA-Z0-9_.+-]{1,3})[a-zA-Z0-9_.+-]*@([a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+)")

    def mask(self, text: str) -> str:
        return self._email_re.sub(lambda m: f"{m.group(1)}***@{m.group(2)}", text)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
            elif isinstance(record.args, dict):
                record.args = {k: self.mask(v) if isinstance(v, str) else v for k, v in record.args.items()}
        return True


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in {"1", "true", "yes"}


def _parse_size(spec: str, default: int = 5 * 1024 * 1024) -> int:
    text = spec.strip().lower()
    multiplier = 1
    for suffix, factor in _SIZE_SUFFIXES:
        if text.endswith(suffix):
            text = text[: -len(suffix)]
            multiplier = factor
            break
    try:
        return int(text) * multiplier
    except ValueError:
        return default


def _build_file_handler(base_dir: str, logger_name: str, rotate_mode: str, rotate_param: str, backup: int) -> logging.Handler:
    """Rotating handler writing to ``<base_dir>/<logger_name>/<date>.log``.

    rotate_mode: 'size' (rotate_param like '10MB') or 'time' (rotate_param like 'midnight').
    """
    log_dir = os.path.join(base_dir, logger_name.replace('.', '_') or 'root')
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, f"{datetime.now(timezone.utc):%Y-%m-%d}.log")
    if rotate_mode == 'size':
        return RotatingFileHandler(log_path, maxBytes=_parse_size(rotate_param), backupCount=backup, encoding='utf-8')
    return TimedRotatingFileHandler(log_path, when=rotate_param or 'midnight', backupCount=backup, encoding='utf-8', utc=True)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    - LOG_LEVEL (default INFO), LOG_JSON, LOG_TO_FILES, LOG_DIR,
      LOG_ROTATE_MODE ('size' or 'time'), LOG_ROTATE_PARAM, LOG_BACKUP_COUNT.
    - Calling it again is a no-op.
    """
    if getattr(configure_logging, "_configured", False):  # type: ignore[attr-defined]
        return

    log_level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    json_mode = _env_bool("LOG_JSON", False)
    to_files = _env_bool("LOG_TO_FILES", False)
    base_dir = os.getenv("LOG_DIR", "logs")
    rotate_mode = 'size' if os.getenv("LOG_ROTATE_MODE", "size").lower() == 'size' else 'time'
    rotate_param = os.getenv("LOG_ROTATE_PARAM", "10MB")
    backup_count = int(os.getenv("LOG_BACKUP_COUNT", "7"))

    root = logging.getLogger()
    root.setLevel(log_level)
    if not getattr(root, "_gs_custom", False):
        for h in list(root.handlers):
            root.removeHandler(h)

    formatter: logging.Formatter = JsonFormatter() if json_mode else KeyValueFormatter("%(message)s")
    mask = IdMaskFilter()

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(mask)
    root.addHandler(handler)
    root._gs_custom = True  # type: ignore[attr-defined]

    for noisy in ["uvicorn", "httpx", "asyncio"]:
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING").upper())

    if to_files:
        for name in ("groupsmith.services.grouping", "request", "root"):
            target = root if name == "root" else logging.getLogger(name)
            if any(isinstance(h, (RotatingFileHandler, TimedRotatingFileHandler)) for h in target.handlers):
                continue
            fh = _build_file_handler(base_dir, name, rotate_mode, rotate_param, backup_count)
            fh.setFormatter(formatter)
            fh.addFilter(mask)
            target.addHandler(fh)

    configure_logging._configured = True  # type: ignore[attr-defined]


__all__ = ["configure_logging", "KeyValueFormatter", "JsonFormatter", "IdMaskFilter"]
