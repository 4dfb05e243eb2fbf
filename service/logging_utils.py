# service/logging_utils.py
"""
Structured JSONL logs for the service and its modules.

Two daily files live under LOG_DIR:

    <ACTIVITY_LOG_PREFIX>-YYYY-MM-DD.jsonl   runs, pages, outcomes, summaries
    <ERROR_LOG_PREFIX>-YYYY-MM-DD.jsonl      failures and warnings

Every record is deep-redacted by key name before it is written and gets a
`_meta` block with host and pid. Paths are resolved per write, so a process
(or a test) can repoint LOG_DIR at any time.
"""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import logging
import os
import socket
from collections.abc import Iterable
from typing import Any

_DEFAULT_LOG_DIR = "/app/local/logs"
REDACTED = "***REDACTED***"

# Case-insensitive substrings; any key containing one has its value replaced.
REDACT_KEY_PATTERNS = (
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "xsrf",
    "resume_hash",
    "authorization",
    "cookie",
    "letter",
)

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


class LogSink:
    """
    One family of daily JSONL files. `max_bytes` > 0 enables size-based
    rotation on top of the per-day filename.
    """

    def __init__(self, prefix_env: str, default_prefix: str, max_bytes: int = 0) -> None:
        self.prefix_env = prefix_env
        self.default_prefix = default_prefix
        self.max_bytes = max_bytes

    @property
    def prefix(self) -> str:
        return os.getenv(self.prefix_env, self.default_prefix)

    def path_for(self, day: _dt.date | None = None) -> str:
        day = day or _dt.date.today()
        return os.path.join(get_log_dir(), f"{self.prefix}-{day.isoformat()}.jsonl")

    def write(self, record: dict[str, Any]) -> None:
        """
        Redact, stamp and append one record. Serialization errors surface
        before the file is touched; one transient OSError is retried.
        """
        path = self.path_for()
        payload = _stamp(_redact_deep(record, REDACT_KEY_PATTERNS))
        data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")
        try:
            self._append(path, data)
        except OSError:
            self._append(path, data)

    def _append(self, path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        self._rotate_if_large(path)
        # O_APPEND keeps concurrent single-line writes whole on POSIX.
        fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    def _rotate_if_large(self, path: str) -> None:
        if self.max_bytes <= 0:
            return
        try:
            if os.path.getsize(path) < self.max_bytes:
                return
        except FileNotFoundError:
            return
        stamp = _dt.datetime.now().strftime("%Y%m%d-%H%M%S")
        with contextlib.suppress(FileNotFoundError):
            os.replace(path, f"{path}.{stamp}")


ACTIVITY = LogSink("ACTIVITY_LOG_PREFIX", "activity", int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0")))
ERRORS = LogSink("ERROR_LOG_PREFIX", "error", int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0")))


# ---- Public API --------------------------------------------------------------


def get_log_dir() -> str:
    return os.getenv("LOG_DIR", _DEFAULT_LOG_DIR)


def write_activity_log(record: dict[str, Any]) -> None:
    """Persist one activity record. May raise on I/O or serialization errors."""
    ACTIVITY.write(record)


def write_error_log(record: dict[str, Any]) -> None:
    """Persist one error record, parallel to the activity log."""
    ERRORS.write(record)


def get_activity_log_path() -> str:
    return ACTIVITY.path_for()


def get_error_log_path() -> str:
    return ERRORS.path_for()


def redact(record: dict[str, Any], patterns: Iterable[str] | None = None) -> dict[str, Any]:
    """Redacted deep copy of `record`; the input is never mutated."""
    return _redact_deep(record, tuple(patterns) if patterns is not None else REDACT_KEY_PATTERNS)


class JsonlErrorHandler(logging.Handler):
    """
    Bridge stdlib logging into the error JSONL so library warnings
    (retries, failed pages, parse errors) end up next to structured records.
    """

    def __init__(self, level: int = logging.WARNING) -> None:
        super().__init__(level)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry: dict[str, Any] = {
                "logger": record.name,
                "level": record.levelname,
                "message": record.getMessage(),
            }
            if record.exc_info:
                entry["exc"] = logging.Formatter().formatException(record.exc_info)
            write_error_log(entry)
        except Exception:
            self.handleError(record)


# ---- Internals ---------------------------------------------------------------


def _stamp(record: dict[str, Any]) -> dict[str, Any]:
    meta = record.get("_meta")
    out = dict(record)
    out["_meta"] = {**(meta if isinstance(meta, dict) else {}), "host": _HOSTNAME, "pid": _PID}
    return out


def _scrub_bearer(value: str) -> str:
    if "bearer " not in value.lower():
        return value
    scheme, _, rest = value.partition(" ")
    return f"{scheme} {REDACTED}" if rest else REDACTED


def _redact_deep(value: Any, patterns: tuple[str, ...]) -> Any:
    if isinstance(value, dict):
        out: dict[Any, Any] = {}
        for k, v in value.items():
            if isinstance(k, str) and any(p in k.lower() for p in patterns):
                out[k] = REDACTED
            else:
                out[k] = _redact_deep(v, patterns)
        return out
    if isinstance(value, (list, tuple)):
        items = [_redact_deep(v, patterns) for v in value]
        return items if isinstance(value, list) else tuple(items)
    if isinstance(value, str):
        return _scrub_bearer(value)
    return value
