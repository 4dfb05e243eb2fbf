from __future__ import annotations

import logging
from typing import Any

# Structured records go to the service's JSONL writer when the module runs
# inside the service; standalone imports use stdlib logging. Silent on import.
_logging_backend = None
try:
    from service import logging_utils as _svc_logging  # type: ignore

    _logging_backend = _svc_logging
except Exception:
    _logging_backend = None

_REDACTED = "***REDACTED***"

# Exact top-level keys that never reach a log line. The service writer runs a
# deeper substring pass on top of this.
_REDACT_KEYS = frozenset({
    "password",
    "token",
    "xsrf",
    "_xsrf",
    "cookie",
    "cookies",
    "resume_hash",
    "secret",
    "authorization",
    "letter",
})


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    out = dict(record)
    for k in out:
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith(("_token", "_secret")):
            out[k] = _REDACTED
    return out


def _emit(kind: str, record: dict[str, Any]) -> None:
    payload = _redact_record(record)
    writer = getattr(_logging_backend, f"write_{kind}_log", None) if _logging_backend else None
    if writer is not None:
        try:
            writer(payload)
            return
        except Exception:
            logging.getLogger(__name__).debug("%s log write failed", kind, exc_info=True)
    level = logging.ERROR if kind == "error" else logging.INFO
    logging.getLogger(f"auto_responder.{kind}").log(level, payload)


def activity(record: dict[str, Any]) -> None:
    """Write a structured activity record (JSONL when available, stdlib otherwise)."""
    _emit("activity", record)


def error(record: dict[str, Any]) -> None:
    """Write a structured error record (JSONL when available, stdlib otherwise)."""
    _emit("error", record)


class Recorder:
    """
    Per-component front end: every record carries `component` and `op`.

        REC = Recorder("auto_responder.pagination")
        REC.activity("page", page=3, entries=20)
    """

    def __init__(self, component: str) -> None:
        self.component = component

    def activity(self, op: str, **fields: Any) -> None:
        activity({"component": self.component, "op": op, **fields})

    def error(self, op: str, **fields: Any) -> None:
        error({"component": self.component, "op": op, **fields})
