# service/runner.py
"""
Execute one module run and leave a single activity record behind.

A "module" is any importable package exposing ``run(**kwargs)`` either in
``<module>.main`` or at the package root. Job kwargs arrive as loosely typed
config or CLI strings and are normalised here before the call.
"""

from __future__ import annotations

import importlib
import json
import logging
import os
import time
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any

from modules.auto_responder.lib.utils import now_iso
from service import logging_utils

log = logging.getLogger(__name__)

ENV_SUFFIX = "_env"
_TRUE = frozenset({"true", "t", "yes", "y", "on", "1"})
_FALSE = frozenset({"false", "f", "no", "n", "off", "0"})


def coerce_value(value: Any) -> Any:
    """JSON containers, then booleans, then numbers; anything else is returned as is."""
    if not isinstance(value, str):
        return value
    s = value.strip()
    if s[:1] in "{[" and s[-1:] in "}]":
        try:
            return json.loads(s)
        except ValueError:
            pass
    low = s.lower()
    if low in _TRUE:
        return True
    if low in _FALSE:
        return False
    if not any(c.isdigit() for c in s):
        return value
    try:
        return int(s)
    except ValueError:
        pass
    try:
        return float(s)
    except ValueError:
        return value


def normalize_kwargs(kwargs: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Prepare job kwargs for ``run(**kwargs)``.

    ``<name>_env: VAR`` is replaced by ``<name>: os.environ[VAR]`` (empty when
    unset) unless ``<name>`` is given explicitly. Resolved values are secrets
    more often than not and are never coerced.
    """
    out: dict[str, Any] = {}
    from_env: dict[str, str] = {}
    for key, value in (kwargs or {}).items():
        if isinstance(key, str) and key.endswith(ENV_SUFFIX) and isinstance(value, str):
            from_env[key[: -len(ENV_SUFFIX)]] = os.getenv(value.strip(), "")
        else:
            out[key] = coerce_value(value)
    for key, value in from_env.items():
        if out.get(key) in (None, ""):
            out[key] = value
    return out


def resolve_callable(module_path: str) -> Callable[..., Any]:
    """Import `<module>.main` (or the module itself) and return its `run` callable."""
    try:
        mod = importlib.import_module(f"{module_path}.main")
    except ModuleNotFoundError as e:
        if e.name not in (f"{module_path}.main", module_path):
            raise
        mod = importlib.import_module(module_path)
    run = getattr(mod, "run", None)
    if not callable(run):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return run


@dataclass
class RunResult:
    ok: bool
    message: str
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_return(cls, value: Any) -> RunResult:
        # Modules may return nothing, a message, or a meta dict.
        if value is None:
            return cls(True, "OK")
        if isinstance(value, str):
            return cls(True, value or "OK")
        if isinstance(value, dict):
            return cls(True, str(value.get("message") or "OK"), value)
        raise TypeError("Module return must be one of: None, str, or dict")

    @classmethod
    def from_exception(cls, exc: BaseException, **meta: Any) -> RunResult:
        return cls(False, str(exc), {"exception_type": type(exc).__name__, **meta})


def _call_with_timeout(fn: Callable[..., Any], kwargs: dict[str, Any], timeout_sec: int | None) -> Any:
    # The worker thread cannot be killed; on timeout it is abandoned and the
    # caller gets TimeoutError straight away.
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="runner")
    try:
        fut = pool.submit(fn, **kwargs)
        try:
            return fut.result(timeout=timeout_sec or None)
        except FutureTimeout:
            raise TimeoutError(f"Module run timed out after {timeout_sec}s") from None
    finally:
        pool.shutdown(wait=False)


def run_module_once(
    module: str,
    kwargs: dict[str, object] | None = None,
    trigger_type: str = "scheduled",
    job_context: dict[str, object] | None = None,
    timeout_sec: int | None = None,
) -> tuple[dict[str, Any] | None, str]:
    """
    Execute ``module``'s run(**kwargs) once and return ``(meta, run_id)``.

    Failures (import errors included) are logged with ``ok: false`` and then
    re-raised for the caller to map onto an exit code or job status.
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {"run_id": run_id, "module": module, "trigger_type": trigger_type, "started_at": now_iso()}
    for k, v in (job_context or {}).items():
        context.setdefault(k, v)

    kw = normalize_kwargs(kwargs)
    failure: BaseException | None = None
    t0 = time.monotonic()
    try:
        result = RunResult.from_return(_call_with_timeout(resolve_callable(module), kw, timeout_sec))
    except TimeoutError as e:
        failure, result = e, RunResult.from_exception(e, timeout_sec=timeout_sec)
    except Exception as e:
        failure, result = e, RunResult.from_exception(e)
    duration_ms = int((time.monotonic() - t0) * 1000)

    _record_run(
        {
            "ts": now_iso(),
            "run_id": run_id,
            "module": module,
            "trigger_type": trigger_type,
            "ok": result.ok,
            "message": result.message,
            "duration_ms": duration_ms,
            "context": context,
            "kwargs": kw,
            "meta": result.meta,
        }
    )
    if failure is not None:
        raise failure
    return result.meta or None, run_id


def _record_run(record: dict[str, Any]) -> None:
    # Secret-looking kwargs are redacted by key name inside the writer.
    try:
        logging_utils.write_activity_log(record)
    except Exception as e:
        log.warning("Could not write run record %s: %s", record.get("run_id"), e)
