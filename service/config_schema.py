# service/config_schema.py
"""
Job file loading and validation.

A job file is JSON or YAML:

    timezone: Europe/Moscow          # optional, falls back to $TZ then UTC
    jobs:
      - id: morning                  # optional; name or module are used otherwise
        module: modules.auto_responder
        daily_time: ["09:00", "13:30"]   # or cron | interval | date, top level or under `trigger`
        kwargs: {max_submissions: 50, cookies_env: HH_COOKIES}
        timeout_sec: 3600

`load_config` returns a normalised dict (ids filled in, scalar job options
coerced); `validate` checks the shape and raises ConfigError.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Callable
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


TRIGGER_KINDS = ("cron", "interval", "date", "daily_time")

# Scalar job options and the smallest value each accepts.
_JOB_INTS = {"timeout_sec": 0, "max_instances": 1, "misfire_grace_time": 0}
_JOB_BOOLS = ("coalesce",)
_JOB_STRINGS = ("summary", "description")
_INTERVAL_PASSTHROUGH = frozenset({"timezone", "start_date", "end_date"})

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

_PARSERS: dict[str, Callable[[str], Any]] = {
    ".json": json.loads,
    ".yml": yaml.safe_load,
    ".yaml": yaml.safe_load,
}


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the job file at `path`, else $CONFIG_PATH, else an empty job list.
    Always returns a dict with `jobs` and `timezone`.
    """
    source = path or os.environ.get("CONFIG_PATH")
    if not source:
        logger.info("CONFIG_PATH not provided; using empty default config.")
        return _normalize({"jobs": []})
    data = _read(source)
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {source} must be an object.")
    return _normalize(data)


def validate(cfg: dict[str, Any]) -> None:
    """Raise ConfigError on the first problem found."""
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")
    jobs = cfg.get("jobs")
    if jobs is None:
        raise ConfigError("Missing required top-level 'jobs' list.")
    if not isinstance(jobs, list):
        raise ConfigError("'jobs' must be a list.")
    if cfg.get("timezone") is not None and not isinstance(cfg["timezone"], str):
        raise ConfigError("'timezone' must be a string if provided.")

    seen: set[str] = set()
    for idx, job in enumerate(jobs):
        if not isinstance(job, dict):
            raise ConfigError(f"Job at index {idx} must be an object/dict.")
        module = job.get("module")
        if not isinstance(module, str) or not module.strip():
            raise ConfigError(f"Job {idx}: 'module' is required and must be a non-empty string.")
        job_id = job_id_for(job, idx)
        if job_id in seen:
            raise ConfigError(f"Duplicate job id '{job_id}'.")
        seen.add(job_id)
        _check_job(job, job_id)


def job_id_for(job: dict[str, Any], idx: int) -> str:
    for key in ("id", "name", "module"):
        v = job.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return f"job_{idx}"


def trigger_container(job: dict[str, Any], job_id: str = "?") -> dict[str, Any]:
    """The mapping holding the trigger: `job["trigger"]` when present, else the job itself."""
    if "trigger" not in job:
        return job
    nested = job["trigger"]
    if not isinstance(nested, dict):
        raise ConfigError(f"Job '{job_id}': 'trigger' must be an object when present.")
    mixed = [k for k in TRIGGER_KINDS if k in job]
    if mixed:
        raise ConfigError(f"Job '{job_id}': do not mix top-level triggers {mixed} with nested 'trigger'.")
    return nested


# ---- checks -----------------------------------------------------------------


def _check_job(job: dict[str, Any], job_id: str) -> None:
    container = trigger_container(job, job_id)
    present = [k for k in TRIGGER_KINDS if container.get(k) is not None]
    if len(present) != 1:
        raise ConfigError(f"Job '{job_id}': exactly one trigger required among {', '.join(TRIGGER_KINDS)}.")
    kind = present[0]
    _TRIGGER_CHECKS[kind](container[kind], job_id)

    for name in _JOB_BOOLS:
        if name in job:
            _as_bool(job[name], f"Job '{job_id}': '{name}'")
    for name, minimum in _JOB_INTS.items():
        if name in job:
            _as_int(job[name], f"Job '{job_id}': '{name}'", minimum)
    for name in _JOB_STRINGS:
        if name in job and not isinstance(job[name], str):
            raise ConfigError(f"Job '{job_id}': '{name}' must be a string if provided.")
    if "kwargs" in job and not isinstance(job["kwargs"], dict):
        raise ConfigError(f"Job '{job_id}': 'kwargs' must be a dict if provided.")


def _check_interval(value: Any, job_id: str) -> None:
    if not isinstance(value, dict):
        raise ConfigError(f"Job '{job_id}': interval must be an object of time kwargs.")
    for unit, amount in value.items():
        if unit not in _INTERVAL_PASSTHROUGH:
            _as_int(amount, f"Job '{job_id}': 'interval.{unit}'", 0)


def _check_cron(value: Any, job_id: str) -> None:
    if not isinstance(value, (str, dict)):
        raise ConfigError(f"Job '{job_id}': cron must be a crontab string or an object.")


def _check_date(value: Any, job_id: str) -> None:
    run_at = value.get("run_at") if isinstance(value, dict) else value
    if isinstance(run_at, bool) or not isinstance(run_at, (str, int, float)) or run_at == "":
        raise ConfigError(f"Job '{job_id}': date must be an ISO-8601 string or epoch seconds.")


def _check_daily_time(value: Any, job_id: str) -> None:
    times = value.get("time") if isinstance(value, dict) else None
    if isinstance(times, str):
        times = [times]
    if not isinstance(times, list) or not times:
        raise ConfigError(f"Job '{job_id}': daily_time.time must be 'HH:MM' or a list of them.")
    for t in times:
        parse_hhmm(t, f"Job '{job_id}': 'daily_time'")


_TRIGGER_CHECKS: dict[str, Callable[[Any, str], None]] = {
    "interval": _check_interval,
    "cron": _check_cron,
    "date": _check_date,
    "daily_time": _check_daily_time,
}


def parse_hhmm(text: Any, where: str = "time") -> tuple[int, int, int]:
    """'HH:MM[:SS]' (24h) -> (hour, minute, second)."""
    m = _HHMM.match(text.strip()) if isinstance(text, str) else None
    if not m:
        raise ConfigError(f"{where} must match HH:MM[:SS] (24h), got {text!r}.")
    hour, minute, second = int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    if hour > 23 or minute > 59 or second > 59:
        raise ConfigError(f"{where} out of range (00:00..23:59:59), got {text!r}.")
    return hour, minute, second


def _as_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    low = value.strip().lower() if isinstance(value, str) else None
    if low in ("1", "true", "yes", "on"):
        return True
    if low in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{where} must be a boolean (or boolean-like string).")


def _as_int(value: Any, where: str, minimum: int) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{where} must be an integer.")
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"{where} must be an integer.") from err
    if iv < minimum:
        raise ConfigError(f"{where} must be >= {minimum} (got {iv}).")
    return iv


# ---- loading ----------------------------------------------------------------


def _normalize(cfg: dict[str, Any]) -> dict[str, Any]:
    jobs = cfg.get("jobs")
    cfg["jobs"] = [_normalize_job(job, idx) for idx, job in enumerate(jobs if isinstance(jobs, list) else [])]
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")
    return cfg


def _normalize_job(job: Any, idx: int) -> dict[str, Any]:
    if not isinstance(job, dict):
        raise ConfigError(f"Job at index {idx} must be an object/dict.")
    out = dict(job)
    out["id"] = job_id_for(out, idx)
    for name in _JOB_BOOLS:
        if name in out:
            out[name] = _as_bool(out[name], f"Job '{out['id']}': '{name}'")
    for name, minimum in _JOB_INTS.items():
        if name in out:
            out[name] = _as_int(out[name], f"Job '{out['id']}': '{name}'", minimum)

    # "daily_time": "09:30" (or a list) is shorthand for {"time": ...}.
    nested = isinstance(out.get("trigger"), dict)
    container = dict(out["trigger"]) if nested else out
    if isinstance(container.get("daily_time"), (str, list)):
        container["daily_time"] = {"time": container["daily_time"]}
    if nested:
        out["trigger"] = container
    return out


def _read(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    suffix = os.path.splitext(path)[1].lower()
    parser = _PARSERS.get(suffix)
    if parser is None:
        # Unknown extensions are accepted when they hold JSON.
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Unsupported config format for {path}. Use .json or .yml/.yaml.") from e
    try:
        data = parser(text)
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid {suffix.lstrip('.').upper()} in {path}: {e}") from e
    return {} if data is None else data
