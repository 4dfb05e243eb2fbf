# service/scheduler.py
"""
APScheduler wiring for configured jobs.

Each job in the config becomes one APScheduler job whose callable hands the
module to ``runner.run_module_once``. Trigger shapes accepted (nested under
``trigger`` or at the top level of the job):

    interval:   {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}
    cron:       "*/15 * * * *"  or  {second?, minute?, hour?, day?, day_of_week?, month?, ...}
    date:       ISO-8601 | epoch seconds | {"run_at": ..., "timezone"?: ...}
    daily_time: {"time": "HH:MM[:SS]" | [...], "day_of_week"?: ..., "timezone"?: ...}

A trigger block without its own timezone uses the scheduler's.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from modules.auto_responder.lib.utils import now_iso

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

# Two runs of the responder over one ledger must never overlap, and a run
# missed while the host slept is done once, not N times.
JOB_DEFAULTS = {"coalesce": True, "max_instances": 1}

_INTERVAL_UNITS = ("weeks", "days", "hours", "minutes", "seconds")
_CRON_FIELDS = ("second", "minute", "hour", "day", "day_of_week", "month", "start_date", "end_date", "jitter")


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    module: str
    trigger: BaseTrigger
    kwargs: dict[str, Any] = field(default_factory=dict)
    timeout_sec: int | None = None
    max_instances: int = 1
    coalesce: bool = True
    misfire_grace_time: int | None = None
    summary: str | None = None


class SchedulerController:
    """Lifecycle handle for a started scheduler, as used by `cli serve`."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped = threading.Event()

    def stop(self) -> None:
        # Running jobs are not interrupted; they finish on their own threads.
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            self._scheduler.shutdown(wait=False)
        self._stopped.set()

    def join(self, timeout: float | None = None) -> bool:
        """True once stop() has completed, False on timeout."""
        return self._stopped.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())

    def __repr__(self) -> str:
        state = "stopped" if self._stopped.is_set() else "running"
        return f"<SchedulerController {state} jobs={list(self.get_job_ids())}>"


# ---- public API -------------------------------------------------------------


def start(config_path: str | None = None) -> SchedulerController:
    """Load the job file, register every valid job and start the scheduler."""
    scheduler = build_scheduler(config_schema.load_config(config_path))
    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


def build_scheduler(cfg: dict[str, Any]) -> BackgroundScheduler:
    """A configured, not yet started scheduler. Jobs that fail to build are logged and skipped."""
    tz = resolve_timezone(cfg)
    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults=dict(JOB_DEFAULTS),
        executors={"default": ThreadPoolExecutor(_lenient_int(cfg.get("executor_workers")) or 4)},
        jobstores={"default": MemoryJobStore()},
    )
    for idx, raw in enumerate(cfg.get("jobs", [])):
        try:
            spec = make_job_spec(raw, JOB_DEFAULTS, tz, idx=idx)
        except (KeyError, TypeError, ValueError) as e:
            LOG.error("Skipping job %r: %s", config_schema.job_id_for(raw, idx), e)
            continue
        _register(scheduler, spec)
    return scheduler


def describe_jobs(cfg: dict[str, Any], count: int = 3, start: datetime | None = None) -> list[dict[str, Any]]:
    """Upcoming fire times per job without starting anything; unbuildable jobs carry `error`."""
    tz = resolve_timezone(cfg)
    rows: list[dict[str, Any]] = []
    for idx, raw in enumerate(cfg.get("jobs", [])):
        try:
            spec = make_job_spec(raw, {}, tz, idx=idx)
        except (KeyError, TypeError, ValueError) as e:
            rows.append({"id": config_schema.job_id_for(raw, idx), "module": raw.get("module"), "error": str(e)})
            continue
        upcoming = preview_trigger(spec.trigger, tz, count=count, start=start)
        rows.append({
            "id": spec.id,
            "module": spec.module,
            "summary": spec.summary,
            "next": [t.isoformat() for t in upcoming],
        })
    return rows


def preview_trigger(trigger: BaseTrigger, tz, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """The next `count` fire times after `start` (default: now in `tz`)."""
    now = start or datetime.now(tz=tz)
    if isinstance(trigger, DateTrigger):
        # A previous fire time would mark the one-shot as already spent.
        return [trigger.run_date] if count > 0 and trigger.run_date > now else []
    out: list[datetime] = []
    previous = now
    while len(out) < count:
        nxt = trigger.get_next_fire_time(previous, now)
        if nxt is None:
            break
        out.append(nxt)
        previous, now = nxt, nxt + timedelta(microseconds=1)
    return out


def resolve_timezone(cfg: dict[str, Any]):
    """pytz zone for the scheduler itself (APScheduler 3.x); UTC when unknown."""
    name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Unknown timezone %r; using UTC.", name)
        return pytz.UTC


def make_job_spec(raw: dict[str, Any], defaults: dict[str, Any], tz, *, idx: int = 0) -> JobSpec:
    module = raw.get("module")
    if not isinstance(module, str) or not module.strip():
        raise ValueError("job requires a non-empty 'module'")
    job_id = config_schema.job_id_for(raw, idx)
    container = config_schema.trigger_container(raw, job_id)
    return JobSpec(
        id=job_id,
        module=module.strip(),
        trigger=build_trigger({k: container[k] for k in config_schema.TRIGGER_KINDS if k in container}, tz),
        kwargs=dict(raw.get("kwargs") or {}),
        timeout_sec=_lenient_int(raw.get("timeout_sec")),
        max_instances=_lenient_int(raw.get("max_instances")) or defaults.get("max_instances", 1),
        coalesce=bool(raw.get("coalesce", defaults.get("coalesce", True))),
        misfire_grace_time=_lenient_int(raw.get("misfire_grace_time")),
        summary=raw.get("summary") or raw.get("description"),
    )


def build_trigger(trig_def: dict[str, Any], tz) -> BaseTrigger:
    """APScheduler trigger for a mapping holding exactly one trigger kind."""
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")
    present = [k for k in config_schema.TRIGGER_KINDS if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError(f"exactly one of {config_schema.TRIGGER_KINDS} must be provided")
    kind = present[0]
    return _BUILDERS[kind](trig_def[kind], _zone(tz))


# ---- trigger builders -------------------------------------------------------


def _interval(spec: Any, default_tz: tzinfo | None) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")
    _reject_unknown("interval", spec, (*_INTERVAL_UNITS, "jitter", "timezone", "start_date", "end_date"))
    amounts = {unit: _non_negative(spec, unit) for unit in _INTERVAL_UNITS}
    if not any(amounts.values()):
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")
    kwargs: dict[str, Any] = {unit: n for unit, n in amounts.items() if n}
    jitter = _non_negative(spec, "jitter")
    if jitter:
        kwargs["jitter"] = jitter
    kwargs.update({k: spec[k] for k in ("start_date", "end_date") if k in spec})
    return IntervalTrigger(timezone=_zone(spec.get("timezone")) or default_tz, **kwargs)


def _cron(spec: Any, default_tz: tzinfo | None) -> CronTrigger:
    if isinstance(spec, str):
        if len(spec.split()) != 5:
            raise ValueError(f"cron string must have 5 fields: {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=default_tz)
    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")
    _reject_unknown("cron", spec, (*_CRON_FIELDS, "timezone"))
    fields = {k: spec.get(k) for k in _CRON_FIELDS}
    # Unspecified clock fields mean "on the hour", not "every second".
    for k in ("second", "minute", "hour"):
        if fields[k] is None:
            fields[k] = 0
    return CronTrigger(timezone=_zone(spec.get("timezone")) or default_tz, **fields)


def _date(spec: Any, default_tz: tzinfo | None) -> DateTrigger:
    if isinstance(spec, dict):
        run_at, zone = spec.get("run_at"), _zone(spec.get("timezone")) or default_tz
    else:
        run_at, zone = spec, default_tz
    if run_at is None or run_at == "":
        raise ValueError("date trigger requires 'run_at' (or non-empty scalar value)")

    if isinstance(run_at, datetime):
        when = run_at
    elif isinstance(run_at, (int, float)) and not isinstance(run_at, bool):
        when = datetime.fromtimestamp(run_at, tz=zone or timezone.utc)
    else:
        try:
            when = datetime.fromisoformat(str(run_at))
        except ValueError as e:
            raise ValueError(f"Invalid date.run_at: {run_at!r}") from e
    if when.tzinfo is None:
        when = when.replace(tzinfo=zone)
    return DateTrigger(run_date=when, timezone=when.tzinfo or zone)


def _daily_time(spec: Any, default_tz: tzinfo | None) -> BaseTrigger:
    if not isinstance(spec, dict):
        raise ValueError("daily_time must be an object")
    _reject_unknown("daily_time", spec, ("time", "day_of_week", "timezone"))
    times = spec.get("time")
    if isinstance(times, str):
        times = [times]
    if not isinstance(times, list) or not times:
        raise ValueError("daily_time requires 'time' as 'HH:MM' or a list of them")

    zone = _zone(spec.get("timezone")) or default_tz
    slots = sorted({config_schema.parse_hhmm(t, "daily_time.time") for t in times})
    crons = [
        CronTrigger(hour=h, minute=m, second=s, day_of_week=spec.get("day_of_week"), timezone=zone)
        for h, m, s in slots
    ]
    return crons[0] if len(crons) == 1 else OrTrigger(crons)


_BUILDERS: dict[str, Callable[[Any, tzinfo | None], BaseTrigger]] = {
    "interval": _interval,
    "cron": _cron,
    "date": _date,
    "daily_time": _daily_time,
}


def _reject_unknown(kind: str, spec: dict[str, Any], allowed: Iterable[str]) -> None:
    unknown = set(spec) - set(allowed)
    if unknown:
        raise ValueError(f"{kind} has unknown field(s): {sorted(unknown)}")


def _non_negative(spec: dict[str, Any], name: str) -> int:
    if name not in spec:
        return 0
    try:
        value = int(spec[name])
    except (TypeError, ValueError) as err:
        raise ValueError(f"{name} must be an integer") from err
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
    return value


def _zone(value: Any) -> tzinfo | None:
    if not value:
        return None
    if isinstance(value, tzinfo):
        return value
    return ZoneInfo(str(value))


def _lenient_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


# ---- job execution ----------------------------------------------------------


class _ScheduledRun:
    """The callable APScheduler invokes for one job."""

    def __init__(self, spec: JobSpec) -> None:
        self.spec = spec

    def __call__(self) -> None:
        spec = self.spec
        started = time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        try:
            meta, run_id = runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs),
                trigger_type="scheduled",
                job_context={"job_id": spec.id, "summary": spec.summary},
                timeout_sec=spec.timeout_sec,
            )
        except Exception:
            # The runner has written the failure record; the scheduler keeps going.
            LOG.exception("Job[%s] failed.", spec.id)
            self._record("error", started)
            return
        LOG.info("Job[%s] finished in %.3fs (run_id=%s)", spec.id, time.monotonic() - started, run_id)
        self._record("ok", started, meta)

    def _record(self, status: str, started: float, meta: dict[str, Any] | None = None) -> None:
        meta = meta or {}
        try:
            write_activity_log({
                "ts": now_iso(),
                "source": "scheduler",
                "event": "job_run",
                "job_id": self.spec.id,
                "module": self.spec.module,
                "status": status,
                "duration_ms": int((time.monotonic() - started) * 1000),
                "halt_reason": meta.get("halt_reason"),
                "sent": meta.get("sent"),
            })
        except Exception:
            LOG.debug("Could not record run of job[%s]", self.spec.id, exc_info=True)


def _register(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    scheduler.add_job(
        _ScheduledRun(spec),
        trigger=spec.trigger,
        id=spec.id,
        name=spec.summary or spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
    )
    LOG.info("Registered job[%s] module=%s summary=%r", spec.id, spec.module, spec.summary)
