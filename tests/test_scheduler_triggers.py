# tests/test_scheduler_triggers.py
from datetime import datetime, timedelta, timezone

import pytest
import pytz
from apscheduler.triggers.combining import OrTrigger

from service.scheduler import build_scheduler, build_trigger, describe_jobs, make_job_spec, preview_trigger

UTC = timezone.utc


def test_interval_minutes():
    trig = build_trigger({"interval": {"minutes": 30}}, "UTC")
    start = datetime(2099, 1, 1, tzinfo=UTC)

    assert trig.interval.total_seconds() == 1800
    assert preview_trigger(trig, UTC, count=2, start=start) == [
        start + timedelta(minutes=30),
        start + timedelta(minutes=60),
    ]


def test_cron_crontab_string_uses_scheduler_tz():
    trig = build_trigger({"cron": "0 9 * * mon-fri"}, "Europe/Moscow")
    # 2099-01-05 is a Monday; 09:00 Moscow is 06:00 UTC
    start = datetime(2099, 1, 5, 0, 0, tzinfo=UTC)
    first = preview_trigger(trig, UTC, count=1, start=start)[0]

    assert first.astimezone(UTC) == datetime(2099, 1, 5, 6, 0, tzinfo=UTC)


def test_cron_object_fields():
    trig = build_trigger({"cron": {"minute": "*/20", "hour": "10-11"}}, "UTC")
    start = datetime(2099, 1, 5, 9, 59, tzinfo=UTC)
    times = preview_trigger(trig, UTC, count=4, start=start)

    assert [(t.hour, t.minute) for t in times] == [(10, 0), (10, 20), (10, 40), (11, 0)]


@pytest.mark.parametrize(
    "run_at",
    ["2099-03-01T12:00:00Z", int(datetime(2099, 3, 1, 12, tzinfo=UTC).timestamp())],
)
def test_date_trigger_iso_and_epoch(run_at):
    trig = build_trigger({"date": {"run_at": run_at}}, "UTC")

    assert trig.run_date.astimezone(UTC) == datetime(2099, 3, 1, 12, tzinfo=UTC)


def test_naive_date_is_read_in_scheduler_tz():
    trig = build_trigger({"date": "2099-03-01T12:00:00"}, "Europe/Moscow")

    assert trig.run_date.astimezone(UTC) == datetime(2099, 3, 1, 9, tzinfo=UTC)


def test_daily_time_list_yields_exact_times():
    trig = build_trigger({"daily_time": {"time": ["18:30", "09:15", "09:15"], "day_of_week": "mon-fri"}}, "UTC")
    start = datetime(2099, 1, 5, 0, 0, tzinfo=UTC)  # Monday
    times = preview_trigger(trig, UTC, count=3, start=start)

    assert isinstance(trig, OrTrigger)
    assert [(t.day, t.hour, t.minute) for t in times] == [(5, 9, 15), (5, 18, 30), (6, 9, 15)]


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"interval": {"minutes": 0}},
        {"interval": {"hours": -1}},
        {"interval": {"fortnights": 1}},
        {"cron": "* * *"},
        {"cron": {"minute": 5, "weekday": 1}},
        {"date": {}},
        {"daily_time": {"time": "25:00"}},
        {"interval": {"minutes": 5}, "cron": "* * * * *"},
    ],
)
def test_invalid_triggers_raise(payload):
    with pytest.raises(ValueError):
        build_trigger(payload, "UTC")


def test_job_spec_accepts_top_level_trigger_keys():
    spec = make_job_spec(
        {"module": "modules.auto_responder", "interval": {"hours": 2}, "kwargs": {"dry_run": True}},
        defaults={"max_instances": 1, "coalesce": True},
        tz=pytz.UTC,
    )

    assert spec.id == "modules.auto_responder"
    assert spec.kwargs == {"dry_run": True}
    assert spec.max_instances == 1
    assert spec.trigger.interval.total_seconds() == 7200


def test_describe_jobs_reports_next_runs_and_errors():
    cfg = {
        "timezone": "UTC",
        "jobs": [
            {"id": "morning", "module": "modules.auto_responder", "trigger": {"daily_time": {"time": "08:00"}}},
            {"id": "broken", "module": "modules.auto_responder", "trigger": {"cron": "bad"}},
        ],
    }
    start = datetime(2099, 1, 5, 9, 0, tzinfo=UTC)
    jobs = describe_jobs(cfg, count=2, start=start)

    assert jobs[0]["id"] == "morning"
    assert [datetime.fromisoformat(t).astimezone(UTC) for t in jobs[0]["next"]] == [
        datetime(2099, 1, 6, 8, 0, tzinfo=UTC),
        datetime(2099, 1, 7, 8, 0, tzinfo=UTC),
    ]
    assert jobs[1]["id"] == "broken"
    assert "error" in jobs[1]


def test_build_scheduler_skips_invalid_jobs():
    cfg = {
        "timezone": "Europe/Moscow",
        "jobs": [
            {"id": "ok", "module": "modules.auto_responder", "trigger": {"interval": {"hours": 1}}},
            {"id": "no-trigger", "module": "modules.auto_responder"},
        ],
    }
    sched = build_scheduler(cfg)

    assert [j.id for j in sched.get_jobs()] == ["ok"]
    assert str(sched.timezone) == "Europe/Moscow"


def test_preview_of_one_shot_date():
    trig = build_trigger({"date": "2099-03-01T12:00:00Z"}, "UTC")

    assert preview_trigger(trig, UTC, count=3, start=datetime(2099, 1, 1, tzinfo=UTC)) == [trig.run_date]
    assert preview_trigger(trig, UTC, count=3, start=datetime(2100, 1, 1, tzinfo=UTC)) == []


def test_scheduled_run_records_job_outcome(monkeypatch):
    import json

    from service import logging_utils, scheduler

    calls = []

    def fake_run(module, **kw):
        calls.append((module, kw["job_context"]["job_id"]))
        return {"halt_reason": "feed-exhausted", "sent": 2}, "r1"

    monkeypatch.setattr(scheduler.runner, "run_module_once", fake_run)
    spec = make_job_spec({"id": "nightly", "module": "modules.auto_responder", "cron": "0 3 * * *"}, {}, pytz.UTC)
    scheduler._ScheduledRun(spec)()

    with open(logging_utils.get_activity_log_path(), encoding="utf-8") as f:
        last = [json.loads(line) for line in f][-1]
    assert calls == [("modules.auto_responder", "nightly")]
    assert last["job_id"] == "nightly"
    assert last["status"] == "ok"
    assert last["sent"] == 2
