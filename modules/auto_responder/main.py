from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import RunReport, run_once
from .lib.logging_bridge import activity as log_activity
from .lib.state import RunStateMachine
from .lib.store import SETTINGS_KEY, SqliteStore, Store
from .lib.utils import format_elapsed


def load_settings(kwargs: dict[str, Any], store: Store) -> Settings:
    """
    Settings for the next run: values saved by the previous run are defaults,
    explicit kwargs win.
    """
    saved = store.get(SETTINGS_KEY, {}) or {}
    return Settings.from_env_and_kwargs(kwargs, saved=saved if isinstance(saved, dict) else None)


def report_meta(report: RunReport) -> dict[str, Any]:
    s = report.state
    message = (
        f"Sent {s.sent_count} of {s.processed_count} processed "
        f"over {report.pages_visited} page(s); halted: {report.halt_reason}"
    )
    if report.dry_run:
        message = "[dry-run] " + message
    return {
        "message": message,
        "sent": s.sent_count,
        "processed": s.processed_count,
        "skipped": s.skipped_count,
        "errors": s.error_count,
        "pages": report.pages_visited,
        "halt_reason": report.halt_reason,
        "elapsed": format_elapsed(report.elapsed_ms),
    }


def run(*, state: RunStateMachine | None = None, **kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'auto_responder' module.

    Accepts kwargs (from scheduler/runner/CLI), including:
      start_url: str                 # hh.ru search URL; default search when blank
      resume_hash / resume_hash_env  # resume to respond with (auto-discovered if unset)
      cookies_env: str               # env var holding the raw Cookie header of a logged-in session
      cover_letter_template: str     # "{#vacancyName}" is replaced with the vacancy title
      max_submissions: int = 200
      min_salary / max_salary / blacklisted_companies / required_keywords / excluded_keywords
      max_retries / retry_delay_ms / base_delay_ms / jitter_factor / max_backoff_ms
      dry_run: bool = False
      skip_network: bool = False

    `state` lets a foreground caller (the CLI) pause or stop the run from a
    signal handler.

    Returns a meta dict: message, sent, processed, skipped, errors, pages,
    halt_reason, elapsed.
    """
    settings = Settings.from_env_and_kwargs(kwargs)
    store: Store | None = None
    if not settings.skip_network:
        store = SqliteStore(settings.store_path)
        settings = load_settings(kwargs, store)

    log_activity({
        "component": "auto_responder.main",
        "op": "start",
        "start_url": settings.effective_start_url(),
        "flags": {
            "dry_run": settings.dry_run,
            "skip_network": settings.skip_network,
            "auto_find_resume": settings.auto_find_resume,
        },
    })

    report = run_once(settings, store=store, state=state)
    return report_meta(report)
