# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the APScheduler service loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

run MODULE [--kwargs k=v ...]
    - Executes a module ad-hoc via runner.run_module_once(...)
    - Displays a concise success/failure summary

respond [--url URL] [--dry-run] [--kwargs k=v ...]
    - Runs the auto-responder in the foreground
    - SIGINT/SIGTERM stop the run after the in-flight request; SIGUSR1 toggles pause

stats / export-log [PATH] / clear-history --yes
    - Inspect, export or wipe the persisted ledger, activity log and totals

list-jobs
    - Loads config via config_schema.load_config() and prints configured jobs

validate-config
    - Loads/validates config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterable
from typing import Any

from modules.auto_responder.lib.utils import now_iso
from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

AUTO_RESPONDER_MODULE = "modules.auto_responder"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    if not any(isinstance(h, L.JsonlErrorHandler) for h in root.handlers):
        root.addHandler(L.JsonlErrorHandler())


# -------------------------- Utility / glue code ------------------------------
def _kv_pairs(pairs: Iterable[str]) -> dict[str, str]:
    """`key=value` items as raw strings; the runner coerces types later."""
    out: dict[str, str] = {}
    for item in pairs:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"--kwargs item must be key=value (got {item!r})")
        out[key.strip()] = value.strip()
    return out


def _print_table(headers: tuple[str, ...], rows: list[tuple[str, ...]]) -> None:
    widths = [max(len(str(cell)) for cell in column) for column in zip(headers, *rows)]
    rule = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

    def line(cells: tuple[str, ...]) -> str:
        return "| " + " | ".join(str(c).ljust(w) for c, w in zip(cells, widths)) + " |"

    print("\n".join([rule, line(headers), rule, *(line(r) for r in rows), rule]))


def _responder_kwargs(args: argparse.Namespace) -> dict[str, Any]:
    kwargs = _runner.normalize_kwargs(_kv_pairs(getattr(args, "kwargs", None) or []))
    store = getattr(args, "store", None)
    if store:
        kwargs["store_path"] = store
    return kwargs


def _open_state(args: argparse.Namespace):
    """(settings, store, ledger, journal) for the maintenance subcommands."""
    from modules.auto_responder.lib.config import Settings
    from modules.auto_responder.lib.journal import Journal
    from modules.auto_responder.lib.ledger import DedupLedger
    from modules.auto_responder.lib.store import SqliteStore

    settings = Settings.from_env_and_kwargs(_responder_kwargs(args))
    store = SqliteStore(settings.store_path)
    ledger = DedupLedger(store, cap=settings.ledger_cap)
    journal = Journal(store, cap=settings.log_cap)
    return settings, store, ledger, journal


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    from modules.auto_responder.lib.config import ConfigError as SettingsError
    from modules.auto_responder.lib.config import Settings

    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        for job in cfg["jobs"]:
            if str(job.get("module", "")).startswith(AUTO_RESPONDER_MODULE):
                Settings.from_env_and_kwargs(_runner.normalize_kwargs(job.get("kwargs")))
        print("OK: configuration is valid.")
        return EXIT_OK
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except (_config_schema.ConfigError, SettingsError) as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return EXIT_USAGE


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        jobs = _scheduler.describe_jobs(cfg, count=args.count)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except _config_schema.ConfigError as e:
        print(f"ERROR: failed to list jobs: {e}", file=sys.stderr)
        return EXIT_USAGE

    if not jobs:
        print("No jobs found in config.")
        return EXIT_OK
    rows = []
    for j in jobs:
        if "error" in j:
            details = f"{j.get('module')} INVALID: {j['error']}"
        else:
            nxt = ", ".join(j["next"]) or "(no upcoming runs)"
            details = f"{j['module']} | {j.get('summary') or '-'} | next: {nxt}"
        rows.append((str(j["id"]), details))
    _print_table(("JOB", "DETAILS"), rows)
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    kwargs = _kv_pairs(args.kwargs or [])
    try:
        # The runner writes the run record (ok or not) itself.
        meta, run_id = _runner.run_module_once(args.module, kwargs=kwargs, trigger_type="adhoc")
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({"ts": now_iso(), "where": "cli.run", "module": args.module, "error": repr(e)})
        return EXIT_USAGE if isinstance(e, ValueError) else EXIT_FAILURE

    print(f"DONE [{run_id[:8]}]: {(meta or {}).get('message', 'Module run completed.')}")
    return EXIT_OK


def cmd_respond(args: argparse.Namespace) -> int:
    from modules.auto_responder import main as responder
    from modules.auto_responder.lib.config import ConfigError as SettingsError
    from modules.auto_responder.lib.state import MissingCredentialError, RunStateMachine

    kwargs = _responder_kwargs(args)
    if args.url:
        kwargs["start_url"] = args.url
    if args.dry_run:
        kwargs["dry_run"] = True

    state = RunStateMachine()

    def _stop(signum=None, frame=None):
        if state.request_stop("interrupted"):
            print("Stopping after the current request...", file=sys.stderr)

    def _toggle(signum=None, frame=None):
        if state.is_active:
            print(f"Run is now {state.toggle_pause().value}.", file=sys.stderr)

    previous = {sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    sigusr1 = getattr(signal, "SIGUSR1", None)
    if sigusr1 is not None:
        previous[sigusr1] = signal.signal(sigusr1, _toggle)

    try:
        meta = responder.run(state=state, **kwargs)
    except (SettingsError, _config_schema.ConfigError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE
    except MissingCredentialError as e:
        print(f"ERROR: {e} (set cookies_env / xsrf_token and resume_hash)", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print(meta["message"])
    print(
        f"  sent={meta['sent']} processed={meta['processed']} skipped={meta['skipped']} "
        f"errors={meta['errors']} pages={meta['pages']} elapsed={meta['elapsed']}"
    )
    return EXIT_INTERRUPTED if meta["halt_reason"] == "interrupted" else EXIT_OK


def cmd_stats(args: argparse.Namespace) -> int:
    from modules.auto_responder.lib.journal import diagnostics

    settings, _store, ledger, journal = _open_state(args)
    print(
        diagnostics(
            credential_present=bool(settings.xsrf_token or "_xsrf=" in settings.cookies),
            resume_hash=settings.resume_hash,
            ledger=ledger,
            journal=journal,
        )
    )
    if args.log:
        for row in journal.entries()[-args.log:]:
            mark = "+" if row.get("success") else "-"
            print(f"  {mark} {row.get('time', '')} {row.get('id', '')} {row.get('title', '')}: {row.get('message', '')}")
    return EXIT_OK


def cmd_export_log(args: argparse.Namespace) -> int:
    _settings, _store, _ledger, journal = _open_state(args)
    path = journal.export(args.path)
    print(f"Exported {len(journal.entries())} log row(s) to {path}")
    return EXIT_OK


def cmd_clear_history(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to clear history without --yes.", file=sys.stderr)
        return EXIT_USAGE
    _settings, _store, ledger, journal = _open_state(args)
    n = ledger.count()
    journal.clear(ledger)
    L.write_activity_log({"ts": now_iso(), "event": "clear_history", "ledger_ids": n})
    print(f"Cleared activity log, statistics and {n} ledger id(s).")
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    """Run scheduled jobs until SIGINT/SIGTERM."""
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
    except _config_schema.ConfigError as e:
        LOG.error("Invalid configuration: %s", e)
        return EXIT_USAGE

    shutdown = threading.Event()

    def _on_signal(signum=None, frame=None):
        LOG.info("Signal %s received; shutting down.", signum)
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _on_signal)

    controller = None
    rc = EXIT_OK
    try:
        controller = _scheduler.start(config_path=args.config)
        L.write_activity_log({"ts": now_iso(), "event": "serve_start", "jobs": list(controller.get_job_ids())})
        # Short waits keep the main thread responsive to signals.
        while not shutdown.wait(0.5):
            pass
    except KeyboardInterrupt:
        rc = EXIT_INTERRUPTED
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        rc = EXIT_FAILURE
    finally:
        if controller is not None:
            controller.stop()
            controller.join(timeout=10.0)
        L.write_activity_log({"ts": now_iso(), "event": "serve_stop", "exit_code": rc})
    return rc


# ------------------------------- Argparse ------------------------------------
def _add_store_args(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("--store", help="SQLite state file (default: store_path setting).")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Auto-responder settings (JSON values supported).",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="auto-responder",
        description="Auto-responder service command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or an empty default).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the main scheduler loop.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Execute a module ad-hoc via runner.run_module_once().")
    sp.add_argument("module", help="Module to run (e.g., modules.auto_responder).")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Extra keyword arguments for the module (JSON values supported).",
    )
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("respond", help="Run the auto-responder in the foreground.")
    sp.add_argument("--url", help="Listing URL to start from (default: saved or default search).")
    sp.add_argument("--dry-run", action="store_true", help="Walk the feed without sending responses.")
    _add_store_args(sp)
    sp.set_defaults(func=cmd_respond)

    sp = sub.add_parser("stats", help="Show totals, ledger size and credential status.")
    sp.add_argument("--log", type=int, default=0, metavar="N", help="Also print the last N log rows.")
    _add_store_args(sp)
    sp.set_defaults(func=cmd_stats)

    sp = sub.add_parser("export-log", help="Write stats and the activity log to a JSON file.")
    sp.add_argument("path", nargs="?", help="Target file or directory (default: responses_YYYY-MM-DD.json).")
    _add_store_args(sp)
    sp.set_defaults(func=cmd_export_log)

    sp = sub.add_parser("clear-history", help="Delete the ledger, activity log and totals.")
    sp.add_argument("--yes", action="store_true", help="Confirm deletion.")
    _add_store_args(sp)
    sp.set_defaults(func=cmd_clear_history)

    sp = sub.add_parser("list-jobs", help="Print all jobs from config with upcoming run times.")
    sp.add_argument("--count", type=int, default=3, help="Upcoming fire times to show per job.")
    sp.set_defaults(func=cmd_list_jobs)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    try:
        return args.func(args)
    except ValueError as e:
        # Settings/ConfigError raised outside a subcommand's own handling
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
