from __future__ import annotations

import json
import os
from datetime import date, datetime
from typing import Any

from .ledger import DedupLedger
from .models import Entry, SubmissionOutcome
from .state import RunState, RunStateMachine
from .store import LOG_KEY, STATS_KEY, Store
from .utils import format_elapsed, now_iso

DEFAULT_LOG_CAP = 100


def default_export_name(today: date | None = None) -> str:
    return f"responses_{(today or date.today()).isoformat()}.json"


class Journal:
    """
    Recent outcome rows and cumulative run statistics, kept in the Store.

    Log rows are {id, title, time, success, message}, newest last, trimmed to
    `cap`. Stats are {totalSent, totalProcessed, totalSkipped, totalErrors,
    lastRun, runningTime}.
    """

    def __init__(self, store: Store, *, cap: int = DEFAULT_LOG_CAP) -> None:
        if cap <= 0:
            raise ValueError("journal cap must be >= 1")
        self._store = store
        self.cap = cap

    # ---- activity log ----
    def append(self, entry: Entry, outcome: SubmissionOutcome, *, at: datetime | None = None) -> dict[str, Any]:
        row = {
            "id": entry.id,
            "title": entry.title,
            "time": (at or datetime.now().astimezone()).isoformat(timespec="seconds"),
            "success": outcome.is_success,
            "message": _message(outcome),
        }
        rows = self.entries()
        rows.append(row)
        self._store.set(LOG_KEY, rows[-self.cap:])
        return row

    def entries(self) -> list[dict[str, Any]]:
        rows = self._store.get(LOG_KEY, []) or []
        return rows if isinstance(rows, list) else []

    # ---- statistics ----
    def stats(self) -> dict[str, Any]:
        raw = self._store.get(STATS_KEY, {}) or {}
        return raw if isinstance(raw, dict) else {}

    def update_stats(self, state: RunStateMachine) -> dict[str, Any]:
        """Fold one finished run into the cumulative totals."""
        snap: RunState = state.snapshot()
        prev = self.stats()
        stats = {
            "totalSent": int(prev.get("totalSent") or 0) + snap.sent_count,
            "totalProcessed": int(prev.get("totalProcessed") or 0) + snap.processed_count,
            "totalSkipped": int(prev.get("totalSkipped") or 0) + snap.skipped_count,
            "totalErrors": int(prev.get("totalErrors") or 0) + snap.error_count,
            "lastRun": snap.started_at.isoformat(timespec="seconds") if snap.started_at else now_iso(),
            "runningTime": state.elapsed_ms(),
        }
        self._store.set(STATS_KEY, stats)
        return stats

    # ---- maintenance ----
    def export(self, path: str | None = None) -> str:
        """Write {timestamp, stats, log} as JSON; returns the file path."""
        target = path or default_export_name()
        if os.path.isdir(target):
            target = os.path.join(target, default_export_name())
        payload = {"timestamp": now_iso(), "stats": self.stats(), "log": self.entries()}
        d = os.path.dirname(os.path.abspath(target))
        os.makedirs(d, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        return target

    def clear(self, ledger: DedupLedger | None = None) -> None:
        self._store.delete(LOG_KEY)
        self._store.delete(STATS_KEY)
        if ledger is not None:
            ledger.clear()


def _message(outcome: SubmissionOutcome) -> str:
    if outcome.is_success:
        return "sent"
    return f"{outcome.kind.value}: {outcome.reason}" if outcome.reason else outcome.kind.value


def diagnostics(
    *,
    credential_present: bool,
    resume_hash: str,
    ledger: DedupLedger,
    journal: Journal,
    state: RunStateMachine | None = None,
) -> str:
    """Human-readable status block for the CLI."""
    stats = journal.stats()
    lines = [
        "auto_responder status",
        f"  credential:      {'present' if credential_present else 'MISSING'}",
        f"  resume:          {'configured' if resume_hash else 'not set'}",
        f"  ledger size:     {ledger.count()}",
        f"  total sent:      {stats.get('totalSent', 0)}",
        f"  total processed: {stats.get('totalProcessed', 0)}",
        f"  total skipped:   {stats.get('totalSkipped', 0)}",
        f"  total errors:    {stats.get('totalErrors', 0)}",
        f"  last run:        {stats.get('lastRun') or 'never'}",
        f"  running time:    {format_elapsed(int(stats.get('runningTime') or 0))}",
    ]
    if state is not None:
        snap = state.snapshot()
        lines += [
            f"  status:          {snap.status.value}",
            f"  page:            {snap.page}",
            f"  sent this run:   {snap.sent_count}",
        ]
    return "\n".join(lines)
