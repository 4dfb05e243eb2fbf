"""
Run state machine.

    Idle -> Running -> (Paused <-> Running) -> Stopped

Stopped is terminal; a new run uses a new machine. All counters live in a
single RunState owned by the machine and change only through the methods
below. Pause/stop requests may arrive asynchronously (CLI signal handlers), so
every mutation happens under one lock and waiters park on a condition
variable instead of polling a flag.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from .delays import Clock
from .models import OutcomeKind, SubmissionOutcome

LOG = logging.getLogger(__name__)

# Upper bound on a single condition wait so signal handlers on the waiting
# thread get a chance to run.
_PAUSE_WAIT_SLICE_S = 1.0


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


_ALLOWED_TRANSITIONS = frozenset({
    (RunStatus.IDLE, RunStatus.RUNNING),
    (RunStatus.RUNNING, RunStatus.PAUSED),
    (RunStatus.PAUSED, RunStatus.RUNNING),
    (RunStatus.RUNNING, RunStatus.STOPPED),
    (RunStatus.PAUSED, RunStatus.STOPPED),
})


class InvalidTransition(RuntimeError):
    """Raised for a status change outside the allowed edges."""


class MissingCredentialError(InvalidTransition):
    """Idle -> Running refused because the required credential is absent."""


@dataclass
class RunState:
    status: RunStatus = RunStatus.IDLE
    page: int = 0
    sent_count: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    consecutive_failures: int = 0
    consecutive_duplicate_hits: int = 0
    started_at: datetime | None = None
    paused_accumulated_ms: int = 0
    stop_reason: str = ""


class RunStateMachine:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or Clock()
        self._cond = threading.Condition(threading.RLock())
        self._stop_event = threading.Event()
        self._state = RunState()
        self._started_mono: float | None = None
        self._finished_mono: float | None = None
        self._paused_since: float | None = None

    # ---- inspection ----

    @property
    def status(self) -> RunStatus:
        with self._cond:
            return self._state.status

    @property
    def is_stopped(self) -> bool:
        return self.status is RunStatus.STOPPED

    @property
    def is_active(self) -> bool:
        return self.status in (RunStatus.RUNNING, RunStatus.PAUSED)

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def snapshot(self) -> RunState:
        with self._cond:
            return replace(self._state, paused_accumulated_ms=self._paused_ms_locked())

    def elapsed_ms(self) -> int:
        """Wall time since start, excluding time spent paused."""
        with self._cond:
            if self._started_mono is None:
                return 0
            end = self._finished_mono if self._finished_mono is not None else self._clock.monotonic()
            total = int((end - self._started_mono) * 1000)
            return max(0, total - self._paused_ms_locked())

    # ---- transitions ----

    def start(self, *, credential_present: bool = True) -> None:
        with self._cond:
            if self._state.status is not RunStatus.IDLE:
                raise InvalidTransition(f"cannot start from {self._state.status.value}")
            if not credential_present:
                raise MissingCredentialError("cannot start: required credential is missing")
            self._transition_locked(RunStatus.RUNNING)
            self._state.started_at = self._clock.now()
            self._started_mono = self._clock.monotonic()

    def pause(self) -> None:
        with self._cond:
            self._transition_locked(RunStatus.PAUSED)
            self._paused_since = self._clock.monotonic()

    def resume(self) -> None:
        with self._cond:
            self._transition_locked(RunStatus.RUNNING)
            self._close_pause_locked()

    def toggle_pause(self) -> RunStatus:
        with self._cond:
            if self._state.status is RunStatus.RUNNING:
                self.pause()
            elif self._state.status is RunStatus.PAUSED:
                self.resume()
            return self._state.status

    def stop(self, reason: str = "stopped") -> None:
        with self._cond:
            self._transition_locked(RunStatus.STOPPED)
            self._close_pause_locked()
            self._state.stop_reason = reason
            self._finished_mono = self._clock.monotonic()
            self._stop_event.set()
        LOG.info("Run stopped: %s", reason)

    def request_stop(self, reason: str = "stop-requested") -> bool:
        """Stop if running or paused; otherwise a no-op. Returns True if this call stopped the run."""
        with self._cond:
            if self._state.status not in (RunStatus.RUNNING, RunStatus.PAUSED):
                return False
            self.stop(reason)
            return True

    # ---- cooperative waiting ----

    def wait_if_paused(self) -> bool:
        """
        Park while Paused. Returns True if the run may continue (Running),
        False if it has been stopped.
        """
        with self._cond:
            while self._state.status is RunStatus.PAUSED:
                self._cond.wait(timeout=_PAUSE_WAIT_SLICE_S)
            return self._state.status is RunStatus.RUNNING

    def sleep_ms(self, ms: int) -> bool:
        """
        Interruptible delay followed by a pause check. Returns True if the run may continue.
        """
        if ms > 0 and not self._stop_event.is_set():
            self._clock.sleep(ms / 1000.0, interrupt=self._stop_event)
        return self.wait_if_paused()

    # ---- counters ----

    def set_page(self, page: int) -> None:
        with self._cond:
            self._state.page = page

    def record_processed(self) -> None:
        with self._cond:
            self._state.processed_count += 1

    def record_outcome(self, outcome: SubmissionOutcome) -> None:
        with self._cond:
            s = self._state
            if outcome.kind is OutcomeKind.SUCCESS:
                s.sent_count += 1
                s.consecutive_failures = 0
            elif outcome.kind is OutcomeKind.SKIPPED:
                s.skipped_count += 1
            elif outcome.kind is OutcomeKind.FAILED:
                s.error_count += 1
                s.consecutive_failures += 1
            else:
                s.error_count += 1

    def record_duplicate_hit(self) -> int:
        with self._cond:
            self._state.consecutive_duplicate_hits += 1
            return self._state.consecutive_duplicate_hits

    def reset_duplicate_hits(self) -> None:
        with self._cond:
            self._state.consecutive_duplicate_hits = 0

    def reset_streaks(self) -> None:
        with self._cond:
            self._state.consecutive_failures = 0
            self._state.consecutive_duplicate_hits = 0

    # ---- internals ----

    def _transition_locked(self, target: RunStatus) -> None:
        current = self._state.status
        if (current, target) not in _ALLOWED_TRANSITIONS:
            raise InvalidTransition(f"{current.value} -> {target.value} is not allowed")
        self._state.status = target
        self._cond.notify_all()

    def _close_pause_locked(self) -> None:
        if self._paused_since is not None:
            delta = self._clock.monotonic() - self._paused_since
            self._state.paused_accumulated_ms += int(delta * 1000)
            self._paused_since = None

    def _paused_ms_locked(self) -> int:
        ms = self._state.paused_accumulated_ms
        if self._paused_since is not None:
            ms += int((self._clock.monotonic() - self._paused_since) * 1000)
        return ms
