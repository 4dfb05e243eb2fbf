# tests/test_state.py
import threading
import time

import pytest

from modules.auto_responder.lib.models import SubmissionOutcome
from modules.auto_responder.lib.state import (
    InvalidTransition,
    MissingCredentialError,
    RunStateMachine,
    RunStatus,
)


def test_lifecycle_edges(state_machine):
    sm = state_machine
    assert sm.status is RunStatus.IDLE
    sm.start()
    sm.pause()
    assert sm.status is RunStatus.PAUSED
    sm.resume()
    sm.stop("done")
    assert sm.is_stopped
    assert sm.snapshot().stop_reason == "done"
    assert sm.stop_event.is_set()


@pytest.mark.parametrize(
    "prepare, action",
    [
        (lambda sm: None, lambda sm: sm.pause()),
        (lambda sm: None, lambda sm: sm.stop()),
        (lambda sm: sm.start(), lambda sm: sm.start()),
        (lambda sm: sm.start(), lambda sm: sm.resume()),
        (lambda sm: (sm.start(), sm.stop()), lambda sm: sm.resume()),
        (lambda sm: (sm.start(), sm.stop()), lambda sm: sm.start()),
    ],
)
def test_illegal_edges_raise(state_machine, prepare, action):
    prepare(state_machine)
    with pytest.raises(InvalidTransition):
        action(state_machine)


def test_start_requires_credential(state_machine):
    with pytest.raises(MissingCredentialError):
        state_machine.start(credential_present=False)
    assert state_machine.status is RunStatus.IDLE


def test_request_stop_is_lenient(state_machine):
    assert state_machine.request_stop() is False
    state_machine.start()
    assert state_machine.request_stop("first") is True
    assert state_machine.request_stop("second") is False
    assert state_machine.snapshot().stop_reason == "first"


def test_counters_follow_outcomes(state_machine):
    sm = state_machine
    sm.start()
    sm.record_outcome(SubmissionOutcome.failed("x", retryable=False))
    sm.record_outcome(SubmissionOutcome.failed("x", retryable=False))
    assert sm.snapshot().consecutive_failures == 2
    sm.record_outcome(SubmissionOutcome.success())
    sm.record_outcome(SubmissionOutcome.skipped("duplicate"))
    sm.record_outcome(SubmissionOutcome.fatal_stop("quota-exceeded"))

    snap = sm.snapshot()
    assert snap.sent_count == 1
    assert snap.skipped_count == 1
    assert snap.error_count == 3
    assert snap.consecutive_failures == 0


def test_duplicate_streak(state_machine):
    assert state_machine.record_duplicate_hit() == 1
    assert state_machine.record_duplicate_hit() == 2
    state_machine.reset_duplicate_hits()
    assert state_machine.snapshot().consecutive_duplicate_hits == 0


def test_paused_time_excluded_from_elapsed(state_machine, fake_clock):
    sm = state_machine
    sm.start()
    fake_clock.mono += 10
    sm.pause()
    fake_clock.mono += 60
    assert sm.snapshot().paused_accumulated_ms == 60_000
    sm.resume()
    fake_clock.mono += 5
    sm.stop()
    assert sm.elapsed_ms() == 15_000
    assert sm.snapshot().paused_accumulated_ms == 60_000


def test_wait_if_paused_blocks_until_resume():
    sm = RunStateMachine()
    sm.start()
    sm.pause()
    results = []

    t = threading.Thread(target=lambda: results.append(sm.wait_if_paused()))
    t.start()
    time.sleep(0.05)
    assert t.is_alive()
    sm.resume()
    t.join(timeout=2)
    assert results == [True]


def test_wait_if_paused_returns_false_when_stopped_while_paused():
    sm = RunStateMachine()
    sm.start()
    sm.pause()
    results = []

    t = threading.Thread(target=lambda: results.append(sm.wait_if_paused()))
    t.start()
    time.sleep(0.05)
    sm.stop("user")
    t.join(timeout=2)
    assert results == [False]


def test_sleep_ms_reports_stop(state_machine, fake_clock):
    sm = state_machine
    sm.start()
    assert sm.sleep_ms(1500) is True
    assert fake_clock.sleeps == [1.5]
    sm.stop()
    assert sm.sleep_ms(1500) is False
    assert fake_clock.sleeps == [1.5]
