"""
Submission controller: drive one Entry to a SubmissionOutcome.

Per attempt:
  1. duplicate check against the ledger (no network)
  2. remote status probe
  3. credential check
  4. submit, then classify the response

Transient failures (exceptions, timeouts, unknown error codes) loop back to
step 1 after `retry_delay_ms`, at most `max_retries` times. Retry is a bounded
loop, so a stop request is honoured between attempts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from .config import RetryConfig
from .ledger import DedupLedger
from .models import ApplyResult, Entry, ErrorClass, StatusResult, SubmissionOutcome, classify_error
from .state import RunStateMachine

LOG = logging.getLogger(__name__)


class StatusProbe(Protocol):
    def check(self, entry_id: str) -> StatusResult: ...


class Submitter(Protocol):
    def apply(self, entry_id: str, credential: str, cover_letter: str) -> ApplyResult: ...


class CredentialSource(Protocol):
    def current(self) -> str | None: ...


def _no_letter(entry: Entry) -> str:
    return ""


def _exception_reason(exc: BaseException) -> str:
    name = type(exc).__name__
    if "timeout" in name.lower():
        return "timeout"
    return f"error:{name}"


class SubmissionController:
    def __init__(
        self,
        *,
        ledger: DedupLedger,
        state: RunStateMachine,
        probe: StatusProbe,
        submitter: Submitter,
        credentials: CredentialSource,
        retry: RetryConfig,
        cover_letter: Callable[[Entry], str] | None = None,
    ) -> None:
        self._ledger = ledger
        self._state = state
        self._probe = probe
        self._submitter = submitter
        self._credentials = credentials
        self._retry = retry
        self._cover_letter = cover_letter or _no_letter

    def submit(self, entry: Entry) -> SubmissionOutcome:
        retry_count = 0
        while True:
            if self._ledger.has(entry.id):
                return SubmissionOutcome.skipped("duplicate", attempts=retry_count)

            attempts = retry_count + 1
            try:
                result = self._attempt(entry, attempts)
            except Exception as e:
                LOG.warning("Entry %s attempt %d raised %r", entry.id, attempts, e)
                self._state.reset_duplicate_hits()
                reason = _exception_reason(e)
            else:
                if isinstance(result, SubmissionOutcome):
                    return result
                reason = result

            if retry_count >= self._retry.max_retries:
                LOG.info("Entry %s failed after %d attempt(s): %s", entry.id, attempts, reason)
                return SubmissionOutcome.failed(reason, retryable=False, attempts=attempts)

            LOG.info(
                "Retry %d/%d for entry %s in %d ms (%s)",
                retry_count + 1,
                self._retry.max_retries,
                entry.id,
                self._retry.retry_delay_ms,
                reason,
            )
            if not self._state.sleep_ms(self._retry.retry_delay_ms):
                return SubmissionOutcome.skipped("run-stopped", attempts=attempts)
            retry_count += 1

    def _attempt(self, entry: Entry, attempts: int) -> SubmissionOutcome | str:
        """
        One pass over steps 2-4. Returns a final outcome, or a reason string
        when the failure is transient and may be retried.
        """
        status = self._probe.check(entry.id)
        if not status.eligible:
            return SubmissionOutcome.skipped(status.reason or "ineligible", attempts=attempts)

        credential = self._credentials.current()
        if not credential:
            return SubmissionOutcome.failed("no-token", retryable=False, attempts=attempts)

        result = self._submitter.apply(entry.id, credential, self._cover_letter(entry))
        if result.success:
            self._ledger.mark(entry.id)
            self._state.reset_streaks()
            return SubmissionOutcome.success(attempts=attempts)

        error_class = classify_error(result.error_code)
        if error_class is ErrorClass.QUOTA_EXCEEDED:
            return SubmissionOutcome.fatal_stop(ErrorClass.QUOTA_EXCEEDED.value, attempts=attempts)
        if error_class is ErrorClass.ALREADY_APPLIED:
            self._ledger.mark(entry.id)
            hits = self._state.record_duplicate_hit()
            LOG.info("Entry %s already applied server-side (streak=%d)", entry.id, hits)
            return SubmissionOutcome.skipped(ErrorClass.ALREADY_APPLIED.value, attempts=attempts)

        self._state.reset_duplicate_hits()
        if error_class in (ErrorClass.TEST_REQUIRED, ErrorClass.NOT_ACCEPTED):
            return SubmissionOutcome.skipped(error_class.value, attempts=attempts)
        return result.error_code or "submit-failed"
