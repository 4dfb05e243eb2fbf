"""
Pagination driver: walk listing pages in ascending order and push every
extracted entry through the filter engine and the submission controller.

Halts on the first of:
  - submission cap reached            HALT_SUBMISSION_CAP
  - page cap reached                  HALT_PAGE_CAP
  - fatal outcome (quota)             the outcome's reason
  - server duplicate streak           HALT_DUPLICATE_STREAK
  - consecutive page fetch failures   HALT_PAGE_FAILURES
  - consecutive empty pages           HALT_FEED_EXHAUSTED
  - external stop request             HALT_STOPPED

Fatal outcomes and the duplicate streak stop the state machine here, at the
moment they happen. Other halts leave the stop to the caller.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from .config import Settings
from .delays import Clock, next_delay
from .extractors.base import BaseExtractor
from .filters import evaluate
from .journal import Journal
from .logging_bridge import Recorder
from .models import Entry, OutcomeKind, SubmissionOutcome
from .state import RunStateMachine
from .submission import SubmissionController
from .urls import page_url

LOG = logging.getLogger(__name__)
REC = Recorder("auto_responder.pagination")

HALT_SUBMISSION_CAP = "submission-cap"
HALT_PAGE_CAP = "page-cap"
HALT_DUPLICATE_STREAK = "duplicate-streak"
HALT_PAGE_FAILURES = "page-failures"
HALT_FEED_EXHAUSTED = "feed-exhausted"
HALT_STOPPED = "stopped"


class Fetcher(Protocol):
    def fetch(self, url: str) -> str: ...


@dataclass
class PaginationResult:
    halt_reason: str = ""
    pages_visited: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)


class PaginationDriver:
    def __init__(
        self,
        *,
        settings: Settings,
        state: RunStateMachine,
        fetcher: Fetcher,
        extractor: BaseExtractor,
        controller: SubmissionController,
        journal: Journal | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        on_outcome: Callable[[Entry, SubmissionOutcome], None] | None = None,
    ) -> None:
        self._settings = settings
        self._state = state
        self._fetcher = fetcher
        self._extractor = extractor
        self._controller = controller
        self._journal = journal
        self._clock = clock or Clock()
        self._rng = rng
        self._on_outcome = on_outcome

    def run(self, start_url: str) -> PaginationResult:
        s = self._settings
        result = PaginationResult()
        page = 0
        page_failures = 0
        empty_pages = 0

        while True:
            if not self._state.wait_if_paused():
                result.halt_reason = self._stop_reason()
                break
            if self._cap_reached():
                result.halt_reason = HALT_SUBMISSION_CAP
                break
            if page >= s.max_pages:
                result.halt_reason = HALT_PAGE_CAP
                break

            self._state.set_page(page)
            url = page_url(start_url, page)
            result.pages_visited += 1
            try:
                content = self._fetcher.fetch(url)
            except Exception as e:
                page_failures += 1
                LOG.warning("Fetching page %d failed (%d in a row): %r", page, page_failures, e)
                REC.error("fetch", page=page, url=url, consecutive=page_failures, error=repr(e))
                if page_failures >= s.max_page_failures:
                    result.halt_reason = HALT_PAGE_FAILURES
                    break
                # A failed page counts as empty: move on instead of refetching it.
                page += 1
                if not self._state.sleep_ms(s.page_delay_ms):
                    result.halt_reason = self._stop_reason()
                    break
                continue

            entries = self._extractor.extract(content)
            REC.activity("page", page=page, entries=len(entries))
            if not entries:
                empty_pages += 1
                LOG.info("Page %d has no entries (%d in a row)", page, empty_pages)
                if empty_pages >= s.max_empty_pages:
                    result.halt_reason = HALT_FEED_EXHAUSTED
                    break
                page += 1
                if not self._state.sleep_ms(s.page_delay_ms):
                    result.halt_reason = self._stop_reason()
                    break
                continue

            page_failures = 0
            empty_pages = 0
            halt = self._process_page(entries, result)
            if halt:
                result.halt_reason = halt
                break

            page += 1
            if self._cap_reached():
                result.halt_reason = HALT_SUBMISSION_CAP
                break
            if page >= s.max_pages:
                result.halt_reason = HALT_PAGE_CAP
                break
            if not self._state.sleep_ms(s.page_delay_ms):
                result.halt_reason = self._stop_reason()
                break

        return result

    def _process_page(self, entries: list[Entry], result: PaginationResult) -> str:
        """Iterate one page. Returns a halt reason, or "" to continue paging."""
        s = self._settings
        last = len(entries) - 1
        for i, entry in enumerate(entries):
            if not self._state.wait_if_paused():
                return self._stop_reason()
            if self._cap_reached():
                return HALT_SUBMISSION_CAP

            self._state.record_processed()
            decision = evaluate(entry, s.filters)
            if decision.accept:
                outcome = self._controller.submit(entry)
            else:
                outcome = SubmissionOutcome.skipped("filtered:" + ",".join(decision.reasons))
            self._state.record_outcome(outcome)
            self._report(entry, outcome, result)

            if outcome.is_fatal:
                self._state.request_stop(outcome.reason)
                return outcome.reason
            if self._state.snapshot().consecutive_duplicate_hits >= s.duplicate_stop_threshold:
                self._state.request_stop(HALT_DUPLICATE_STREAK)
                return HALT_DUPLICATE_STREAK
            if outcome.reason == "run-stopped" or self._state.is_stopped:
                return self._stop_reason()

            if i < last:
                delay = next_delay(
                    s.retry,
                    s.pacing,
                    self._state.snapshot().consecutive_failures,
                    self._clock.now().hour,
                    self._rng,
                )
                if not self._state.sleep_ms(delay):
                    return self._stop_reason()
        return ""

    def _report(self, entry: Entry, outcome: SubmissionOutcome, result: PaginationResult) -> None:
        result.outcomes[outcome.kind.value] = result.outcomes.get(outcome.kind.value, 0) + 1
        if self._journal is not None:
            self._journal.append(entry, outcome, at=self._clock.now())
        emit = REC.error if outcome.kind in (OutcomeKind.FAILED, OutcomeKind.FATAL_STOP) else REC.activity
        emit(
            "outcome",
            id=entry.id,
            title=entry.title,
            kind=outcome.kind.value,
            reason=outcome.reason,
            attempts=outcome.attempts,
        )
        if self._on_outcome is not None:
            self._on_outcome(entry, outcome)

    def _cap_reached(self) -> bool:
        return self._state.snapshot().sent_count >= self._settings.max_submissions

    def _stop_reason(self) -> str:
        return self._state.snapshot().stop_reason or HALT_STOPPED
