"""
Engine for one auto-responder run.

Wires the collaborators (store, ledger, journal, extractor, remote adapters),
resolves the resume credential, drives the state machine through
Idle -> Running -> Stopped around the pagination driver, and persists stats.

Every collaborator can be injected for tests; anything left as None gets its
production default (SQLite store, HTTP adapters, registry extractor).
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field

from .config import ConfigError, Settings
from .delays import Clock
from .extractors.base import BaseExtractor
from .extractors.registry import get as get_extractor_class
from .http_client import HttpClient
from .journal import Journal
from .ledger import DedupLedger
from .logging_bridge import Recorder
from .models import Entry
from .pagination import Fetcher, PaginationDriver
from .remote import (
    DryRunSubmitter,
    PageFetcher,
    ResponseSubmitter,
    SessionCredentialSource,
    VacancyStatusProbe,
    discover_resume_hash,
    render_cover_letter,
)
from .state import MissingCredentialError, RunState, RunStateMachine
from .store import FILTER_URL_KEY, LEDGER_KEY, LOG_KEY, SETTINGS_KEY, STATS_KEY, MemoryStore, SqliteStore, Store
from .submission import CredentialSource, StatusProbe, SubmissionController, Submitter
from .urls import normalize_listing_url, validate_url

HALT_SKIP_NETWORK = "skip-network"
HALT_COMPLETED = "completed"
DRY_RUN_TOKEN = "dry-run"

REC = Recorder("auto_responder.engine")


@dataclass
class RunReport:
    state: RunState
    halt_reason: str
    pages_visited: int = 0
    elapsed_ms: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)
    start_url: str = ""
    dry_run: bool = False

    @property
    def sent(self) -> int:
        return self.state.sent_count

    @property
    def processed(self) -> int:
        return self.state.processed_count


def resolve_start_url(settings: Settings) -> str:
    """Normalized listing URL for the run; raises ConfigError for foreign hosts."""
    url = settings.effective_start_url()
    if settings.extractor != "hh":
        return url
    if not validate_url(url):
        raise ConfigError(f"start_url must be an hh.ru URL, got {url!r}.")
    return normalize_listing_url(url)


def run_once(
    settings: Settings,
    *,
    store: Store | None = None,
    state: RunStateMachine | None = None,
    extractor: BaseExtractor | None = None,
    fetcher: Fetcher | None = None,
    probe: StatusProbe | None = None,
    submitter: Submitter | None = None,
    credentials: CredentialSource | None = None,
    clock: Clock | None = None,
    rng: random.Random | None = None,
) -> RunReport:
    """
    Run one complete pass over the listing feed.

    Raises:
        ConfigError: start URL is not on the listing host.
        MissingCredentialError: no session token or no resume to respond with.
    """
    start_ns = time.perf_counter_ns()
    clock = clock or Clock()
    state = state or RunStateMachine(clock)
    start_url = resolve_start_url(settings)

    if settings.skip_network and fetcher is None:
        REC.activity("skipped", reason=HALT_SKIP_NETWORK)
        return RunReport(state=state.snapshot(), halt_reason=HALT_SKIP_NETWORK, start_url=start_url)

    base_store: Store = store if store is not None else SqliteStore(settings.store_path)
    work_store = _dry_run_store(base_store) if settings.dry_run else base_store
    ledger = DedupLedger(work_store, cap=settings.ledger_cap)
    journal = Journal(work_store, cap=settings.log_cap)

    client: HttpClient | None = None
    if None in (fetcher, probe, credentials) or (submitter is None and not settings.dry_run):
        client = HttpClient(
            timeout=settings.request_timeout_s,
            user_agent=settings.user_agent,
            cookies=settings.cookies,
        )

    try:
        resume_hash = settings.resume_hash
        needs_resume = submitter is None and not settings.dry_run
        if submitter is None and settings.dry_run:
            submitter = DryRunSubmitter()
        if submitter is None:
            if not resume_hash and settings.auto_find_resume and client is not None:
                resume_hash = discover_resume_hash(client) or ""
                if resume_hash:
                    REC.activity("resume_discovered")
            submitter = ResponseSubmitter(client, resume_hash)  # type: ignore[arg-type]

        if credentials is None:
            static = settings.xsrf_token or (DRY_RUN_TOKEN if settings.dry_run else "")
            credentials = SessionCredentialSource(client, static_token=static)
        fetcher = fetcher or PageFetcher(client)  # type: ignore[arg-type]
        probe = probe or VacancyStatusProbe(client)  # type: ignore[arg-type]
        extractor = extractor or get_extractor_class(settings.extractor)()

        credential_present = bool(credentials.current()) and (bool(resume_hash) or not needs_resume)
        try:
            state.start(credential_present=credential_present)
        except MissingCredentialError as e:
            REC.error(
                "start",
                has_credential=bool(credentials.current()),
                has_resume=bool(resume_hash),
                error=str(e),
            )
            raise

        REC.activity(
            "start",
            start_url=start_url,
            extractor=settings.extractor,
            dry_run=settings.dry_run,
            max_submissions=settings.max_submissions,
            max_pages=settings.max_pages,
            ledger_size=ledger.count(),
        )

        template = settings.cover_letter_template

        def _letter(entry: Entry) -> str:
            return render_cover_letter(template, entry.title)

        controller = SubmissionController(
            ledger=ledger,
            state=state,
            probe=probe,
            submitter=submitter,
            credentials=credentials,
            retry=settings.retry,
            cover_letter=_letter,
        )
        driver = PaginationDriver(
            settings=settings,
            state=state,
            fetcher=fetcher,
            extractor=extractor,
            controller=controller,
            journal=journal,
            clock=clock,
            rng=rng,
        )

        try:
            result = driver.run(start_url)
        except BaseException:
            state.request_stop("aborted")
            raise
        halt_reason = result.halt_reason or HALT_COMPLETED
        state.request_stop(halt_reason)
        REC.activity("halt", reason=halt_reason, page=state.snapshot().page)

        stats = journal.update_stats(state)
        work_store.set(FILTER_URL_KEY, start_url)
        work_store.set(SETTINGS_KEY, settings.to_saved())
    finally:
        if client is not None:
            client.close()

    snap = state.snapshot()
    report = RunReport(
        state=snap,
        halt_reason=halt_reason,
        pages_visited=result.pages_visited,
        elapsed_ms=state.elapsed_ms(),
        outcomes=dict(result.outcomes),
        start_url=start_url,
        dry_run=settings.dry_run,
    )
    REC.activity(
        "summary",
        halt_reason=halt_reason,
        stop_reason=snap.stop_reason,
        pages=result.pages_visited,
        sent=snap.sent_count,
        processed=snap.processed_count,
        skipped=snap.skipped_count,
        errors=snap.error_count,
        outcomes=report.outcomes,
        totals=stats,
        dry_run=settings.dry_run,
        elapsed_ms=report.elapsed_ms,
        total_us=int((time.perf_counter_ns() - start_ns) // 1000),
    )
    return report


def _dry_run_store(store: Store) -> MemoryStore:
    """Scratch copy of the persisted state; nothing a dry run does is written back."""
    return MemoryStore({
        LEDGER_KEY: store.get(LEDGER_KEY, []) or [],
        LOG_KEY: store.get(LOG_KEY, []) or [],
        STATS_KEY: store.get(STATS_KEY, {}) or {},
    })
