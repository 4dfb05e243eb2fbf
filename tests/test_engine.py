# tests/test_engine.py
import pytest

from fakes import FakeClock, FakeFetcher, FakeProbe, FakeSubmitter, StaticCredentials, stub_page
from modules.auto_responder import main as ar_main
from modules.auto_responder.lib.config import DEFAULT_LISTING_URL, ConfigError
from modules.auto_responder.lib.engine import HALT_SKIP_NETWORK, resolve_start_url, run_once
from modules.auto_responder.lib.extractors.stub import StubExtractor
from modules.auto_responder.lib.models import ApplyResult
from modules.auto_responder.lib.state import MissingCredentialError, RunStateMachine, RunStatus
from modules.auto_responder.lib.store import (
    FILTER_URL_KEY,
    LEDGER_KEY,
    LOG_KEY,
    SETTINGS_KEY,
    STATS_KEY,
    MemoryStore,
    SqliteStore,
)


def _run(settings, store, *, pages, submitter=None, probe=None, credentials=None, clock=None, state=None):
    clock = clock or FakeClock()
    return run_once(
        settings,
        store=store,
        state=state or RunStateMachine(clock),
        extractor=StubExtractor(),
        fetcher=FakeFetcher(pages),
        probe=probe or FakeProbe(),
        submitter=submitter,
        credentials=credentials or StaticCredentials(),
        clock=clock,
    )


def test_failing_entry_then_success(make_settings, memory_store):
    settings = make_settings(max_retries=3)
    submitter = FakeSubmitter({"A": [ApplyResult(False, "http-502")] * 4})
    clock = FakeClock()
    report = _run(settings, memory_store, pages={0: stub_page("A", "B")}, submitter=submitter, clock=clock)

    assert submitter.calls_for("A") == 4
    assert submitter.calls_for("B") == 1
    assert report.processed == 2
    assert report.sent == 1
    assert report.state.error_count == 1
    assert report.state.status is RunStatus.STOPPED
    assert memory_store.get(LEDGER_KEY) == ["B"]
    # Three 2000 ms retries for A, then backoff (3000 ms) wins over the 2400 ms paced delay.
    assert clock.sleeps_ms[:4] == [2000, 2000, 2000, 3000]


def test_stats_and_settings_are_persisted(make_settings, memory_store):
    settings = make_settings(min_salary=100)
    report = _run(settings, memory_store, pages={0: stub_page("1", "2")})

    stats = memory_store.get(STATS_KEY)
    assert stats["totalSent"] == 2
    assert stats["totalProcessed"] == 2
    assert stats["totalErrors"] == 0
    assert stats["runningTime"] == report.elapsed_ms
    assert memory_store.get(SETTINGS_KEY) == settings.to_saved()
    assert memory_store.get(FILTER_URL_KEY) == settings.start_url
    assert [row["id"] for row in memory_store.get(LOG_KEY)] == ["1", "2"]


def test_totals_accumulate_and_ledger_survives_runs(make_settings, memory_store):
    settings = make_settings()
    _run(settings, memory_store, pages={0: stub_page("1")})
    submitter = FakeSubmitter()
    second = _run(settings, memory_store, pages={0: stub_page("1", "2")}, submitter=submitter)

    assert [c[0] for c in submitter.calls] == ["2"]
    assert second.sent == 1
    assert second.state.skipped_count == 1
    assert memory_store.get(STATS_KEY)["totalSent"] == 2
    assert memory_store.get(STATS_KEY)["totalProcessed"] == 3


def test_dry_run_leaves_store_untouched(make_settings):
    store = MemoryStore({LEDGER_KEY: ["9"]})
    settings = make_settings(dry_run=True)
    report = _run(settings, store, pages={0: stub_page("9", "10", "11")})

    assert report.dry_run is True
    assert report.sent == 2
    assert store.keys() == [LEDGER_KEY]
    assert store.get(LEDGER_KEY) == ["9"]


def test_missing_token_refuses_to_start(make_settings, memory_store):
    settings = make_settings()
    state = RunStateMachine(FakeClock())
    with pytest.raises(MissingCredentialError):
        _run(settings, memory_store, pages={0: stub_page("1")}, credentials=StaticCredentials(None), state=state)
    assert state.status is RunStatus.IDLE
    assert memory_store.get(STATS_KEY) is None


def test_missing_resume_refuses_to_start(make_settings, memory_store):
    settings = make_settings(auto_find_resume=False)
    with pytest.raises(MissingCredentialError):
        _run(settings, memory_store, pages={0: stub_page("1")}, submitter=None)


def test_skip_network_short_circuits(make_settings, memory_store):
    report = run_once(make_settings(skip_network=True), store=memory_store)

    assert report.halt_reason == HALT_SKIP_NETWORK
    assert report.state.status is RunStatus.IDLE
    assert memory_store.keys() == []


def test_cover_letter_is_rendered_per_entry(make_settings, memory_store):
    settings = make_settings(cover_letter_template="Hello! Re: {#vacancyName}")
    submitter = FakeSubmitter()
    _run(settings, memory_store, pages={0: stub_page("1")}, submitter=submitter)

    assert submitter.calls == [("1", "tok-123", "Hello! Re: Job 1")]


def test_pipeline_exception_aborts_the_run(make_settings, memory_store):
    class Boom(RuntimeError):
        pass

    class ExplodingExtractor(StubExtractor):
        def extract(self, page_content):
            raise Boom("bad page")

    clock = FakeClock()
    state = RunStateMachine(clock)
    with pytest.raises(Boom):
        run_once(
            make_settings(),
            store=memory_store,
            state=state,
            extractor=ExplodingExtractor(),
            fetcher=FakeFetcher({0: stub_page("1")}),
            probe=FakeProbe(),
            submitter=FakeSubmitter(),
            credentials=StaticCredentials(),
            clock=clock,
        )
    assert state.status is RunStatus.STOPPED
    assert state.snapshot().stop_reason == "aborted"


@pytest.mark.parametrize(
    "url, expected",
    [
        ("", DEFAULT_LISTING_URL),
        ("https://hh.ru/", DEFAULT_LISTING_URL),
        ("https://spb.hh.ru/search/vacancy?text=go", "https://spb.hh.ru/search/vacancy?text=go"),
    ],
)
def test_resolve_start_url_for_hh(make_settings, url, expected):
    assert resolve_start_url(make_settings(extractor="hh", start_url=url)) == expected


def test_resolve_start_url_rejects_foreign_hosts(make_settings):
    with pytest.raises(ConfigError):
        resolve_start_url(make_settings(extractor="hh", start_url="https://example.com/search/vacancy"))


def test_module_run_with_skip_network_returns_meta(tmp_path):
    meta = ar_main.run(skip_network=True, extractor="stub", store_path=str(tmp_path / "x.db"))

    assert meta["halt_reason"] == HALT_SKIP_NETWORK
    assert meta["sent"] == 0
    assert "halted: skip-network" in meta["message"]
    assert not (tmp_path / "x.db").exists()


def test_module_run_reuses_saved_settings(tmp_path, monkeypatch):
    db = str(tmp_path / "ar.db")
    SqliteStore(db).set(SETTINGS_KEY, {"start_url": "https://example.test/saved", "retry": {"max_retries": 1}})
    captured = {}

    def fake_run_once(settings, **kwargs):
        captured["settings"] = settings
        return run_once(settings.__class__.from_env_and_kwargs({"skip_network": True, "extractor": "stub"}))

    monkeypatch.setattr(ar_main, "run_once", fake_run_once)
    ar_main.run(extractor="stub", store_path=db, max_retries=5)

    assert captured["settings"].start_url == "https://example.test/saved"
    assert captured["settings"].retry.max_retries == 5
