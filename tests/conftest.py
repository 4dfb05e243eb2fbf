# tests/conftest.py
import json
import os
import random
import tempfile

import pytest
from freezegun import freeze_time

from fakes import FakeClock
from modules.auto_responder.lib import config as ar_config
from modules.auto_responder.lib.state import RunStateMachine
from modules.auto_responder.lib.store import MemoryStore


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="ar-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    yield tmp_logs


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


@pytest.fixture
def write_min_config(tmp_path, monkeypatch):
    cfg = {
        "timezone": "Europe/Moscow",
        "jobs": [
            {
                "id": "respond-never",
                "module": "modules.auto_responder",
                "trigger": {"date": "2099-01-01T00:00:00Z"},
                "kwargs": {"skip_network": True, "max_submissions": 50},
                "summary": "pytest config",
            }
        ],
    }
    p = tmp_path / "config.json"
    p.write_text(json.dumps(cfg), encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(p))
    return p


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def state_machine(fake_clock):
    return RunStateMachine(fake_clock)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def make_settings(tmp_path):
    """Settings builder with a stub extractor, temp store and no jitter."""

    def _make(**overrides):
        kw = {
            "extractor": "stub",
            "start_url": "https://example.test/search/vacancy?text=python",
            "store_path": str(tmp_path / "auto_responder.db"),
            "jitter_factor": 0,
        }
        kw.update(overrides)
        return ar_config.Settings.from_env_and_kwargs(kw)

    return _make
