"""Deterministic stand-ins for the clock, fetcher, probe, submitter and credential source."""
import json
import threading
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

from modules.auto_responder.lib.delays import Clock
from modules.auto_responder.lib.models import ApplyResult, StatusResult


class FakeClock(Clock):
    """
    Deterministic clock: sleeping records the request and advances the
    monotonic time instead of blocking.
    """

    def __init__(self, hour: int = 12) -> None:
        self.hour = hour
        self.mono = 1000.0
        self.sleeps: list[float] = []
        self.on_sleep = None

    def now(self) -> datetime:
        return datetime(2025, 1, 6, self.hour, 0, 0, tzinfo=timezone.utc)

    def monotonic(self) -> float:
        return self.mono

    def sleep(self, seconds: float, interrupt: threading.Event | None = None) -> bool:
        self.sleeps.append(seconds)
        self.mono += seconds
        if self.on_sleep is not None:
            self.on_sleep(seconds)
        return bool(interrupt and interrupt.is_set())

    @property
    def sleeps_ms(self) -> list[int]:
        return [int(round(s * 1000)) for s in self.sleeps]


class FakeFetcher:
    """Serves page N from `pages[N]`; an Exception value is raised instead."""

    def __init__(self, pages):
        self.pages = pages
        self.urls: list[str] = []

    def fetch(self, url: str) -> str:
        self.urls.append(url)
        page = int(parse_qs(urlsplit(url).query).get("page", ["0"])[0])
        value = self.pages.get(page, "[]") if isinstance(self.pages, dict) else (
            self.pages[page] if page < len(self.pages) else "[]"
        )
        if isinstance(value, BaseException):
            raise value
        return value

    @property
    def pages_fetched(self) -> list[int]:
        return [int(parse_qs(urlsplit(u).query)["page"][0]) for u in self.urls]


class FakeProbe:
    def __init__(self, results=None):
        self.results = results or {}
        self.calls: list[str] = []

    def check(self, entry_id: str) -> StatusResult:
        self.calls.append(entry_id)
        value = self.results.get(entry_id, StatusResult(eligible=True))
        if isinstance(value, BaseException):
            raise value
        return value


class FakeSubmitter:
    """
    Per-id script of ApplyResults / exceptions consumed in order; once a
    script runs out (or for unscripted ids) every call succeeds.
    """

    def __init__(self, script=None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls: list[tuple[str, str, str]] = []

    def apply(self, entry_id: str, credential: str, cover_letter: str) -> ApplyResult:
        self.calls.append((entry_id, credential, cover_letter))
        queue = self.script.get(entry_id)
        if queue:
            value = queue.pop(0)
            if isinstance(value, BaseException):
                raise value
            return value
        return ApplyResult(success=True)

    def calls_for(self, entry_id: str) -> int:
        return sum(1 for c in self.calls if c[0] == entry_id)


class StaticCredentials:
    def __init__(self, token="tok-123"):
        self.token = token

    def current(self):
        return self.token


def stub_page(*entries) -> str:
    """JSON page for the stub extractor; bare strings become {'id': s, 'title': 'Job s'}."""
    items = []
    for e in entries:
        if isinstance(e, str):
            items.append({"id": e, "title": f"Job {e}"})
        else:
            items.append(e)
    return json.dumps(items)
