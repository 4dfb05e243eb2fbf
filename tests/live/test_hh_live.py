# tests/live/test_hh_live.py
from __future__ import annotations

import os

import pytest

from modules.auto_responder.lib.config import DEFAULT_LISTING_URL, DEFAULT_USER_AGENT
from modules.auto_responder.lib.extractors.hh import HhExtractor
from modules.auto_responder.lib.http_client import HttpClient
from modules.auto_responder.lib.remote import PageFetcher, VacancyStatusProbe
from modules.auto_responder.lib.urls import page_url

pytestmark = pytest.mark.live


@pytest.fixture(scope="module")
def client():
    c = HttpClient(timeout=20, user_agent=DEFAULT_USER_AGENT)
    yield c
    c.close()


def test_first_search_page_yields_entries(client):
    """Read-only: fetch page 0 of the search and probe the first vacancy."""
    url = page_url(os.getenv("HH_LIVE_URL", DEFAULT_LISTING_URL), 0)
    html = PageFetcher(client).fetch(url)
    extractor = HhExtractor()
    entries = extractor.extract(html)

    print(f"\n{len(entries)} entries via {extractor.last_strategy}")
    for e in entries[:5]:
        print(f"  {e.id}  {e.title} | {e.company} | {e.salary_text}")

    assert entries, "no entries extracted; markup may have changed"
    assert all(e.id.isdigit() for e in entries)

    status = VacancyStatusProbe(client).check(entries[0].id)
    assert status.eligible or status.reason in {"archived", "test-required", "unavailable"}
