# tests/test_urls.py
from urllib.parse import parse_qs, urlsplit

import pytest

from modules.auto_responder.lib.config import DEFAULT_LISTING_URL
from modules.auto_responder.lib.urls import normalize_listing_url, page_url, validate_url


@pytest.mark.parametrize(
    "url, ok",
    [
        ("https://hh.ru/search/vacancy?text=python", True),
        ("http://spb.hh.ru/", True),
        ("https://HH.ru/search/vacancy", True),
        ("https://hh.ru.evil.com/search/vacancy", False),
        ("https://nothh.ru/", False),
        ("ftp://hh.ru/", False),
        ("hh.ru/search/vacancy", False),
        ("", False),
    ],
)
def test_validate_url(url, ok):
    assert validate_url(url) is ok


def test_normalize_listing_url():
    assert normalize_listing_url("") == DEFAULT_LISTING_URL
    assert normalize_listing_url("https://hh.ru") == DEFAULT_LISTING_URL
    assert normalize_listing_url("https://hh.ru/") == DEFAULT_LISTING_URL

    search = "https://hh.ru/search/vacancy?text=go&area=1"
    assert normalize_listing_url(search) == search

    rewritten = normalize_listing_url("https://spb.hh.ru/employer/123")
    parts = urlsplit(rewritten)
    assert (parts.netloc, parts.path) == ("spb.hh.ru", "/search/vacancy")
    assert parts.query == urlsplit(DEFAULT_LISTING_URL).query

    assert normalize_listing_url("not a url") == "not a url"


def test_page_url_sets_and_replaces_page():
    url = page_url("https://hh.ru/search/vacancy?text=python&page=9&area=1", 2)
    query = parse_qs(urlsplit(url).query)

    assert query["page"] == ["2"]
    assert query["text"] == ["python"]
    assert query["area"] == ["1"]
    assert page_url("https://hh.ru/search/vacancy", 0).endswith("?page=0")
