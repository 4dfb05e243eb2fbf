from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .config import DEFAULT_LISTING_URL

LISTING_HOST = "hh.ru"
SEARCH_PATH = "/search/vacancy"


def validate_url(url: str, host: str = LISTING_HOST) -> bool:
    """True if `url` is an http(s) URL on the listing host (subdomains allowed)."""
    try:
        parts = urlsplit((url or "").strip())
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    hostname = parts.hostname.lower()
    return hostname == host or hostname.endswith("." + host)


def normalize_listing_url(url: str) -> str:
    """
    Rewrite a listing-host URL into the search listing form.

    - blank or site root       -> default search URL
    - any non-search path      -> search path with the default query
    - search URLs are returned unchanged
    Anything unparseable is returned as given.
    """
    raw = (url or "").strip()
    if not raw:
        return DEFAULT_LISTING_URL
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw
    if parts.path in ("", "/"):
        return DEFAULT_LISTING_URL
    if SEARCH_PATH not in parts.path:
        default = urlsplit(DEFAULT_LISTING_URL)
        return urlunsplit((parts.scheme, parts.netloc, SEARCH_PATH, default.query, ""))
    return raw


def page_url(url: str, page: int) -> str:
    """Set (or replace) the zero-based `page` query parameter."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "page"]
    query.append(("page", str(int(page))))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
