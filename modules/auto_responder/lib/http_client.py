# modules/auto_responder/lib/http_client.py
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from http.cookies import SimpleCookie
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

COOKIE_DOMAIN = ".hh.ru"


def _transport_retry() -> Retry:
    # Idempotent methods only: a replayed POST could send a second response,
    # and the submission controller already owns retries for those.
    return Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET", "HEAD"]),
        raise_on_status=False,
    )


class HttpClient:
    """Shared session for page fetches, status probes and submissions."""

    def __init__(self, timeout: float = 10.0, user_agent: str = "Mozilla/5.0", cookies: str = ""):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        adapter = HTTPAdapter(max_retries=_transport_retry(), pool_connections=2, pool_maxsize=4)
        for prefix in ("http://", "https://"):
            self.session.mount(prefix, adapter)
        if cookies:
            self.load_cookie_header(cookies)

    def load_cookie_header(self, header: str, domain: str = COOKIE_DOMAIN) -> None:
        """Load a raw `Cookie:` header value ("a=1; b=2") into the session jar."""
        parsed = SimpleCookie()
        parsed.load(header)
        for name, morsel in parsed.items():
            self.session.cookies.set(name, morsel.value, domain=domain)

    def cookie(self, name: str) -> str | None:
        return next((c.value for c in self.session.cookies if c.name == name), None)

    def get(self, url: str, *, timeout: float | None = None, **kwargs: Any) -> requests.Response:
        """GET without raising on status; callers inspect the response."""
        return self.session.get(url, timeout=timeout or self.timeout, **kwargs)

    def get_text(self, url: str, *, headers: Mapping[str, str] | None = None, **kwargs: Any) -> str:
        """GET and return decoded text; raises for non-2xx."""
        resp = self.get(url, headers=headers, **kwargs)
        resp.raise_for_status()
        if not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    def get_json(self, url: str, *, headers: Mapping[str, str] | None = None, **kwargs: Any) -> Any:
        """GET and decode JSON; raises for non-2xx and for undecodable bodies."""
        resp = self.get(url, headers=headers, **kwargs)
        resp.raise_for_status()
        return decode_json(resp, url)

    def post_form(
        self,
        url: str,
        data: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """POST multipart form data; never raises on status."""
        files = {k: (None, "" if v is None else str(v)) for k, v in data.items()}
        return self.session.post(url, files=files, headers=headers, timeout=timeout or self.timeout)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() failed", exc_info=True)


def decode_json(resp: requests.Response, url: str = "") -> Any:
    """`resp.json()`, falling back to the raw text when Content-Type lies."""
    try:
        return resp.json()
    except ValueError as e:
        try:
            return json.loads(resp.text)
        except ValueError:
            preview = (resp.text or "")[:200].replace("\n", " ")
            raise ValueError(f"JSON decode failed for {url!r}; body starts: {preview!r}") from e
