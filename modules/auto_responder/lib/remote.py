# modules/auto_responder/lib/remote.py
"""
Network-facing collaborators of the engine, all sharing one HttpClient:

  PageFetcher              listing page HTML
  VacancyStatusProbe       public vacancy API -> StatusResult
  ResponseSubmitter        response form POST -> ApplyResult
  SessionCredentialSource  xsrf token (static or from the session cookie)

Plus DryRunSubmitter (no POST) and the resume / cover-letter helpers.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from .http_client import HttpClient, decode_json
from .models import ApplyResult, StatusResult

LOG = logging.getLogger(__name__)

SITE_ROOT = "https://hh.ru"
VACANCY_RESPONSE_URL = "https://hh.ru/applicant/vacancy_response/popup"
PUBLIC_VACANCY_API = "https://api.hh.ru/vacancies/{id}"
RESUMES_API = "https://hh.ru/applicant/resumes"
XSRF_COOKIE = "_xsrf"
VACANCY_NAME_PLACEHOLDER = "{#vacancyName}"


class PageFetcher:
    def __init__(self, client: HttpClient) -> None:
        self._client = client

    def fetch(self, url: str) -> str:
        """Return page HTML; raises requests exceptions on transport errors and non-2xx."""
        return self._client.get_text(url, headers={"Accept": "text/html,application/xhtml+xml"})


class VacancyStatusProbe:
    """
    Eligibility check against the public vacancy API.

    Non-2xx -> ineligible "unavailable"; archived -> "archived";
    test.required -> "test-required". Transport errors propagate so the
    submission controller can retry them.
    """

    def __init__(self, client: HttpClient) -> None:
        self._client = client

    def check(self, entry_id: str) -> StatusResult:
        url = PUBLIC_VACANCY_API.format(id=entry_id)
        resp = self._client.get(url, headers={"Accept": "application/json"})
        if not resp.ok:
            LOG.debug("Status probe for %s returned HTTP %s", entry_id, resp.status_code)
            return StatusResult(eligible=False, reason="unavailable")
        data = decode_json(resp, url)
        if not isinstance(data, dict):
            return StatusResult(eligible=True)
        if data.get("archived"):
            return StatusResult(eligible=False, reason="archived")
        test = data.get("test")
        if isinstance(test, dict) and test.get("required"):
            return StatusResult(eligible=False, reason="test-required")
        return StatusResult(eligible=True)


class ResponseSubmitter:
    """Send the response form for one vacancy with the configured resume."""

    def __init__(self, client: HttpClient, resume_hash: str) -> None:
        self._client = client
        self.resume_hash = resume_hash

    def apply(self, entry_id: str, credential: str, cover_letter: str) -> ApplyResult:
        form = {
            "_xsrf": credential,
            "vacancy_id": entry_id,
            "resume_hash": self.resume_hash,
            "ignore_postponed": "true",
            "incomplete": "false",
            "mark_applicant_visible_in_vacancy_country": "false",
            "lux": "true",
            "withoutTest": "no",
            "hhtmFromLabel": "",
            "hhtmSourceLabel": "",
        }
        if cover_letter:
            form["letter"] = cover_letter
        headers = {
            "x-xsrftoken": credential,
            "x-requested-with": "XMLHttpRequest",
            "Accept": "application/json",
            "Referer": f"{SITE_ROOT}/vacancy/{entry_id}",
        }
        resp = self._client.post_form(VACANCY_RESPONSE_URL, form, headers=headers)
        if resp.ok:
            return ApplyResult(success=True)
        return ApplyResult(success=False, error_code=_error_code(resp))


class DryRunSubmitter:
    """Pretends every response was accepted; nothing leaves the process."""

    def __init__(self) -> None:
        self.applied: list[str] = []

    def apply(self, entry_id: str, credential: str, cover_letter: str) -> ApplyResult:
        self.applied.append(entry_id)
        LOG.info("[dry-run] would respond to vacancy %s", entry_id)
        return ApplyResult(success=True)


class SessionCredentialSource:
    """
    Current xsrf token: the static token when configured, otherwise the
    `_xsrf` cookie of the shared session. Empty means no credential.
    """

    def __init__(self, client: HttpClient | None = None, static_token: str = "") -> None:
        self._client = client
        self._static = (static_token or "").strip()

    def current(self) -> str | None:
        if self._static:
            return self._static
        if self._client is None:
            return None
        return self._client.cookie(XSRF_COOKIE) or None


def discover_resume_hash(client: HttpClient) -> str | None:
    """First resume hash of the logged-in applicant, or None on any failure."""
    try:
        data = client.get_json(RESUMES_API, headers={"Accept": "application/json"})
    except (requests.RequestException, ValueError) as e:
        LOG.warning("Resume lookup failed: %r", e)
        return None
    items = data.get("items") if isinstance(data, dict) else None
    if not items or not isinstance(items[0], dict):
        return None
    resume_hash = str(items[0].get("hash") or "").strip()
    return resume_hash or None


def render_cover_letter(template: str, title: str) -> str:
    if not template:
        return ""
    return template.replace(VACANCY_NAME_PLACEHOLDER, title or "")


def _error_code(resp: requests.Response) -> str:
    try:
        body: Any = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("error") or body.get("errorCode") or body.get("type")
        if isinstance(code, str) and code.strip():
            return code.strip()
    return f"http-{resp.status_code}"
