from __future__ import annotations

import json
import logging
from typing import Any

from ..models import Entry
from .base import BaseExtractor
from .registry import register

LOG = logging.getLogger(__name__)


@register
class StubExtractor(BaseExtractor):
    """
    A zero-markup extractor used for tests and dry-runs.

    Page content is a JSON list of objects:
        [{"id": "1", "title": "...", "company": "...", "salary_text": "...",
          "description_snippet": "...", "url": "..."}, ...]

    Items without an id or title are dropped; invalid JSON yields [].
    """

    kind = "stub"

    def extract(self, page_content: str) -> list[Entry]:
        try:
            raw = json.loads(page_content or "[]")
        except (TypeError, ValueError) as e:
            LOG.debug("StubExtractor could not decode page: %r", e)
            return []
        if not isinstance(raw, list):
            return []

        out: list[Entry] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            entry = _entry(item)
            if entry is not None:
                out.append(entry)
        return out


def _entry(item: dict[str, Any]) -> Entry | None:
    entry_id = str(item.get("id") or "").strip()
    title = str(item.get("title") or "").strip()
    if not entry_id or not title:
        return None
    return Entry(
        id=entry_id,
        title=title,
        company=str(item.get("company") or ""),
        salary_text=str(item.get("salary_text") or ""),
        description_snippet=str(item.get("description_snippet") or ""),
        url=str(item.get("url") or ""),
    )
