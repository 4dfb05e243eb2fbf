from __future__ import annotations

import re
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Tag

from ..models import Entry
from .base import CascadingExtractor, ExtractionStrategy
from .registry import register

_BASE_URL = "https://hh.ru"
_ID_RE = re.compile(r"/vacancy/(\d+)")

TITLE_LINK_SELECTOR = "a[data-qa='serp-item__title']"
COMPANY_SELECTORS = (
    "[data-qa='vacancy-serp__vacancy-employer']",
    "[data-qa='vacancy-serp__vacancy-employer-text']",
)
SALARY_SELECTORS = (
    "[data-qa='vacancy-serp__vacancy-compensation']",
    "[class*='compensation']",
)
SNIPPET_SELECTORS = (
    "[data-qa='vacancy-serp__vacancy_snippet_responsibility']",
    "[data-qa='vacancy-serp__vacancy_snippet_requirement']",
)


def _text(node: Tag | None) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ", strip=True).split())


def _first_text(card: Tag, selectors: tuple[str, ...]) -> str:
    for sel in selectors:
        t = _text(card.select_one(sel))
        if t:
            return t
    return ""


def _canonical_url(href: str) -> str:
    parts = urlsplit(urljoin(_BASE_URL, href))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def entry_from_link(link: Tag | None, card: Tag | None = None) -> Entry | None:
    """
    Build an Entry from a title link (and optionally its surrounding card).
    Returns None when title, href or the numeric id is missing.
    """
    if link is None:
        return None
    title = _text(link)
    href = str(link.get("href") or "").strip()
    if not title or not href:
        return None
    m = _ID_RE.search(href)
    if not m:
        return None

    company = salary = snippet = ""
    if card is not None:
        company = _first_text(card, COMPANY_SELECTORS)
        salary = _first_text(card, SALARY_SELECTORS)
        snippet = " ".join(t for t in (_text(card.select_one(s)) for s in SNIPPET_SELECTORS) if t)

    return Entry(
        id=m.group(1),
        title=title,
        company=company,
        salary_text=salary,
        description_snippet=snippet,
        url=_canonical_url(href),
    )


class CardStrategy(ExtractionStrategy):
    """Find result cards by CSS selector, then the title link inside each card."""

    def __init__(self, name: str, card_selector: str) -> None:
        self.name = name
        self.card_selector = card_selector

    def extract(self, soup: BeautifulSoup) -> list[Entry]:
        out: list[Entry] = []
        for card in soup.select(self.card_selector):
            entry = entry_from_link(card.select_one(TITLE_LINK_SELECTOR), card)
            if entry is not None:
                out.append(entry)
        return out


class TitleLinkStrategy(ExtractionStrategy):
    """Last resort: title links anywhere on the page, no card context."""

    name = "title-links"

    def extract(self, soup: BeautifulSoup) -> list[Entry]:
        out: list[Entry] = []
        for link in soup.select(TITLE_LINK_SELECTOR):
            entry = entry_from_link(link)
            if entry is not None:
                out.append(entry)
        return out


@register
class HhExtractor(CascadingExtractor):
    """
    hh.ru search result pages.

    Strategies, in order:
      1. cards marked data-qa="vacancy-serp__vacancy"
      2. legacy ".vacancy-serp-item" cards
      3. bare title links
    """

    kind = "hh"

    def __init__(self) -> None:
        super().__init__([
            CardStrategy("serp-cards", "[data-qa='vacancy-serp__vacancy']"),
            CardStrategy("legacy-cards", ".vacancy-serp-item"),
            TitleLinkStrategy(),
        ])
