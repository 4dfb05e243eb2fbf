from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from bs4 import BeautifulSoup

from ..models import Entry

LOG = logging.getLogger(__name__)


class ExtractorError(Exception):
    """Raised for registry lookups and misconfigured extractors (never from extract())."""


class BaseExtractor(ABC):
    """
    Turn one fetched listing page into Entries.

    Contract:
      - extract(page_content) returns entries in page order.
      - Returns [] when nothing is found; must not raise.
    """

    # Concrete subclasses MUST set this to a stable string, e.g. "hh", "stub"
    kind: str = ""

    @abstractmethod
    def extract(self, page_content: str) -> list[Entry]:
        raise NotImplementedError


class ExtractionStrategy(ABC):
    """One way of locating entries in parsed markup."""

    name: str = ""

    @abstractmethod
    def extract(self, soup: BeautifulSoup) -> list[Entry]:
        raise NotImplementedError


class CascadingExtractor(BaseExtractor):
    """
    Parse once, then try strategies in order until one yields entries.
    A strategy that raises is logged and treated as finding nothing.
    """

    parser: str = "html5lib"

    def __init__(self, strategies: Sequence[ExtractionStrategy]) -> None:
        if not strategies:
            raise ExtractorError("CascadingExtractor needs at least one strategy.")
        self.strategies = list(strategies)
        self.last_strategy: str | None = None

    def extract(self, page_content: str) -> list[Entry]:
        self.last_strategy = None
        if not page_content or not page_content.strip():
            return []
        try:
            soup = BeautifulSoup(page_content, self.parser)
        except Exception as e:
            LOG.warning("Failed to parse page markup: %r", e)
            return []

        for strategy in self.strategies:
            try:
                entries = strategy.extract(soup)
            except Exception as e:
                LOG.warning("Extraction strategy %s raised %r", strategy.name, e)
                continue
            if entries:
                self.last_strategy = strategy.name
                LOG.debug("Strategy %s found %d entries", strategy.name, len(entries))
                return _dedupe(entries)
        return []


def _dedupe(entries: list[Entry]) -> list[Entry]:
    seen: set[str] = set()
    out: list[Entry] = []
    for e in entries:
        if e.id in seen:
            continue
        seen.add(e.id)
        out.append(e)
    return out
