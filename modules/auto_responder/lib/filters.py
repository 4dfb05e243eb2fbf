"""
Filter engine: decide whether an Entry is worth responding to.

`evaluate` is pure and never short-circuits; every failing check contributes a
reason so callers (and the activity log) see the complete picture.

Reason strings:
  salary-missing            no salary text and skip_if_no_salary is set
  salary-below-min          best available bound < min_salary
  salary-above-max          lowest available bound > max_salary
  company-blacklisted:<b>   company contains blacklist entry <b>
  missing-required-keyword  none of required_keywords present
  excluded-keyword:<k>      excluded keyword <k> present (one reason per hit)
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .config import FilterConfig
from .models import Entry

_WS_RE = re.compile(r"\s+")
_THOUSANDS_RE = re.compile(r"(?<=\d)[,'’](?=\d{3}(?!\d))")
_INT_RE = re.compile(r"\d+")
_CURRENCY_RE = re.compile(r"[₽$€£¥₸₴]|руб\.?|rub|usd|eur|kzt", re.I)

_FROM_MARKERS = ("от", "from", "starting at", "min")
_UPTO_MARKERS = ("до", "up to", "upto", "max", "to")


@dataclass(frozen=True)
class SalaryRange:
    low: int | None
    high: int | None


@dataclass(frozen=True)
class FilterDecision:
    accept: bool
    reasons: tuple[str, ...] = ()


def parse_salary(text: str | None) -> SalaryRange | None:
    """
    Parse free-form salary text into a range.

      "от 100 000 ₽"            -> (100000, None)
      "до 150 000 руб."         -> (None, 150000)
      "100 000 – 150 000 ₽"     -> (100000, 150000)
      "$3,000"                  -> (3000, 3000)
      "по договоренности"       -> None   (no constraint)
    """
    if not text or not text.strip():
        return None
    lowered = _WS_RE.sub(" ", text).strip().lower()
    markers_text = _CURRENCY_RE.sub(" ", lowered)

    compact = _WS_RE.sub("", lowered)
    compact = _THOUSANDS_RE.sub("", compact)
    numbers = [int(n) for n in _INT_RE.findall(compact)]
    if not numbers:
        return None
    if len(numbers) >= 2:
        return SalaryRange(numbers[0], numbers[1])

    value = numbers[0]
    if _has_marker(markers_text, _FROM_MARKERS):
        return SalaryRange(value, None)
    if _has_marker(markers_text, _UPTO_MARKERS):
        return SalaryRange(None, value)
    return SalaryRange(value, value)


def _has_marker(text: str, markers: tuple[str, ...]) -> bool:
    for m in markers:
        if re.search(rf"(?<![a-zа-яё]){re.escape(m)}(?![a-zа-яё])", text):
            return True
    return False


def evaluate(entry: Entry, config: FilterConfig) -> FilterDecision:
    reasons: list[str] = []

    # Salary
    salary_text = (entry.salary_text or "").strip()
    if not salary_text:
        if config.skip_if_no_salary:
            reasons.append("salary-missing")
    else:
        rng = parse_salary(salary_text)
        if rng is not None:
            best = rng.high if rng.high is not None else rng.low
            lowest = rng.low if rng.low is not None else rng.high
            if config.min_salary > 0 and best is not None and best < config.min_salary:
                reasons.append("salary-below-min")
            if config.max_salary > 0 and lowest is not None and lowest > config.max_salary:
                reasons.append("salary-above-max")

    # Company
    company = (entry.company or "").lower()
    if company:
        for banned in sorted(config.blacklisted_companies):
            if banned and banned in company:
                reasons.append(f"company-blacklisted:{banned}")
                break

    # Keywords
    haystack = f"{entry.title} {entry.description_snippet}".lower()
    if config.required_keywords and not any(k in haystack for k in config.required_keywords):
        reasons.append("missing-required-keyword")
    for kw in sorted(config.excluded_keywords):
        if kw and kw in haystack:
            reasons.append(f"excluded-keyword:{kw}")

    return FilterDecision(accept=not reasons, reasons=tuple(reasons))
