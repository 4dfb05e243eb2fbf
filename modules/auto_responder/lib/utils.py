from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def as_str_set(value: Any) -> frozenset[str]:
    """
    Accept a list/tuple/set of strings or a comma-separated string and return
    a frozenset of stripped, lower-cased, non-empty entries.
    """
    if value is None:
        return frozenset()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, Iterable):
        items = value
    else:
        items = [value]
    return frozenset(s for s in (str(x).strip().lower() for x in items) if s)


def format_elapsed(ms: int) -> str:
    """
    Render a duration as H:MM:SS (or M:SS under an hour), e.g. 3723000 -> "1:02:03".
    """
    seconds = max(0, int(ms)) // 1000
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}:{minutes % 60:02d}:{seconds % 60:02d}"
    return f"{minutes}:{seconds % 60:02d}"
