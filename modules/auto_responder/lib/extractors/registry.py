from __future__ import annotations

from .base import BaseExtractor, ExtractorError

# Global in-process registry: kind -> extractor class
_REGISTRY: dict[str, type[BaseExtractor]] = {}


def register(cls: type[BaseExtractor]) -> type[BaseExtractor]:
    """
    Class decorator or direct call to register an extractor class.
    Requires cls.kind to be a non-empty string.
    """
    kind = getattr(cls, "kind", "") or ""
    if not isinstance(kind, str) or not kind.strip():
        raise ExtractorError(f"Cannot register extractor {cls!r}: missing/empty 'kind'.")
    key = kind.strip().lower()
    if key in _REGISTRY and _REGISTRY[key] is not cls:
        raise ExtractorError(f"Extractor kind {key!r} already registered to {_REGISTRY[key]!r}.")
    _REGISTRY[key] = cls
    return cls


def get(kind: str) -> type[BaseExtractor]:
    """
    Look up an extractor class by kind (case-insensitive).
    Raises ExtractorError if not found.
    """
    key = (kind or "").strip().lower()
    if key not in _REGISTRY:
        raise ExtractorError(f"No extractor registered for kind {kind!r}.")
    return _REGISTRY[key]


def all_kinds() -> dict[str, type[BaseExtractor]]:
    return dict(_REGISTRY)
