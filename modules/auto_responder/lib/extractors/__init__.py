# modules/auto_responder/lib/extractors/__init__.py
from __future__ import annotations

from .base import BaseExtractor, CascadingExtractor, ExtractionStrategy, ExtractorError
from .hh import HhExtractor
from .registry import all_kinds, get, register
from .stub import StubExtractor

__all__ = [
    "BaseExtractor",
    "CascadingExtractor",
    "ExtractionStrategy",
    "ExtractorError",
    "HhExtractor",
    "StubExtractor",
    "all_kinds",
    "get",
    "register",
]
