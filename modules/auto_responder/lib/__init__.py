# modules/auto_responder/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, FilterConfig, PacingConfig, RetryConfig, Settings
from .engine import RunReport, run_once
from .models import Entry, OutcomeKind, SubmissionOutcome
from .state import InvalidTransition, MissingCredentialError, RunStateMachine, RunStatus

# Built-in extractors register themselves on import.
from .extractors import hh as _hh  # noqa: F401
from .extractors import stub as _stub  # noqa: F401

__all__ = [
    "ConfigError",
    "Entry",
    "FilterConfig",
    "InvalidTransition",
    "MissingCredentialError",
    "OutcomeKind",
    "PacingConfig",
    "RetryConfig",
    "RunReport",
    "RunStateMachine",
    "RunStatus",
    "Settings",
    "SubmissionOutcome",
    "run_once",
]
