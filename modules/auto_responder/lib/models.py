from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Entry:
    """
    One listing item extracted from a result page.
    Identity is `id` (taken from the listing's canonical URL); everything else is display/filter data.
    """

    id: str
    title: str
    company: str = ""
    salary_text: str = ""
    description_snippet: str = ""
    url: str = ""


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    FATAL_STOP = "fatal_stop"


@dataclass(frozen=True)
class SubmissionOutcome:
    """
    Result of driving one Entry through the submission controller.

    Build with the constructors below rather than directly:
        SubmissionOutcome.success()
        SubmissionOutcome.skipped("duplicate")
        SubmissionOutcome.failed("http-502", retryable=False)
        SubmissionOutcome.fatal_stop("quota-exceeded")
    """

    kind: OutcomeKind
    reason: str = ""
    retryable: bool = False
    attempts: int = 0

    @classmethod
    def success(cls, *, attempts: int = 1) -> SubmissionOutcome:
        return cls(OutcomeKind.SUCCESS, attempts=attempts)

    @classmethod
    def skipped(cls, reason: str, *, attempts: int = 0) -> SubmissionOutcome:
        return cls(OutcomeKind.SKIPPED, reason=reason, attempts=attempts)

    @classmethod
    def failed(cls, reason: str, *, retryable: bool, attempts: int = 0) -> SubmissionOutcome:
        return cls(OutcomeKind.FAILED, reason=reason, retryable=retryable, attempts=attempts)

    @classmethod
    def fatal_stop(cls, reason: str, *, attempts: int = 0) -> SubmissionOutcome:
        return cls(OutcomeKind.FATAL_STOP, reason=reason, attempts=attempts)

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_fatal(self) -> bool:
        return self.kind is OutcomeKind.FATAL_STOP


@dataclass(frozen=True)
class StatusResult:
    """Answer of the remote status probe for one entry."""

    eligible: bool
    reason: str = ""


@dataclass(frozen=True)
class ApplyResult:
    """Answer of the remote submitter. `error_code` is only meaningful when success is False."""

    success: bool
    error_code: str = ""


# ---- Remote error classification ---------------------------------------------

QUOTA_EXCEEDED_CODES = frozenset({"negotiations-limit-exceeded", "quota-exceeded"})
TEST_REQUIRED_CODES = frozenset({"test-required"})
ALREADY_APPLIED_CODES = frozenset({"already-applied", "alreadyapplied"})
NOT_ACCEPTED_CODES = frozenset({"not-accepted", "vacancy-not-accepting", "vacancy-archived"})


class ErrorClass(str, Enum):
    QUOTA_EXCEEDED = "quota-exceeded"
    TEST_REQUIRED = "test-required"
    ALREADY_APPLIED = "already-applied"
    NOT_ACCEPTED = "not-accepted"
    RETRYABLE = "retryable"


def classify_error(code: str | None) -> ErrorClass:
    """
    Map a submitter error code onto the engine's handling classes.
    Unknown or empty codes are retryable.
    """
    c = (code or "").strip().lower()
    if c in QUOTA_EXCEEDED_CODES:
        return ErrorClass.QUOTA_EXCEEDED
    if c in TEST_REQUIRED_CODES:
        return ErrorClass.TEST_REQUIRED
    if c in ALREADY_APPLIED_CODES:
        return ErrorClass.ALREADY_APPLIED
    if c in NOT_ACCEPTED_CODES:
        return ErrorClass.NOT_ACCEPTED
    return ErrorClass.RETRYABLE
