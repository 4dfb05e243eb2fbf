from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from .utils import as_str_set, truthy

DEFAULT_LISTING_URL = (
    "https://hh.ru/search/vacancy?text=Frontend&search_field=name&area=113"
    "&experience=doesNotMatter&order_by=relevance&search_period=7&items_on_page=20"
)
DEFAULT_STORE_PATH = "/app/local/state/auto_responder.db"
DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class FilterConfig:
    """
    Acceptance criteria for a candidate entry. Salaries are whole currency units;
    0 disables the bound. Keyword and company sets are stored lower-cased.
    """

    min_salary: int = 0
    max_salary: int = 0
    skip_if_no_salary: bool = False
    blacklisted_companies: frozenset[str] = frozenset()
    required_keywords: frozenset[str] = frozenset()
    excluded_keywords: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        for name in ("blacklisted_companies", "required_keywords", "excluded_keywords"):
            object.__setattr__(self, name, as_str_set(getattr(self, name)))


@dataclass(frozen=True)
class RetryConfig:
    """
    max_retries:     extra submit attempts after the first one
    retry_delay_ms:  fixed pause before each retry
    base_delay_ms:   pacing between entries, and the unit of exponential backoff
    jitter_factor:   +/- fraction applied to the paced delay (0.2 => +/-20%)
    max_backoff_ms:  ceiling for exponential backoff; 0 means uncapped
    """

    max_retries: int = 3
    retry_delay_ms: int = 2000
    base_delay_ms: int = 3000
    jitter_factor: float = 0.2
    max_backoff_ms: int = 300_000


@dataclass(frozen=True)
class PacingConfig:
    """
    Time-of-day scaling for the inter-response delay. Windows are [start, end)
    in local hours and may wrap midnight (e.g. 23 -> 7).
    """

    day_start_hour: int = 9
    day_end_hour: int = 18
    day_multiplier: float = 0.8
    night_start_hour: int = 23
    night_end_hour: int = 7
    night_multiplier: float = 1.5


@dataclass(frozen=True)
class Settings:
    """
    Canonical configuration for one auto-responder run. Frozen: changes made
    through the CLI or saved settings apply to the next run only.
    """

    # Target
    start_url: str = ""
    extractor: str = "hh"

    # Persistence
    store_path: str = DEFAULT_STORE_PATH

    # Run bounds
    max_submissions: int = 200
    max_pages: int = 100
    page_delay_ms: int = 5000
    request_timeout_s: float = 10.0
    max_page_failures: int = 3
    max_empty_pages: int = 2
    duplicate_stop_threshold: int = 3
    ledger_cap: int = 10_000
    log_cap: int = 100

    # Credentials & submission payload
    resume_hash: str = ""
    auto_find_resume: bool = True
    cover_letter_template: str = ""
    cookies: str = field(default="", repr=False)
    xsrf_token: str = field(default="", repr=False)
    user_agent: str = DEFAULT_USER_AGENT

    # Runtime behavior
    skip_network: bool = False
    dry_run: bool = False

    filters: FilterConfig = field(default_factory=FilterConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    pacing: PacingConfig = field(default_factory=PacingConfig)

    # ------------- convenience -------------
    def effective_start_url(self) -> str:
        return self.start_url.strip() or DEFAULT_LISTING_URL

    def to_saved(self) -> dict[str, Any]:
        """
        The subset persisted to the store between runs (no credentials).
        """
        return {
            "start_url": self.start_url,
            "filters": _filters_to_dict(self.filters),
            "retry": asdict(self.retry),
            "pacing": asdict(self.pacing),
        }

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(
        cls,
        kwargs: Mapping[str, Any] | None,
        saved: Mapping[str, Any] | None = None,
    ) -> Settings:
        """
        Build Settings from kwargs with validation.

        `saved` (typically the store's "settings" record from a previous run)
        supplies defaults; explicit kwargs always win. Nested `filters`,
        `retry` and `pacing` mappings are accepted, as are their flat aliases
        (e.g. min_salary=..., max_retries=...).

        Keys ending with "_env" name an environment variable, e.g.
            resume_hash_env="HH_RESUME_HASH"
        """
        kw: dict[str, Any] = {}
        for source in (saved or {}, kwargs or {}):
            for k, v in source.items():
                if k in ("filters", "retry", "pacing") and isinstance(v, Mapping):
                    merged = dict(kw.get(k) or {})
                    merged.update(v)
                    kw[k] = merged
                else:
                    kw[k] = v
        kw = _resolve_env_keys(kw)

        try:
            settings = cls(
                start_url=str(kw.get("start_url") or "").strip(),
                extractor=str(kw.get("extractor") or "hh").strip().lower(),
                store_path=str(kw.get("store_path") or DEFAULT_STORE_PATH),
                max_submissions=_int(kw, "max_submissions", 200),
                max_pages=_int(kw, "max_pages", 100),
                page_delay_ms=_int(kw, "page_delay_ms", 5000),
                request_timeout_s=float(kw.get("request_timeout_s") or 10.0),
                max_page_failures=_int(kw, "max_page_failures", 3),
                max_empty_pages=_int(kw, "max_empty_pages", 2),
                duplicate_stop_threshold=_int(kw, "duplicate_stop_threshold", 3),
                ledger_cap=_int(kw, "ledger_cap", 10_000),
                log_cap=_int(kw, "log_cap", 100),
                resume_hash=str(kw.get("resume_hash") or "").strip(),
                auto_find_resume=truthy(kw.get("auto_find_resume", True)),
                cover_letter_template=str(kw.get("cover_letter_template") or ""),
                cookies=str(kw.get("cookies") or "").strip(),
                xsrf_token=str(kw.get("xsrf_token") or "").strip(),
                user_agent=str(kw.get("user_agent") or DEFAULT_USER_AGENT),
                skip_network=truthy(kw.get("skip_network")),
                dry_run=truthy(kw.get("dry_run")),
                filters=_parse_filters(_section(kw, "filters", _FILTER_KEYS)),
                retry=_parse_retry(_section(kw, "retry", _RETRY_KEYS)),
                pacing=_parse_pacing(_section(kw, "pacing", _PACING_KEYS)),
            )
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigError):
                raise
            raise ConfigError(f"Invalid auto_responder setting: {e}") from e

        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
_FILTER_KEYS = (
    "min_salary",
    "max_salary",
    "skip_if_no_salary",
    "blacklisted_companies",
    "required_keywords",
    "excluded_keywords",
)
_RETRY_KEYS = ("max_retries", "retry_delay_ms", "base_delay_ms", "jitter_factor", "max_backoff_ms")
_PACING_KEYS = (
    "day_start_hour",
    "day_end_hour",
    "day_multiplier",
    "night_start_hour",
    "night_end_hour",
    "night_multiplier",
)


def _resolve_env_keys(kw: dict[str, Any]) -> dict[str, Any]:
    """
    Replace `<name>_env="ENV_VAR"` with `<name>=os.getenv("ENV_VAR", "")`.
    An explicit non-empty `<name>` is not overridden.
    """
    out = dict(kw)
    for k, v in kw.items():
        if not (isinstance(k, str) and k.endswith("_env") and isinstance(v, str)):
            continue
        target = k[: -len("_env")]
        out.pop(k, None)
        if not str(out.get(target) or "").strip():
            out[target] = os.getenv(v.strip(), "")
    return out


def _section(kw: Mapping[str, Any], name: str, keys: tuple[str, ...]) -> dict[str, Any]:
    nested = kw.get(name) or {}
    if not isinstance(nested, Mapping):
        raise ConfigError(f"'{name}' must be an object.")
    out = dict(nested)
    for k in keys:
        if k in kw and kw[k] is not None:
            out[k] = kw[k]
    unknown = set(out) - set(keys)
    if unknown:
        raise ConfigError(f"'{name}' has unknown field(s): {sorted(unknown)}")
    return out


def _int(kw: Mapping[str, Any], key: str, default: int) -> int:
    v = kw.get(key)
    if v is None or v == "":
        return default
    return int(v)


def _parse_filters(d: Mapping[str, Any]) -> FilterConfig:
    return FilterConfig(
        min_salary=_int(d, "min_salary", 0),
        max_salary=_int(d, "max_salary", 0),
        skip_if_no_salary=truthy(d.get("skip_if_no_salary")),
        blacklisted_companies=as_str_set(d.get("blacklisted_companies")),
        required_keywords=as_str_set(d.get("required_keywords")),
        excluded_keywords=as_str_set(d.get("excluded_keywords")),
    )


def _parse_retry(d: Mapping[str, Any]) -> RetryConfig:
    base = RetryConfig()
    return RetryConfig(
        max_retries=_int(d, "max_retries", base.max_retries),
        retry_delay_ms=_int(d, "retry_delay_ms", base.retry_delay_ms),
        base_delay_ms=_int(d, "base_delay_ms", base.base_delay_ms),
        jitter_factor=float(d.get("jitter_factor", base.jitter_factor)),
        max_backoff_ms=_int(d, "max_backoff_ms", base.max_backoff_ms),
    )


def _parse_pacing(d: Mapping[str, Any]) -> PacingConfig:
    base = PacingConfig()
    return PacingConfig(
        day_start_hour=_int(d, "day_start_hour", base.day_start_hour),
        day_end_hour=_int(d, "day_end_hour", base.day_end_hour),
        day_multiplier=float(d.get("day_multiplier", base.day_multiplier)),
        night_start_hour=_int(d, "night_start_hour", base.night_start_hour),
        night_end_hour=_int(d, "night_end_hour", base.night_end_hour),
        night_multiplier=float(d.get("night_multiplier", base.night_multiplier)),
    )


def _filters_to_dict(f: FilterConfig) -> dict[str, Any]:
    return {
        "min_salary": f.min_salary,
        "max_salary": f.max_salary,
        "skip_if_no_salary": f.skip_if_no_salary,
        "blacklisted_companies": sorted(f.blacklisted_companies),
        "required_keywords": sorted(f.required_keywords),
        "excluded_keywords": sorted(f.excluded_keywords),
    }


def _validate_settings(s: Settings) -> None:
    for name in ("max_submissions", "max_pages", "max_page_failures", "max_empty_pages", "duplicate_stop_threshold"):
        if getattr(s, name) <= 0:
            raise ConfigError(f"'{name}' must be >= 1.")
    for name in ("ledger_cap", "log_cap"):
        if getattr(s, name) <= 0:
            raise ConfigError(f"'{name}' must be >= 1.")
    if s.page_delay_ms < 0:
        raise ConfigError("'page_delay_ms' must be >= 0.")
    if s.request_timeout_s <= 0:
        raise ConfigError("'request_timeout_s' must be > 0.")
    if not s.store_path.strip():
        raise ConfigError("'store_path' cannot be empty.")

    f = s.filters
    if f.min_salary < 0 or f.max_salary < 0:
        raise ConfigError("Salary bounds must be >= 0.")
    if f.min_salary and f.max_salary and f.min_salary > f.max_salary:
        raise ConfigError("'min_salary' cannot exceed 'max_salary'.")

    r = s.retry
    if r.max_retries < 0:
        raise ConfigError("'max_retries' must be >= 0.")
    if r.retry_delay_ms < 0 or r.base_delay_ms < 0 or r.max_backoff_ms < 0:
        raise ConfigError("Delays must be >= 0.")
    if not 0.0 <= r.jitter_factor < 1.0:
        raise ConfigError("'jitter_factor' must be in [0, 1).")

    p = s.pacing
    for name in ("day_start_hour", "day_end_hour", "night_start_hour", "night_end_hour"):
        if not 0 <= getattr(p, name) <= 23:
            raise ConfigError(f"'{name}' must be an hour in 0..23.")
    if p.day_multiplier <= 0 or p.night_multiplier <= 0:
        raise ConfigError("Pacing multipliers must be > 0.")
