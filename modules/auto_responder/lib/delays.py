"""
Pacing between actions.

  inter_response_delay  base delay x time-of-day multiplier, jittered +/- jitter_factor
  backoff_delay         2^(n-1) x base_delay_ms under n consecutive failures, optionally capped
  next_delay            what the driver actually sleeps after an entry
"""

from __future__ import annotations

import random
import threading
import time
from datetime import datetime

from .config import PacingConfig, RetryConfig


def _in_window(hour: int, start: int, end: int) -> bool:
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def time_of_day_multiplier(pacing: PacingConfig, hour_of_day: int) -> float:
    hour = int(hour_of_day) % 24
    if _in_window(hour, pacing.night_start_hour, pacing.night_end_hour):
        return pacing.night_multiplier
    if _in_window(hour, pacing.day_start_hour, pacing.day_end_hour):
        return pacing.day_multiplier
    return 1.0


def inter_response_delay(
    retry: RetryConfig,
    pacing: PacingConfig,
    hour_of_day: int,
    rng: random.Random | None = None,
) -> int:
    scaled = retry.base_delay_ms * time_of_day_multiplier(pacing, hour_of_day)
    j = retry.jitter_factor
    if j > 0:
        scaled *= (rng or random).uniform(1.0 - j, 1.0 + j)
    return max(0, int(round(scaled)))


def backoff_delay(consecutive_failures: int, base_delay_ms: int, max_backoff_ms: int = 0) -> int:
    if consecutive_failures <= 0:
        return 0
    delay = (2 ** (consecutive_failures - 1)) * base_delay_ms
    if max_backoff_ms > 0:
        delay = min(delay, max_backoff_ms)
    return int(delay)


def next_delay(
    retry: RetryConfig,
    pacing: PacingConfig,
    consecutive_failures: int,
    hour_of_day: int,
    rng: random.Random | None = None,
) -> int:
    paced = inter_response_delay(retry, pacing, hour_of_day, rng)
    if consecutive_failures > 0:
        return max(paced, backoff_delay(consecutive_failures, retry.base_delay_ms, retry.max_backoff_ms))
    return paced


class Clock:
    """
    Time source and sleeper used by the engine. `sleep` returns early when
    `interrupt` is set (used for stop requests).
    """

    def now(self) -> datetime:
        return datetime.now().astimezone()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, interrupt: threading.Event | None = None) -> bool:
        """Sleep up to `seconds`. Returns True if interrupted."""
        if seconds <= 0:
            return bool(interrupt and interrupt.is_set())
        if interrupt is None:
            time.sleep(seconds)
            return False
        return interrupt.wait(seconds)
