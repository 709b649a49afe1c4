# festival_crawler/retry.py
"""
One retry/backoff helper for every network-facing call (page fetches and
store writes).

delay(attempt) = base_delay * 2**(attempt-1) + uniform(0, jitter)
"""
from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import RunCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3           # total tries, first one included
    base_delay: float = 1.0
    jitter: float = 0.5
    max_delay: float = 30.0

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        r = rng or random
        d = self.base_delay * (2 ** max(attempt - 1, 0))
        return min(d, self.max_delay) + r.uniform(0, self.jitter)


def wait_or_cancel(seconds: float, cancel: Optional[threading.Event]) -> None:
    """Sleep, waking early and raising RunCancelled when the event is set."""
    if seconds <= 0:
        if cancel is not None and cancel.is_set():
            raise RunCancelled("run cancelled")
        return
    if cancel is None:
        threading.Event().wait(seconds)
        return
    if cancel.wait(seconds):
        raise RunCancelled("run cancelled")


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy,
    retryable: Callable[[BaseException], bool],
    cancel: Optional[threading.Event] = None,
    label: str = "call",
    sleep: Callable[[float, Optional[threading.Event]], None] = wait_or_cancel,
) -> T:
    """
    Run fn until it succeeds, raises a non-retryable error, or attempts run
    out. The last error is re-raised unchanged.
    """
    attempts = max(policy.attempts, 1)
    for attempt in range(1, attempts + 1):
        if cancel is not None and cancel.is_set():
            raise RunCancelled(f"{label}: run cancelled")
        try:
            return fn()
        except RunCancelled:
            raise
        except Exception as e:
            if not retryable(e) or attempt >= attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "[retry] %s failed: %s: %s attempt=%d/%d sleep=%.2fs",
                label, type(e).__name__, e, attempt, attempts, delay,
            )
            sleep(delay, cancel)
    raise AssertionError("unreachable")  # pragma: no cover
