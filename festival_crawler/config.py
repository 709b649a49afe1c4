from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class RunConfig:
    """
    Knobs for one ingestion run. Every field has a usable default so a bare
    RunConfig() is a valid, polite configuration.
    """

    max_pages: int = 0              # 0 = until exhausted
    delay_ms: int = 1500            # lower bound of the pre-fetch delay window
    delay_jitter_ms: int = 1500     # window = [delay_ms, delay_ms + jitter]
    batch_size: int = 50
    concurrency: int = 3            # sources at a time
    detail_concurrency: int = 5     # detail fetches per source at a time

    retries: int = 3
    backoff_base_s: float = 1.0
    backoff_jitter_s: float = 0.5
    timeout_s: int = 30
    user_agent: str = DEFAULT_USER_AGENT

    scroll_idle_rounds: int = 5
    scroll_max_iterations: int = 200
    load_more_max_clicks: int = 30
    settle_ms: int = 1200
    consecutive_failure_limit: int = 3

    write_retries: int = 2

    @classmethod
    def from_env(cls) -> "RunConfig":
        d = cls()
        return cls(
            max_pages=_env_int("FESTIVAL_MAX_PAGES", d.max_pages),
            delay_ms=_env_int("FESTIVAL_DELAY_MS", d.delay_ms),
            delay_jitter_ms=_env_int("FESTIVAL_DELAY_JITTER_MS", d.delay_jitter_ms),
            batch_size=_env_int("FESTIVAL_BATCH_SIZE", d.batch_size),
            concurrency=_env_int("FESTIVAL_CONCURRENCY", d.concurrency),
            detail_concurrency=_env_int("FESTIVAL_DETAIL_CONCURRENCY", d.detail_concurrency),
            retries=_env_int("FESTIVAL_RETRIES", d.retries),
            backoff_base_s=_env_float("FESTIVAL_BACKOFF_BASE_S", d.backoff_base_s),
            timeout_s=_env_int("FESTIVAL_TIMEOUT_S", d.timeout_s),
            user_agent=(os.getenv("FESTIVAL_USER_AGENT") or "").strip() or d.user_agent,
        )

    def with_overrides(self, **overrides: Optional[Any]) -> "RunConfig":
        """Apply non-None overrides (CLI flags); unknown keys are rejected."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown RunConfig fields: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        cfg = replace(self, **changes)
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.concurrency < 1 or self.detail_concurrency < 1:
            raise ValueError("concurrency values must be >= 1")
        if self.max_pages < 0 or self.delay_ms < 0 or self.delay_jitter_ms < 0:
            raise ValueError("max_pages and delays must be >= 0")

    @property
    def delay_window_s(self) -> tuple[float, float]:
        low = self.delay_ms / 1000.0
        return low, low + self.delay_jitter_ms / 1000.0
