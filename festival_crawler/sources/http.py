from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Tuple

import requests

from ..config import DEFAULT_USER_AGENT, RunConfig
from ..errors import FetchError
from ..retry import RetryPolicy, call_with_retry, wait_or_cancel
from .browser import DEFAULT_COOKIE_SELECTORS, dismiss_cookie_banner
from .types import HtmlDocument

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class FetchOptions:
    timeout_s: int = 30
    wait_for_selector: Optional[str] = None
    render_js: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    cookie_selectors: Tuple[str, ...] = DEFAULT_COOKIE_SELECTORS
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    delay_window_s: Tuple[float, float] = (1.5, 3.0)

    @classmethod
    def from_config(cls, cfg: RunConfig, **overrides: Any) -> "FetchOptions":
        opts = cls(
            timeout_s=cfg.timeout_s,
            user_agent=cfg.user_agent,
            retry=RetryPolicy(
                attempts=cfg.retries + 1,
                base_delay=cfg.backoff_base_s,
                jitter=cfg.backoff_jitter_s,
            ),
            delay_window_s=cfg.delay_window_s,
        )
        return replace(opts, **overrides) if overrides else opts

    @property
    def needs_browser(self) -> bool:
        return self.render_js or bool(self.wait_for_selector)


def is_retryable(err: BaseException) -> bool:
    return isinstance(err, FetchError) and err.retryable


def polite_delay(
    options: FetchOptions,
    cancel: Optional[threading.Event] = None,
    rng: Optional[random.Random] = None,
) -> float:
    """Randomized pause before every request; returns the seconds waited."""
    low, high = options.delay_window_s
    seconds = (rng or random).uniform(low, max(low, high))
    wait_or_cancel(seconds, cancel)
    return seconds


def _check_status(url: str, status: int) -> None:
    if status in RETRYABLE_STATUS or status >= 500:
        raise FetchError(f"HTTP {status}", url=url, status_code=status, retryable=True)
    if status >= 400:
        raise FetchError(f"HTTP {status}", url=url, status_code=status, retryable=False)


def _requests_get(url: str, options: FetchOptions, session: Any = None) -> HtmlDocument:
    client = session or requests
    headers = {
        "User-Agent": options.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "nl,de;q=0.9,en;q=0.8,fr;q=0.7",
    }
    try:
        r = client.get(url, timeout=options.timeout_s, headers=headers)
    except (requests.Timeout, requests.ConnectionError) as e:
        raise FetchError(f"{type(e).__name__}: {e}", url=url, retryable=True) from e
    except requests.RequestException as e:
        raise FetchError(f"{type(e).__name__}: {e}", url=url, retryable=False) from e

    _check_status(url, r.status_code)
    return HtmlDocument(url=r.url or url, status_code=r.status_code, text=r.text or "")


def _playwright_get(url: str, options: FetchOptions) -> HtmlDocument:
    from playwright.sync_api import Error as PlaywrightError
    from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
    from playwright.sync_api import sync_playwright

    timeout_ms = options.timeout_s * 1000
    try:
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=True)
            try:
                context = browser.new_context(user_agent=options.user_agent)
                page = context.new_page()
                response = page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                status = response.status if response is not None else 200
                _check_status(url, status)

                dismiss_cookie_banner(page, options.cookie_selectors)

                if options.wait_for_selector:
                    page.wait_for_selector(options.wait_for_selector, timeout=timeout_ms)

                try:
                    page.wait_for_load_state("networkidle", timeout=timeout_ms)
                except PlaywrightTimeoutError:
                    # some pages never go fully idle
                    pass

                return HtmlDocument(url=page.url, status_code=status, text=page.content())
            finally:
                browser.close()
    except PlaywrightTimeoutError as e:
        raise FetchError(f"navigation timeout: {e}", url=url, retryable=True) from e
    except PlaywrightError as e:
        # net::ERR_CONNECTION_RESET and friends
        raise FetchError(f"browser error: {e}", url=url, retryable=True) from e


def fetch(
    url: str,
    options: Optional[FetchOptions] = None,
    *,
    cancel: Optional[threading.Event] = None,
    session: Any = None,
) -> HtmlDocument:
    """
    Fetch one page. Transient failures (timeouts, resets, 5xx, 429) are
    retried with backoff; 4xx raises a non-retryable FetchError at once.
    """
    opts = options or FetchOptions()

    def _attempt() -> HtmlDocument:
        polite_delay(opts, cancel)
        if opts.needs_browser:
            doc = _playwright_get(url, opts)
        else:
            doc = _requests_get(url, opts, session)
        logger.info("[fetch] GET %s -> %d (%d bytes, js=%s)", url, doc.status_code, len(doc.text), opts.needs_browser)
        return doc

    return call_with_retry(
        _attempt,
        policy=opts.retry,
        retryable=is_retryable,
        cancel=cancel,
        label=f"fetch {url}",
    )
