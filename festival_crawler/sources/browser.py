from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Protocol, Sequence

logger = logging.getLogger(__name__)

DEFAULT_COOKIE_SELECTORS = (
    'button:has-text("Accepteren en doorgaan")',
    'button:has-text("Alles accepteren")',
    'button:has-text("Accepteren")',
    'button:has-text("Alle akzeptieren")',
    'button:has-text("Akzeptieren")',
    'button:has-text("Accept all")',
    'button:has-text("Tout accepter")',
    "#onetrust-accept-btn-handler",
)


class ScrollablePage(Protocol):
    """What the scroll / load-more drivers need from a live page."""

    def document_height(self) -> int: ...

    def scroll_to_bottom(self) -> None: ...

    def is_clickable(self, selector: str) -> bool: ...

    def click(self, selector: str) -> None: ...

    def wait(self, ms: int) -> None: ...

    def content(self) -> str: ...

    @property
    def url(self) -> str: ...


def dismiss_cookie_banner(page: Any, selectors: Sequence[str], timeout_ms: int = 3000) -> bool:
    """
    Best-effort: click the first consent button that shows up.
    Absent banners are normal, so every failure here is swallowed.
    """
    from playwright.sync_api import Error as PlaywrightError

    for sel in selectors:
        try:
            loc = page.locator(sel).first
            if loc.count() == 0 or not loc.is_visible():
                continue
            loc.click(timeout=timeout_ms)
            logger.info("[browser] cookie banner dismissed via %s", sel)
            return True
        except PlaywrightError:
            continue
    logger.debug("[browser] no cookie banner found")
    return False


class PlaywrightPage:
    """ScrollablePage over a playwright.sync_api.Page."""

    def __init__(self, page: Any) -> None:
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    def document_height(self) -> int:
        return int(self._page.evaluate("() => document.body ? document.body.scrollHeight : 0"))

    def scroll_to_bottom(self) -> None:
        self._page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
        self._page.mouse.wheel(0, 2000)

    def is_clickable(self, selector: str) -> bool:
        loc = self._page.locator(selector).first
        if loc.count() == 0:
            return False
        return loc.is_visible() and loc.is_enabled()

    def click(self, selector: str) -> None:
        self._page.locator(selector).first.click()

    def wait(self, ms: int) -> None:
        self._page.wait_for_timeout(ms)

    def content(self) -> str:
        return self._page.content()


@contextmanager
def open_browser_page(
    url: str,
    *,
    user_agent: str,
    timeout_s: int = 30,
    wait_for_selector: str | None = None,
    cookie_selectors: Sequence[str] = DEFAULT_COOKIE_SELECTORS,
) -> Iterator[PlaywrightPage]:
    """
    Launch Chromium, navigate to `url` and keep the page open for the caller.

    Navigation failures surface as FetchError so the drivers can count them.
    """
    from playwright.sync_api import Error as PlaywrightError
    from playwright.sync_api import sync_playwright

    from ..errors import FetchError

    timeout_ms = timeout_s * 1000
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=True)
        try:
            context = browser.new_context(
                user_agent=user_agent,
                viewport={"width": 1280, "height": 800},
            )
            page = context.new_page()
            try:
                response = page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                if response is not None and response.status >= 400:
                    raise FetchError(
                        f"HTTP {response.status}",
                        url=url,
                        status_code=response.status,
                        retryable=response.status >= 500,
                    )
                dismiss_cookie_banner(page, cookie_selectors)
                if wait_for_selector:
                    page.wait_for_selector(wait_for_selector, timeout=timeout_ms)
            except PlaywrightError as e:
                raise FetchError(f"browser navigation failed: {e}", url=url) from e

            logger.info("[browser] opened %s", url)
            yield PlaywrightPage(page)
        finally:
            browser.close()
