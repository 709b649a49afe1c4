# festival_crawler/sources/pagination.py
"""
Pagination drivers.

All three variants share one output contract: an iterator of PageDocument.
  - ParamPager            one document per ?page=N
  - InfiniteScrollDriver  one fully-scrolled document
  - LoadMoreDriver        one document after the last "load more" click

Per-page / per-iteration failures are reported through `on_error` and the
driver moves on; `failure_limit` consecutive failures raise FatalSourceError.
"""
from __future__ import annotations

import logging
import math
import random
import threading
from dataclasses import dataclass
from functools import partial
from typing import Callable, ContextManager, Iterator, Optional, Tuple

from ..config import RunConfig
from ..errors import FatalSourceError, FetchError, RunCancelled
from ..retry import wait_or_cancel
from .browser import ScrollablePage, open_browser_page
from .http import FetchOptions, fetch, polite_delay
from .types import HtmlDocument, PaginationKind, SourceConfig

logger = logging.getLogger(__name__)

ErrorHook = Callable[[str, BaseException], None]


def _ignore_error(where: str, err: BaseException) -> None:
    return None


@dataclass
class PageDocument:
    index: int
    document: HtmlDocument


@dataclass
class ScrollOutcome:
    iterations: int
    height: int
    reason: str  # stable | cap | exhausted


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise RunCancelled("run cancelled")


class ParamPager:
    """
    Walks page=first..N until a page has no listings, the "X results" total
    is exhausted, or max_pages pages were requested.
    """

    def __init__(
        self,
        source: SourceConfig,
        *,
        fetch_page: Callable[[str], HtmlDocument],
        count_listings: Callable[[HtmlDocument], int],
        total_results: Callable[[HtmlDocument], Optional[int]] = lambda doc: None,
        max_pages: int = 0,
        start_page: Optional[int] = None,
        failure_limit: int = 3,
        cancel: Optional[threading.Event] = None,
        on_error: ErrorHook = _ignore_error,
    ) -> None:
        self.source = source
        self._fetch_page = fetch_page
        self._count_listings = count_listings
        self._total_results = total_results
        self.max_pages = max_pages
        self.start_page = start_page if start_page is not None else source.first_page
        self.failure_limit = failure_limit
        self.cancel = cancel
        self.on_error = on_error
        self.last_page: Optional[int] = None  # from the results label, when known

    def documents(self) -> Iterator[PageDocument]:
        page = self.start_page
        requested = 0
        yielded = 0
        consecutive_failures = 0

        while True:
            _check_cancel(self.cancel)
            if self.max_pages and requested >= self.max_pages:
                logger.info("[pager] %s: max_pages=%d reached", self.source.source_website, self.max_pages)
                return
            if self.last_page is not None and page > self.last_page:
                logger.info("[pager] %s: last page %d reached", self.source.source_website, self.last_page)
                return

            url = self.source.page_url(page)
            requested += 1
            try:
                doc = self._fetch_page(url)
            except FetchError as e:
                if e.status_code == 404 and yielded > 0:
                    logger.info("[pager] %s: page %d is 404, treating as end", self.source.source_website, page)
                    return
                consecutive_failures += 1
                self.on_error(url, e)
                logger.warning(
                    "[pager] %s: page %d failed (%d/%d consecutive): %s",
                    self.source.source_website, page, consecutive_failures, self.failure_limit, e,
                )
                if consecutive_failures >= self.failure_limit:
                    raise FatalSourceError(
                        f"{consecutive_failures} consecutive page failures, last at {url}",
                        source_website=self.source.source_website,
                    ) from e
                page += 1
                continue

            consecutive_failures = 0
            listings = self._count_listings(doc)
            if listings == 0:
                logger.info("[pager] %s: page %d has no listings, done", self.source.source_website, page)
                return

            if self.last_page is None:
                self._learn_last_page(doc, listings)

            yielded += 1
            yield PageDocument(index=page, document=doc)
            page += 1

    def _learn_last_page(self, doc: HtmlDocument, listings_on_page: int) -> None:
        total = self._total_results(doc)
        if not total:
            return
        per_page = self.source.page_size or listings_on_page
        total_pages = max(1, math.ceil(total / per_page))
        self.last_page = self.source.first_page + total_pages - 1
        logger.info(
            "[pager] %s: %d results / %d per page -> last page %d",
            self.source.source_website, total, per_page, self.last_page,
        )


class _BrowserDriver:
    """Shared open/retry/settle logic for the single-document drivers."""

    def __init__(
        self,
        source: SourceConfig,
        *,
        open_page: Callable[[str], ContextManager[ScrollablePage]],
        idle_rounds: int = 5,
        settle_ms: int = 1200,
        extra_wait_ms: Tuple[int, int] = (300, 1500),
        failure_limit: int = 3,
        cancel: Optional[threading.Event] = None,
        on_error: ErrorHook = _ignore_error,
        before_open: Callable[[], None] = lambda: None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.source = source
        self._open_page = open_page
        self.idle_rounds = max(1, idle_rounds)
        self.settle_ms = settle_ms
        self.extra_wait_ms = extra_wait_ms
        self.failure_limit = failure_limit
        self.cancel = cancel
        self.on_error = on_error
        self._before_open = before_open
        self._rng = rng or random.Random()
        self.outcome: Optional[ScrollOutcome] = None

    def _drive(self, page: ScrollablePage) -> ScrollOutcome:
        raise NotImplementedError

    def documents(self) -> Iterator[PageDocument]:
        url = self.source.page_url(self.source.first_page)
        doc: Optional[HtmlDocument] = None
        for attempt in range(1, self.failure_limit + 1):
            _check_cancel(self.cancel)
            try:
                self._before_open()
                with self._open_page(url) as page:
                    self.outcome = self._drive(page)
                    doc = HtmlDocument(url=page.url or url, status_code=200, text=page.content())
                break
            except FetchError as e:
                self.on_error(url, e)
                logger.warning(
                    "[pager] %s: open failed (%d/%d): %s",
                    self.source.source_website, attempt, self.failure_limit, e,
                )
                if attempt >= self.failure_limit or not e.retryable:
                    raise FatalSourceError(
                        f"could not load {url}: {e}",
                        source_website=self.source.source_website,
                    ) from e
                wait_or_cancel(self.settle_ms / 1000.0 * attempt, self.cancel)

        if doc is not None:
            logger.info(
                "[pager] %s: loaded after %d iterations (%s), %d bytes",
                self.source.source_website,
                self.outcome.iterations if self.outcome else 0,
                self.outcome.reason if self.outcome else "-",
                len(doc.text),
            )
            yield PageDocument(index=self.source.first_page, document=doc)

    def _settle_and_measure(self, page: ScrollablePage, idle: int) -> int:
        page.wait(self.settle_ms)
        if idle == self.idle_rounds - 1:
            # last chance before declaring the page stable: give slow responses extra time
            page.wait(self._rng.randint(*self.extra_wait_ms))
        return page.document_height()

    def _iteration_failed(self, consecutive: int, err: Exception) -> None:
        self.on_error(f"{self.source.source_website} iteration", err)
        logger.warning(
            "[pager] %s: iteration failed (%d/%d consecutive): %s",
            self.source.source_website, consecutive, self.failure_limit, err,
        )
        if consecutive >= self.failure_limit:
            raise FatalSourceError(
                f"{consecutive} consecutive iteration failures",
                source_website=self.source.source_website,
            ) from err


class InfiniteScrollDriver(_BrowserDriver):
    """Scroll to the bottom until the document height stops growing for N rounds."""

    def __init__(self, source: SourceConfig, *, max_iterations: int = 200, **kwargs) -> None:
        super().__init__(source, **kwargs)
        self.max_iterations = max_iterations

    def _drive(self, page: ScrollablePage) -> ScrollOutcome:
        return self.scroll_until_stable(page)

    def scroll_until_stable(self, page: ScrollablePage) -> ScrollOutcome:
        last = page.document_height()
        idle = 0
        consecutive_errors = 0
        for i in range(1, self.max_iterations + 1):
            _check_cancel(self.cancel)
            try:
                page.scroll_to_bottom()
                height = self._settle_and_measure(page, idle)
            except RunCancelled:
                raise
            except Exception as e:
                consecutive_errors += 1
                self._iteration_failed(consecutive_errors, e)
                continue
            consecutive_errors = 0

            if height > last:
                last, idle = height, 0
            else:
                idle += 1
            logger.debug("[pager] scroll %d height=%d idle=%d", i, height, idle)

            if idle >= self.idle_rounds:
                return ScrollOutcome(iterations=i, height=last, reason="stable")
        return ScrollOutcome(iterations=self.max_iterations, height=last, reason="cap")


class LoadMoreDriver(_BrowserDriver):
    """Click the "load more" control until it disappears, stalls, or max_clicks is hit."""

    def __init__(self, source: SourceConfig, *, max_clicks: int = 30, **kwargs) -> None:
        super().__init__(source, **kwargs)
        if not source.load_more_selector:
            raise ValueError(f"{source.source_website}: load_more_selector is required")
        self.selector = source.load_more_selector
        self.max_clicks = max_clicks

    def _drive(self, page: ScrollablePage) -> ScrollOutcome:
        return self.click_until_exhausted(page)

    def click_until_exhausted(self, page: ScrollablePage) -> ScrollOutcome:
        last = page.document_height()
        idle = 0
        clicks = 0
        consecutive_errors = 0
        while clicks < self.max_clicks:
            _check_cancel(self.cancel)
            try:
                if not page.is_clickable(self.selector):
                    return ScrollOutcome(iterations=clicks, height=last, reason="exhausted")
                page.click(self.selector)
                clicks += 1
                height = self._settle_and_measure(page, idle)
            except RunCancelled:
                raise
            except Exception as e:
                consecutive_errors += 1
                self._iteration_failed(consecutive_errors, e)
                continue
            consecutive_errors = 0

            if height > last:
                last, idle = height, 0
            else:
                idle += 1
            if idle >= self.idle_rounds:
                return ScrollOutcome(iterations=clicks, height=last, reason="stable")
        return ScrollOutcome(iterations=clicks, height=last, reason="cap")


def make_driver(
    source: SourceConfig,
    adapter,
    cfg: RunConfig,
    *,
    cancel: Optional[threading.Event] = None,
    on_error: ErrorHook = _ignore_error,
    start_page: Optional[int] = None,
    fetch_page: Optional[Callable[[str], HtmlDocument]] = None,
    open_page: Optional[Callable[[str], ContextManager[ScrollablePage]]] = None,
):
    """Build the driver for a source; fetch_page/open_page are injectable for tests."""
    options = FetchOptions.from_config(
        cfg,
        wait_for_selector=source.wait_for_selector,
        cookie_selectors=source.cookie_selectors or FetchOptions().cookie_selectors,
    )

    if source.pagination == PaginationKind.PARAM:
        return ParamPager(
            source,
            fetch_page=fetch_page or partial(fetch, options=options, cancel=cancel),
            count_listings=adapter.count_listings,
            total_results=adapter.parse_total_results,
            max_pages=cfg.max_pages,
            start_page=start_page,
            failure_limit=cfg.consecutive_failure_limit,
            cancel=cancel,
            on_error=on_error,
        )

    opener = open_page or partial(
        open_browser_page,
        user_agent=cfg.user_agent,
        timeout_s=cfg.timeout_s,
        wait_for_selector=source.wait_for_selector,
        cookie_selectors=options.cookie_selectors,
    )
    common = dict(
        open_page=opener,
        idle_rounds=cfg.scroll_idle_rounds,
        settle_ms=cfg.settle_ms,
        failure_limit=cfg.consecutive_failure_limit,
        cancel=cancel,
        on_error=on_error,
        before_open=partial(polite_delay, options, cancel),
    )
    if source.pagination == PaginationKind.INFINITE_SCROLL:
        return InfiniteScrollDriver(source, max_iterations=cfg.scroll_max_iterations, **common)
    if source.pagination == PaginationKind.LOAD_MORE:
        return LoadMoreDriver(source, max_clicks=cfg.load_more_max_clicks, **common)
    raise ValueError(f"unknown pagination kind: {source.pagination}")
