# festival_crawler/sources/enrich.py
"""
List + detail merge.

Confidence is two-tier: a value from the detail page wins over the list
page value, but only when it parsed. Anything that fails on the detail side
(fetch, parse, date text) degrades to the list value and leaves a flag.

Date precedence:
  1) structured detail dates (JSON-LD / <time datetime> / event meta)
  2) detail date text, strict (must carry its own year)
  3) list date text, with year inference
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from ..dates import try_normalize
from ..dedupe import SeenSet
from ..errors import FetchError, RunCancelled
from ..models import CanonicalFestival, DetailFields, Locale, RawListingRecord
from .base import BaseAdapter
from .types import HtmlDocument

logger = logging.getLogger(__name__)

FLAG_DATE_UNPARSED = "date_unparsed"
FLAG_LOCATION_MISSING = "location_missing"
FLAG_DETAIL_FETCH_FAILED = "detail_fetch_failed"
FLAG_DETAIL_DATE_UNPARSED = "detail_date_unparsed"


def _parse_detail_safely(adapter: BaseAdapter, document: HtmlDocument) -> Optional[DetailFields]:
    try:
        return adapter.parse_detail(document)
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning("[enrich] detail parse failed for %s: %s: %s", document.url, type(e).__name__, e)
        return None


def enrich(
    record: RawListingRecord,
    document: Optional[HtmlDocument],
    adapter: BaseAdapter,
    locale: Union[Locale, str],
    *,
    scraped_at: Optional[datetime] = None,
    reference: Optional[date] = None,
) -> CanonicalFestival:
    """
    Merge one listing record with its detail page (None when the detail
    fetch failed) into a CanonicalFestival.
    """
    detail = _parse_detail_safely(adapter, document) if document is not None else None
    return merge_detail(record, detail, locale, scraped_at=scraped_at, reference=reference)


def merge_detail(
    record: RawListingRecord,
    detail: Optional[DetailFields],
    locale: Union[Locale, str],
    *,
    scraped_at: Optional[datetime] = None,
    reference: Optional[date] = None,
) -> CanonicalFestival:
    flags: List[str] = []
    start: Optional[date] = None
    end: Optional[date] = None
    date_source = "none"
    location = record.location

    if detail is None:
        flags.append(FLAG_DETAIL_FETCH_FAILED)
    else:
        if detail.start_date:
            start, end = detail.start_date, detail.end_date or detail.start_date
            date_source = "detail"
        elif detail.date_text:
            rng, err = try_normalize(detail.date_text, locale, reference=reference, infer_year=False)
            if rng is not None:
                start, end = rng.start, rng.end
                date_source = "detail"
            else:
                flags.append(FLAG_DETAIL_DATE_UNPARSED)
                logger.debug("[enrich] detail date kept list value: %s", err)
        if detail.location:
            location = detail.location

    if date_source == "none" and record.raw_date_text:
        rng, err = try_normalize(record.raw_date_text, locale, reference=reference)
        if rng is not None:
            start, end = rng.start, rng.end
            date_source = "list"
        else:
            logger.info("[enrich] %s: %s", record.detail_url, err)

    if date_source == "none":
        flags.append(FLAG_DATE_UNPARSED)
    if not location:
        flags.append(FLAG_LOCATION_MISSING)

    return CanonicalFestival(
        name=record.name,
        start_date=start,
        end_date=end,
        location=location,
        source_website=record.source_website,
        source_id=record.source_id,
        detail_url=record.detail_url,
        scraped_at=scraped_at or datetime.now(timezone.utc),
        date_source=date_source,
        flags=flags,
    )


@dataclass
class EnrichedPage:
    festivals: List[CanonicalFestival] = field(default_factory=list)
    reused_details: int = 0  # listings served from a detail page parsed earlier
    cancelled: int = 0       # listings dropped because their detail fetch was skipped
    detail_failures: int = 0


def enrich_page(
    records: Sequence[RawListingRecord],
    adapter: BaseAdapter,
    locale: Union[Locale, str],
    *,
    fetch_detail: Callable[[str], HtmlDocument],
    seen: SeenSet,
    max_workers: int = 5,
    cancel: Optional[threading.Event] = None,
    on_error: Callable[[str, BaseException], None] = lambda where, err: None,
    reference: Optional[date] = None,
) -> EnrichedPage:
    """
    Enrich one listing page. Detail pages are fetched in parallel (bounded by
    max_workers), once per URL per run; results come back in listing order.
    Every listing is enriched, duplicates are left to the identity hash.
    """
    out = EnrichedPage()
    if not records:
        return out

    pending: Dict[str, None] = {}
    for rec in records:
        url = rec.detail_url.strip()
        if seen.cached_detail(url) is not None or url in pending:
            out.reused_details += 1
        else:
            pending[url] = None

    def _fetch(url: str) -> Tuple[Optional[DetailFields], Optional[FetchError]]:
        if cancel is not None and cancel.is_set():
            raise RunCancelled("detail fetch skipped")
        try:
            doc = fetch_detail(url)
        except FetchError as e:
            return None, e
        return _parse_detail_safely(adapter, doc), None

    fetched: Dict[str, Optional[DetailFields]] = {}
    skipped: Set[str] = set()
    if pending:
        workers = max(1, min(max_workers, len(pending)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {url: pool.submit(_fetch, url) for url in pending}
            for url, fut in futures.items():
                try:
                    detail, err = fut.result()
                except RunCancelled:
                    skipped.add(url)
                    continue
                if err is not None:
                    out.detail_failures += 1
                    on_error(url, err)
                    logger.warning("[enrich] detail fetch failed, using list values: %s", err)
                fetched[url] = detail
                if detail is not None:
                    seen.remember_detail(url, detail)

    scraped_at = datetime.now(timezone.utc)
    for rec in records:
        url = rec.detail_url.strip()
        if url in skipped:
            out.cancelled += 1
            continue
        detail = fetched[url] if url in fetched else seen.cached_detail(url)
        out.festivals.append(
            merge_detail(rec, detail, locale, scraped_at=scraped_at, reference=reference)
        )

    logger.info(
        "[enrich] %s: %d enriched, %d reused details, %d detail failures, %d cancelled",
        adapter.website, len(out.festivals), out.reused_details, out.detail_failures, out.cancelled,
    )
    return out
