from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from ..models import DetailFields, RawListingRecord
from .structured_time import extract_jsonld_event, extract_time_element, parse_iso_date
from .types import HtmlDocument

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")
_INT_RE = re.compile(r"\d[\d.,]*")


def clean_text(s: Optional[str]) -> str:
    return _WS_RE.sub(" ", s or "").strip()


def node_text(el: Optional[Tag]) -> str:
    if el is None:
        return ""
    return clean_text(el.get_text(" ", strip=True))


def first_int(text: str) -> Optional[int]:
    """First integer in `text`, ignoring thousands separators ("1.234 resultaten")."""
    m = _INT_RE.search(text or "")
    if not m:
        return None
    digits = re.sub(r"[.,]", "", m.group(0))
    return int(digits) if digits else None


class BaseAdapter(ABC):
    """
    Per-source extraction. Subclasses supply selectors and small field
    hooks; the shared parse_listing / parse_detail below do the rest.
    """

    website: str = ""
    listing_selector: str = ""

    # tried in order on the detail page when no structured dates exist
    detail_date_selectors: Sequence[str] = ()
    detail_location_selectors: Sequence[str] = ()

    # ---- list stage -------------------------------------------------------

    def soup(self, doc: HtmlDocument) -> BeautifulSoup:
        return BeautifulSoup(doc.text or "", "html.parser")

    def listing_elements(self, soup: BeautifulSoup) -> List[Tag]:
        return soup.select(self.listing_selector)

    def count_listings(self, doc: HtmlDocument) -> int:
        return len(self.listing_elements(self.soup(doc)))

    def parse_total_results(self, doc: HtmlDocument) -> Optional[int]:
        """Total result count from an "X results" label; None when the source has none."""
        return None

    @abstractmethod
    def listing_name(self, el: Tag) -> str:
        ...

    @abstractmethod
    def listing_href(self, el: Tag) -> str:
        ...

    def listing_date_text(self, el: Tag) -> str:
        return ""

    def listing_location(self, el: Tag) -> str:
        return ""

    def listing_source_id(self, el: Tag, detail_url: str) -> str:
        return ""

    def parse_listing(self, doc: HtmlDocument) -> List[RawListingRecord]:
        soup = self.soup(doc)
        records: List[RawListingRecord] = []
        skipped = {"no_name": 0, "no_url": 0, "no_date_or_location": 0}

        for el in self.listing_elements(soup):
            name = clean_text(self.listing_name(el))
            if not name:
                skipped["no_name"] += 1
                continue

            href = (self.listing_href(el) or "").strip()
            if not href or href.startswith(("#", "javascript:", "mailto:")):
                skipped["no_url"] += 1
                logger.debug("[extract] %s: %r has no detail url", self.website, name)
                continue
            detail_url = urljoin(doc.url, href)

            date_text = clean_text(self.listing_date_text(el))
            location = clean_text(self.listing_location(el))
            if not date_text and not location:
                skipped["no_date_or_location"] += 1
                logger.debug("[extract] %s: %r has neither date nor location", self.website, name)
                continue

            records.append(
                RawListingRecord(
                    source_website=self.website,
                    name=name,
                    raw_date_text=date_text,
                    location=location,
                    detail_url=detail_url,
                    source_id=clean_text(self.listing_source_id(el, detail_url)),
                )
            )

        if any(skipped.values()):
            logger.info("[extract] %s: %d records from %s, skipped=%s", self.website, len(records), doc.url, skipped)
        return records

    # ---- detail stage -----------------------------------------------------

    def detail_date_text(self, soup: BeautifulSoup) -> str:
        for sel in self.detail_date_selectors:
            text = node_text(soup.select_one(sel))
            if text:
                return text
        return ""

    def detail_location(self, soup: BeautifulSoup) -> str:
        parts: List[str] = []
        for sel in self.detail_location_selectors:
            text = node_text(soup.select_one(sel))
            if text and text not in parts:
                parts.append(text)
        return ", ".join(parts)

    def parse_detail(self, doc: HtmlDocument) -> DetailFields:
        """
        Detail-page fields. Structured markup (JSON-LD, <time datetime>,
        event meta tags) beats selector text.
        """
        soup = self.soup(doc)
        fields = DetailFields(
            date_text=self.detail_date_text(soup),
            location=self.detail_location(soup),
        )

        st = extract_jsonld_event(soup) or extract_time_element(soup)
        if st is not None:
            fields.start_date, fields.end_date = st.start, st.end
            if st.location and not fields.location:
                fields.location = st.location
            return fields

        meta = soup.find("meta", attrs={"property": ["event:start_time", "og:start_date"]})
        start = parse_iso_date(meta.get("content")) if meta else None
        if start:
            end_meta = soup.find("meta", attrs={"property": ["event:end_time", "og:end_date"]})
            end = parse_iso_date(end_meta.get("content")) if end_meta else None
            fields.start_date = start
            fields.end_date = end if end and end >= start else start
        return fields

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)
