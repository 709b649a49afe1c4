from __future__ import annotations

import re
from typing import Optional

from bs4 import NavigableString, Tag

from ..base import BaseAdapter, clean_text, first_int, node_text
from ..types import HtmlDocument

_ID_RE = re.compile(r"festival_id=(\d+)")
# "Amsterdam Wo 21 mei t/m do 29 mei" -> location, date text
_INFO_RE = re.compile(r"^(.+?)\s+([A-Za-z]{2,3}\.?\s+\d{1,2}\b.*)$")
_COUNT_LABEL_RE = re.compile(r"(festivals gevonden|resultaten)", re.IGNORECASE)


class EbliveAdapter(BaseAdapter):
    """
    EB Live festival agenda (evenementenbranche), ?page_nr=N, 24 per page.

    The heading "<N> festivals gevonden" (or "<N> resultaten") gives the
    total, so the pager knows the last page up front.
    """

    website = "eblive.nl"
    listing_selector = 'main > a[href*="festival_id"]'

    detail_date_selectors = (".festival-dates", ".event-date", "time")
    detail_location_selectors = (".festival-location", ".event-location")

    def parse_total_results(self, doc: HtmlDocument) -> Optional[int]:
        soup = self.soup(doc)
        for h in soup.find_all(["h1", "h2", "h3", "h4", "h5", "p", "span"]):
            text = node_text(h)
            if _COUNT_LABEL_RE.search(text):
                return first_int(text)
        return None

    def listing_name(self, el: Tag) -> str:
        return node_text(el.find("h5"))

    def listing_href(self, el: Tag) -> str:
        return el.get("href") or ""

    def listing_source_id(self, el: Tag, detail_url: str) -> str:
        m = _ID_RE.search(detail_url)
        return m.group(1) if m else ""

    def _info_text(self, el: Tag) -> str:
        # location + dates live in the anchor's own text nodes
        own = [str(c) for c in el.children if isinstance(c, NavigableString)]
        return clean_text(" ".join(own))

    def listing_location(self, el: Tag) -> str:
        m = _INFO_RE.match(self._info_text(el))
        return m.group(1).strip() if m else ""

    def listing_date_text(self, el: Tag) -> str:
        m = _INFO_RE.match(self._info_text(el))
        return m.group(2).strip() if m else ""
