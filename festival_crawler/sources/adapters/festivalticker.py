from __future__ import annotations

import re

from bs4 import Tag

from ..base import BaseAdapter, node_text

_ID_RE = re.compile(r"/festival/(?:[^/]+-)?(\d+)")


class FestivalTickerAdapter(BaseAdapter):
    """
    festivalticker.de, German. The agenda is one long page that appends
    entries while scrolling; each entry is an article.festival-entry with a
    "12.07.2025 - 14.07.2025" style date line and "Ort, Land" location.
    """

    website = "festivalticker.de"
    listing_selector = "article.festival-entry"

    detail_date_selectors = (".festival-datum", ".datum", "time")
    detail_location_selectors = (".festival-ort", ".ort")

    def listing_name(self, el: Tag) -> str:
        return node_text(el.select_one(".festival-name, h2, h3"))

    def listing_href(self, el: Tag) -> str:
        a = el.select_one(".festival-name a[href], h2 a[href], h3 a[href]") or el.find("a", href=True)
        return (a.get("href") or "") if a is not None else ""

    def listing_source_id(self, el: Tag, detail_url: str) -> str:
        sid = (el.get("data-festival-id") or "").strip()
        if sid:
            return sid
        m = _ID_RE.search(detail_url)
        return m.group(1) if m else ""

    def listing_date_text(self, el: Tag) -> str:
        return node_text(el.select_one(".festival-datum, .datum, time"))

    def listing_location(self, el: Tag) -> str:
        return node_text(el.select_one(".festival-ort, .ort"))
