from __future__ import annotations

import re

from bs4 import Tag

from ..base import BaseAdapter, clean_text, node_text

_ID_RE = re.compile(r"/festival/(\d+)/")
# "Brussel, België 11 dagen 56" -> city, country
_LOCATION_RE = re.compile(r"^([^,0-9]+),\s*([^,0-9]+?)(?=\s+\d|\s*$)")
_CITY_ONLY_RE = re.compile(r"^([^0-9]+?)(?:\s+\d|\s+dag)")
_PAGE_MARKER_RE = re.compile(r"\(\d+/\d+\)")


class FestivalinfoAdapter(BaseAdapter):
    """
    festivalinfo.nl agenda, one ?page=N per request.

    Each festival is an <a href="/festival/<id>/<slug>/"> whose <strong>
    holds the name; the rest of the anchor text is "City, Country N dagen M".
    Sidebar links carry no <strong> and are ignored.
    """

    website = "festivalinfo.nl"
    listing_selector = 'a[href*="/festival/"]'

    detail_date_selectors = (".festival_date", ".date-display", ".event-date", "time")
    detail_location_selectors = (".festival_location", "[itemprop=location]")

    def listing_elements(self, soup):
        return [a for a in soup.select(self.listing_selector) if a.find("strong")]

    def listing_name(self, el: Tag) -> str:
        return node_text(el.find("strong"))

    def listing_href(self, el: Tag) -> str:
        return el.get("href") or ""

    def listing_source_id(self, el: Tag, detail_url: str) -> str:
        m = _ID_RE.search(detail_url)
        return m.group(1) if m else ""

    def _details_text(self, el: Tag) -> str:
        full = node_text(el)
        name = self.listing_name(el)
        rest = full.replace(name, "", 1) if name else full
        date_text = self.listing_date_text(el)
        if date_text:
            rest = rest.replace(date_text, "", 1)
        return clean_text(_PAGE_MARKER_RE.sub("", rest))

    def listing_date_text(self, el: Tag) -> str:
        date_el = el.find(class_="festival_date") or el.find("time")
        return node_text(date_el)

    def listing_location(self, el: Tag) -> str:
        details = self._details_text(el)
        m = _LOCATION_RE.match(details)
        if m:
            return f"{m.group(1).strip()}, {m.group(2).strip()}"
        m = _CITY_ONLY_RE.match(details)
        if m:
            return f"{m.group(1).strip()}, Nederland"
        return ""
