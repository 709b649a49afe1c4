from __future__ import annotations

import re

from bs4 import Tag

from ..base import BaseAdapter, node_text

_SLUG_RE = re.compile(r"/festivals/([^/?#]+)")


class FesticketAdapter(BaseAdapter):
    """
    festicket.com, English. Client-rendered grid of festival cards with a
    "Load more" button. Cards link to /festivals/<slug>/ which doubles as
    the native id.
    """

    website = "festicket.com"
    listing_selector = '[data-testid="festival-card"]'

    detail_date_selectors = ('[data-testid="festival-dates"]', "time")
    detail_location_selectors = ('[data-testid="festival-location"]',)

    def listing_name(self, el: Tag) -> str:
        return node_text(el.select_one('[data-testid="festival-name"], h3, h2'))

    def listing_href(self, el: Tag) -> str:
        a = el if el.name == "a" else el.find("a", href=True)
        return (a.get("href") or "") if a is not None else ""

    def listing_source_id(self, el: Tag, detail_url: str) -> str:
        m = _SLUG_RE.search(detail_url)
        return m.group(1) if m else ""

    def listing_date_text(self, el: Tag) -> str:
        return node_text(el.select_one('[data-testid="festival-dates"]'))

    def listing_location(self, el: Tag) -> str:
        return node_text(el.select_one('[data-testid="festival-location"]'))
