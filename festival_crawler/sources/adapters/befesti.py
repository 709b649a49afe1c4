from __future__ import annotations

from bs4 import Tag

from ..base import BaseAdapter, clean_text, node_text


class BefestiAdapter(BaseAdapter):
    """
    befesti.nl festival agenda; more cards appear behind a "load more" button.

    Card: h3[data-element=card-title], day-start / day-end blocks (the end
    block carries is--date-text-hide for single-day festivals), a month
    label, and location chips.
    """

    website = "befesti.nl"
    listing_selector = ".agenda--item"

    detail_date_selectors = ('[data-element="event-date"]', ".festival--date", "time")
    detail_location_selectors = ('[data-element="event-location"]', ".festival--location")

    def listing_name(self, el: Tag) -> str:
        return node_text(el.select_one('h3[data-element="card-title"]'))

    def listing_href(self, el: Tag) -> str:
        a = el if el.name == "a" else (el.find("a", href=True) or el.find_parent("a"))
        return (a.get("href") or "") if a is not None else ""

    def listing_date_text(self, el: Tag) -> str:
        start = node_text(el.select_one('div[data-element="day-start"]'))
        if not start:
            return ""
        end_el = el.select_one('div[data-element="day-end"]')
        end = ""
        if end_el is not None and "is--date-text-hide" not in (end_el.get("class") or []):
            end = node_text(end_el)
        month = node_text(el.select_one('[data-element="month"]'))

        text = f"{start} t/m {end}" if end and end != start else start
        if month and month.lower() not in text.lower():
            text = f"{text} {month}"
        return clean_text(text)

    def listing_location(self, el: Tag) -> str:
        parts = [node_text(p) for p in el.select(".agenda--chip .text--s")]
        return clean_text(", ".join(p.strip(", ") for p in parts if p.strip(", ")))
