"""
Structured date extraction helpers.

Pull festival start/end dates out of JSON-LD (Schema.org Event / Festival)
and HTML <time datetime="..."> elements. These are the most trustworthy
date signals on a detail page, so enrich.py tries them before any text.

Reusable across all adapters.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from bs4 import BeautifulSoup

_EVENT_TYPES = {"Event", "Festival", "MusicEvent", "MusicFestival"}
_ISO_DATE_RE = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})")


@dataclass
class StructuredDates:
    """Extracted structured date info."""

    start: Optional[date] = None
    end: Optional[date] = None
    location: str = ""
    source: str = "unknown"  # "jsonld", "time_element"


def parse_iso_date(s: object) -> Optional[date]:
    """Date part of an ISO 8601 string; None when it does not start with YYYY-MM-DD."""
    if not isinstance(s, str):
        return None
    m = _ISO_DATE_RE.match(s)
    if not m:
        return None
    try:
        return datetime.strptime(m.group(1), "%Y-%m-%d").date()
    except ValueError:
        return None


def extract_jsonld_event(soup: BeautifulSoup) -> Optional[StructuredDates]:
    """Extract startDate/endDate (and location name) from JSON-LD Event markup.

    Handles:
    - Single Event object
    - Array containing Event
    - @graph containing Event
    - @type as string ("Festival") or list (["Event", "Thing"])
    """
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            # script.string is often None with whitespace/comments
            data = json.loads(script.get_text() or "")
        except (json.JSONDecodeError, TypeError):
            continue
        for event in _find_events_in_jsonld(data):
            start = parse_iso_date(event.get("startDate"))
            if not start:
                continue
            end = parse_iso_date(event.get("endDate"))
            if end and end < start:
                end = None
            return StructuredDates(
                start=start,
                end=end or start,
                location=_jsonld_location(event.get("location")),
                source="jsonld",
            )
    return None


def _is_event_type(t) -> bool:
    if isinstance(t, str):
        return t in _EVENT_TYPES
    if isinstance(t, list):
        return any(x in _EVENT_TYPES for x in t if isinstance(x, str))
    return False


def _find_events_in_jsonld(data) -> list[dict]:
    """Recursively find Event objects in JSON-LD structure."""
    events = []
    if isinstance(data, dict):
        if _is_event_type(data.get("@type")):
            events.append(data)
        if "@graph" in data and isinstance(data["@graph"], list):
            for item in data["@graph"]:
                events.extend(_find_events_in_jsonld(item))
    elif isinstance(data, list):
        for item in data:
            events.extend(_find_events_in_jsonld(item))
    return events


def _jsonld_location(loc) -> str:
    """'venue, city, country' from a Place, a list of places, or a bare string."""
    if isinstance(loc, list):
        loc = loc[0] if loc else None
    if isinstance(loc, str):
        return loc.strip()
    if not isinstance(loc, dict):
        return ""

    parts = [loc.get("name")]
    addr = loc.get("address")
    if isinstance(addr, dict):
        parts.append(addr.get("addressLocality"))
        country = addr.get("addressCountry")
        if isinstance(country, dict):
            country = country.get("name")
        parts.append(country)
    elif isinstance(addr, str):
        parts.append(addr)

    seen: list[str] = []
    for p in parts:
        if isinstance(p, str) and p.strip() and p.strip() not in seen:
            seen.append(p.strip())
    return ", ".join(seen)


def extract_time_element(soup: BeautifulSoup) -> Optional[StructuredDates]:
    """Extract a date range from <time datetime="..."> elements.

    The first valid element is the start, the last one the end.
    """
    found = [
        d for d in (parse_iso_date((t.get("datetime") or "").strip())
                    for t in soup.find_all("time", datetime=True))
        if d
    ]
    if not found:
        return None
    start, end = found[0], found[-1]
    if end < start:
        end = start
    return StructuredDates(start=start, end=end, source="time_element")
