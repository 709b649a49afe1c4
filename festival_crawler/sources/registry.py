from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Type

from ..models import Locale
from .adapters.befesti import BefestiAdapter
from .adapters.eblive import EbliveAdapter
from .adapters.festicket import FesticketAdapter
from .adapters.festivalinfo import FestivalinfoAdapter
from .adapters.festivalticker import FestivalTickerAdapter
from .base import BaseAdapter
from .types import PaginationKind, SourceConfig

ADAPTERS: Dict[str, Type[BaseAdapter]] = {
    "festivalinfo": FestivalinfoAdapter,
    "eblive": EbliveAdapter,
    "befesti": BefestiAdapter,
    "festivalticker": FestivalTickerAdapter,
    "festicket": FesticketAdapter,
}

SOURCES: Dict[str, SourceConfig] = {
    "festivalinfo": SourceConfig(
        source_website="festivalinfo.nl",
        adapter="festivalinfo",
        seed_url="https://www.festivalinfo.nl/festivals/?page={page}",
        locale=Locale.DUTCH,
        pagination=PaginationKind.PARAM,
    ),
    "eblive": SourceConfig(
        source_website="eblive.nl",
        adapter="eblive",
        seed_url="https://www.eblive.nl/festivals/?order_by=upcoming&page_nr={page}",
        locale=Locale.DUTCH,
        pagination=PaginationKind.PARAM,
        page_size=24,
        cookie_selectors=('button:has-text("Accepteren en doorgaan")',),
    ),
    "befesti": SourceConfig(
        source_website="befesti.nl",
        adapter="befesti",
        seed_url="https://befesti.nl/festivalagenda",
        locale=Locale.DUTCH,
        pagination=PaginationKind.LOAD_MORE,
        load_more_selector='button:has-text("Meer laden"), a:has-text("Meer laden")',
        wait_for_selector=".agenda--item",
    ),
    "festivalticker": SourceConfig(
        source_website="festivalticker.de",
        adapter="festivalticker",
        seed_url="https://www.festivalticker.de/festivals/",
        locale=Locale.GERMAN,
        pagination=PaginationKind.INFINITE_SCROLL,
        wait_for_selector="article.festival-entry",
    ),
    "festicket": SourceConfig(
        source_website="festicket.com",
        adapter="festicket",
        seed_url="https://www.festicket.com/festivals/",
        locale=Locale.ENGLISH,
        pagination=PaginationKind.LOAD_MORE,
        load_more_selector='button:has-text("Load more")',
        wait_for_selector='[data-testid="festival-card"]',
        render_js_details=True,
    ),
}


def get_adapter(name: str) -> BaseAdapter:
    cls = ADAPTERS[name]
    return cls()


def select_sources(keys: Optional[Sequence[str]] = None) -> List[SourceConfig]:
    """Enabled sources, optionally narrowed to `keys` (unknown keys raise KeyError)."""
    if not keys:
        return [s for s in SOURCES.values() if s.enabled]
    missing = [k for k in keys if k not in SOURCES]
    if missing:
        raise KeyError(f"unknown source(s): {', '.join(missing)}")
    return [SOURCES[k] for k in keys]
