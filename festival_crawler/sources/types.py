from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..models import Locale


@dataclass
class HtmlDocument:
    url: str
    status_code: int
    text: str


class PaginationKind(str, Enum):
    PARAM = "param"                  # page index in the query string
    INFINITE_SCROLL = "infinite_scroll"
    LOAD_MORE = "load_more"


@dataclass(frozen=True)
class SourceConfig:
    """
    Static description of one source website.

    seed_url for PARAM sources is a template containing "{page}".
    """

    source_website: str
    adapter: str
    seed_url: str
    locale: Locale
    pagination: PaginationKind
    first_page: int = 1
    page_size: Optional[int] = None          # listings per page, for "X results" labels
    load_more_selector: Optional[str] = None
    wait_for_selector: Optional[str] = None  # client-rendered listings
    render_js_details: bool = False
    cookie_selectors: Tuple[str, ...] = field(default_factory=tuple)
    enabled: bool = True

    def page_url(self, page: int) -> str:
        if "{page}" not in self.seed_url:
            return self.seed_url
        return self.seed_url.format(page=page)
