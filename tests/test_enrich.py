from __future__ import annotations

import threading
from datetime import date

from festival_crawler.dedupe import SeenSet
from festival_crawler.errors import FetchError
from festival_crawler.models import Locale, RawListingRecord
from festival_crawler.sources.adapters.festivalinfo import FestivalinfoAdapter
from festival_crawler.sources.enrich import (
    FLAG_DATE_UNPARSED,
    FLAG_DETAIL_DATE_UNPARSED,
    FLAG_DETAIL_FETCH_FAILED,
    FLAG_LOCATION_MISSING,
    enrich,
    enrich_page,
)
from festival_crawler.sources.types import HtmlDocument

REF = date(2025, 3, 1)
ADAPTER = FestivalinfoAdapter()


def _record(name="Pinkpop", date_text="20 t/m 22 juni", location="Landgraaf, Nederland", url=None):
    return RawListingRecord(
        source_website="festivalinfo.nl",
        name=name,
        raw_date_text=date_text,
        location=location,
        detail_url=url or f"https://www.festivalinfo.nl/festival/1/{name.lower()}/",
    )


def _detail(html: str, url="https://www.festivalinfo.nl/festival/1/pinkpop/") -> HtmlDocument:
    return HtmlDocument(url=url, status_code=200, text=html)


# ---------------------------------------------------------------------------
# enrich: detail over list, flags on degradation
# ---------------------------------------------------------------------------
def test_structured_detail_dates_win():
    doc = _detail('<time datetime="2025-06-19"></time><time datetime="2025-06-22"></time>')
    f = enrich(_record(), doc, ADAPTER, Locale.DUTCH, reference=REF)
    assert (f.start_date, f.end_date) == (date(2025, 6, 19), date(2025, 6, 22))
    assert f.date_source == "detail"
    assert f.duration_days == 4
    assert f.flags == []


def test_detail_text_with_year_wins_over_list():
    doc = _detail('<div class="festival_date">21 t/m 22 juni 2025</div>')
    f = enrich(_record(), doc, ADAPTER, Locale.DUTCH, reference=REF)
    assert f.start_date == date(2025, 6, 21)
    assert f.date_source == "detail"


def test_detail_text_without_year_falls_back_to_list():
    doc = _detail('<div class="festival_date">21 t/m 22 juni</div>')
    f = enrich(_record(), doc, ADAPTER, Locale.DUTCH, reference=REF)
    assert (f.start_date, f.end_date) == (date(2025, 6, 20), date(2025, 6, 22))
    assert f.date_source == "list"
    assert FLAG_DETAIL_DATE_UNPARSED in f.flags
    assert FLAG_DATE_UNPARSED not in f.flags


def test_missing_detail_page_degrades_to_list_values():
    f = enrich(_record(), None, ADAPTER, Locale.DUTCH, reference=REF)
    assert f.start_date == date(2025, 6, 20)
    assert f.location == "Landgraaf, Nederland"
    assert f.flags == [FLAG_DETAIL_FETCH_FAILED]


def test_detail_location_overrides_list_location():
    doc = _detail('<div class="festival_location">Megaland, Landgraaf</div>')
    f = enrich(_record(), doc, ADAPTER, Locale.DUTCH, reference=REF)
    assert f.location == "Megaland, Landgraaf"


def test_unparseable_dates_keep_the_record():
    f = enrich(_record(date_text="", location=""), None, ADAPTER, Locale.DUTCH, reference=REF)
    assert f.start_date is None
    assert f.end_date is None
    assert f.date_source == "none"
    assert FLAG_DATE_UNPARSED in f.flags
    assert FLAG_LOCATION_MISSING in f.flags
    assert f.identity_hash.startswith("v1|")


def test_source_fields_are_carried_over():
    rec = _record()
    f = enrich(rec, None, ADAPTER, Locale.DUTCH, reference=REF)
    assert f.name == rec.name
    assert f.source_website == rec.source_website
    assert f.detail_url == rec.detail_url
    assert f.scraped_at.tzinfo is not None


# ---------------------------------------------------------------------------
# enrich_page
# ---------------------------------------------------------------------------
class TestEnrichPage:
    def test_results_come_back_in_listing_order(self):
        records = [_record(name=n) for n in ("Alpha", "Bravo", "Charlie", "Delta")]
        fetched = []

        def fetch_detail(url):
            fetched.append(url)
            return _detail("<html></html>", url=url)

        out = enrich_page(records, ADAPTER, Locale.DUTCH, fetch_detail=fetch_detail, seen=SeenSet(), max_workers=3, reference=REF)
        assert [f.name for f in out.festivals] == ["Alpha", "Bravo", "Charlie", "Delta"]
        assert sorted(fetched) == sorted(r.detail_url for r in records)

    def test_repeated_detail_urls_are_fetched_once(self):
        seen = SeenSet()
        fetched = []

        def fetch_detail(url):
            fetched.append(url)
            return _detail("", url=url)

        enrich_page([_record()], ADAPTER, Locale.DUTCH, fetch_detail=fetch_detail, seen=seen, reference=REF)
        out = enrich_page([_record(), _record(name="Other")], ADAPTER, Locale.DUTCH, fetch_detail=fetch_detail, seen=seen, reference=REF)
        assert out.reused_details == 1
        # the repeated listing is still enriched; only its identity decides on duplicates
        assert [f.name for f in out.festivals] == ["Pinkpop", "Other"]
        assert len(fetched) == 2

    def test_listings_sharing_a_detail_url_are_kept_apart(self):
        shared = "https://www.befesti.nl/festival/zomerfeest/"
        records = [
            _record(name="Zomerfeest", date_text="12 juli 2025", url=shared),
            _record(name="Zomerfeest", date_text="11 juli 2026", url=shared),
        ]
        fetched = []

        def fetch_detail(url):
            fetched.append(url)
            return _detail("<html></html>", url=url)

        out = enrich_page(records, ADAPTER, Locale.DUTCH, fetch_detail=fetch_detail, seen=SeenSet(), reference=REF)

        assert fetched == [shared]
        assert out.reused_details == 1
        assert [f.start_date for f in out.festivals] == [date(2025, 7, 12), date(2026, 7, 11)]
        assert out.festivals[0].identity_hash != out.festivals[1].identity_hash

    def test_fetch_error_degrades_instead_of_dropping(self):
        errors = []

        def fetch_detail(url):
            raise FetchError("HTTP 500", url=url, status_code=500)

        out = enrich_page(
            [_record()], ADAPTER, Locale.DUTCH,
            fetch_detail=fetch_detail, seen=SeenSet(),
            on_error=lambda where, e: errors.append(where), reference=REF,
        )
        assert out.detail_failures == 1
        assert len(out.festivals) == 1
        assert FLAG_DETAIL_FETCH_FAILED in out.festivals[0].flags
        assert errors == [_record().detail_url]

    def test_cancelled_run_skips_detail_fetches(self):
        cancel = threading.Event()
        cancel.set()
        fetched = []
        out = enrich_page(
            [_record(), _record(name="Other")], ADAPTER, Locale.DUTCH,
            fetch_detail=fetched.append, seen=SeenSet(), cancel=cancel, reference=REF,
        )
        assert out.cancelled == 2
        assert out.festivals == []
        assert fetched == []

    def test_empty_page(self):
        out = enrich_page([], ADAPTER, Locale.DUTCH, fetch_detail=lambda url: None, seen=SeenSet())
        assert out.festivals == []
