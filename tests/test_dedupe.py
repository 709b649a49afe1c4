"""Contract-locking tests for the v1 identity hash and the per-run SeenSet.

If any of the hash tests break, every stored identity_hash changes meaning
and the next run would insert duplicates instead of updating.
"""
from __future__ import annotations

from datetime import date, datetime, timezone

from festival_crawler.dedupe import SeenSet, identity_hash, normalize_name
from festival_crawler.models import CanonicalFestival, DetailFields


def _festival(**overrides) -> CanonicalFestival:
    defaults = dict(
        name="Lowlands",
        start_date=date(2025, 8, 15),
        end_date=date(2025, 8, 17),
        location="Biddinghuizen, Nederland",
        source_website="festivalinfo.nl",
        source_id="",
        detail_url="https://www.festivalinfo.nl/festival/1/lowlands/",
        scraped_at=datetime(2025, 3, 1, tzinfo=timezone.utc),
    )
    defaults.update(overrides)
    return CanonicalFestival(**defaults)


# ---------------------------------------------------------------------------
# identity_hash
# ---------------------------------------------------------------------------
def test_version_prefix_and_deterministic():
    kwargs = dict(source_website="befesti.nl", source_id="", name="Zwarte Cross", start_date=date(2025, 7, 17))
    h = identity_hash(**kwargs)
    assert h.startswith("v1|")
    assert len(h) == len("v1|") + 64
    assert h == identity_hash(**kwargs)


def test_native_id_path_ignores_name_and_date():
    a = identity_hash(source_website="eblive.nl", source_id="101", name="Dance Valley", start_date=date(2025, 7, 12))
    b = identity_hash(source_website="eblive.nl", source_id="101", name="Dance Valley 2025", start_date=None)
    assert a == b


def test_content_path_normalizes_name():
    a = identity_hash(source_website="befesti.nl", source_id="", name="Zwarte  Cross!", start_date=date(2025, 7, 17))
    b = identity_hash(source_website="befesti.nl", source_id=None, name="zwarte cross", start_date=date(2025, 7, 17))
    assert a == b


def test_start_date_is_part_of_the_content_key():
    a = identity_hash(source_website="befesti.nl", source_id="", name="Zwarte Cross", start_date=date(2025, 7, 17))
    b = identity_hash(source_website="befesti.nl", source_id="", name="Zwarte Cross", start_date=date(2026, 7, 16))
    assert a != b


def test_same_festival_on_two_sites_keeps_two_hashes():
    a = identity_hash(source_website="befesti.nl", source_id="", name="Pinkpop", start_date=date(2025, 6, 20))
    b = identity_hash(source_website="festivalinfo.nl", source_id="", name="Pinkpop", start_date=date(2025, 6, 20))
    assert a != b


def test_model_hash_matches_function():
    f = _festival(source_id="42")
    assert f.identity_hash == identity_hash(
        source_website=f.source_website, source_id="42", name=f.name, start_date=f.start_date,
    )


def test_normalize_name():
    assert normalize_name("  Rock   am Ring! ") == "rock am ring"
    assert normalize_name(None) == ""


# ---------------------------------------------------------------------------
# SeenSet
# ---------------------------------------------------------------------------
def test_seen_set_suppresses_exact_repeats():
    seen = SeenSet()
    assert seen.add(_festival()) is True
    assert seen.add(_festival(scraped_at=datetime(2025, 3, 2, tzinfo=timezone.utc))) is False
    assert seen.add(_festival(name="Pinkpop")) is True
    assert len(seen) == 2


def test_seen_set_caches_parsed_details_by_url():
    seen = SeenSet()
    detail = DetailFields(date_text="20 juni 2025")
    assert seen.cached_detail("https://x.test/a") is None
    seen.remember_detail(" https://x.test/a ", detail)
    assert seen.cached_detail("https://x.test/a") is detail
    assert seen.cached_detail("https://x.test/b") is None
    # a cached detail page never counts as a seen identity
    assert len(seen) == 0
