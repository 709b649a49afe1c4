"""
UpsertWriter against the SQLite backend.

The important contract: writes are idempotent on identity_hash, and only
pipeline columns are ever written, so user columns survive re-ingestion.
"""
from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone

import pytest

from festival_crawler.db.sqlite_store import UPSERT_SQL, SqliteFestivalStore
from festival_crawler.errors import WriteConflictError
from festival_crawler.models import CanonicalFestival, RunState, SourceRunMetadata
from festival_crawler.storage import (
    PIPELINE_COLUMNS,
    USER_COLUMNS,
    DryRunStore,
    UpsertWriter,
    festival_to_row,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _no_sleep(seconds, cancel):
    return None


def _festival(name="Pinkpop", **overrides) -> CanonicalFestival:
    defaults = dict(
        name=name,
        start_date=date(2025, 6, 20),
        end_date=date(2025, 6, 22),
        location="Landgraaf, Nederland",
        source_website="festivalinfo.nl",
        detail_url=f"https://www.festivalinfo.nl/festival/{name.lower()}/",
        scraped_at=NOW,
    )
    defaults.update(overrides)
    return CanonicalFestival(**defaults)


@pytest.fixture
def store(tmp_path):
    s = SqliteFestivalStore(str(tmp_path / "festivals.db"))
    yield s
    s.close()


class FlakyStore:
    """Wraps a real store; upsert_rows fails for poison names or the first `fail_times` calls."""

    def __init__(self, inner, *, poison=(), fail_times=0):
        self.inner = inner
        self.poison = set(poison)
        self.fail_times = fail_times
        self.upsert_calls = []

    def upsert_rows(self, rows):
        self.upsert_calls.append(len(rows))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise WriteConflictError("database is locked")
        if any(r["name"] in self.poison for r in rows):
            raise WriteConflictError("check constraint violated")
        self.inner.upsert_rows(rows)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def _rows(store):
    return {r["identity_hash"]: dict(r) for r in store.conn.execute("SELECT * FROM festivals")}


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------
def test_row_has_exactly_the_pipeline_columns():
    row = festival_to_row(_festival())
    assert set(row) == set(PIPELINE_COLUMNS)
    assert not set(row) & USER_COLUMNS
    assert row["start_date"] == "2025-06-20"
    assert row["duration_days"] == 3
    assert row["scraped_at"] == "2025-03-01T12:00:00+00:00"
    assert row["source_id"] is None


def test_upsert_statement_never_names_user_columns():
    for col in USER_COLUMNS:
        assert col not in UPSERT_SQL
    assert "ON CONFLICT(identity_hash)" in UPSERT_SQL


# ---------------------------------------------------------------------------
# Idempotence and counts
# ---------------------------------------------------------------------------
def test_insert_then_update_counts(store):
    festivals = [_festival(n) for n in ("Pinkpop", "Lowlands", "Paaspop")]

    first = UpsertWriter(store).upsert_batch(festivals)
    assert (first.written, first.updated, first.failed) == (3, 0, 0)

    second = UpsertWriter(store).upsert_batch(festivals)
    assert (second.written, second.updated, second.failed) == (0, 3, 0)
    assert len(_rows(store)) == 3


def test_reingestion_preserves_user_columns(store):
    f = _festival()
    UpsertWriter(store).upsert_batch([f])
    with store.conn:
        store.conn.execute(
            "UPDATE festivals SET favorite = 1, archived = 1, notes = 'bel terug', sales_stage = 'lead' "
            "WHERE identity_hash = ?",
            (f.identity_hash,),
        )

    moved = _festival(location="Megaland, Landgraaf", scraped_at=datetime(2025, 4, 1, tzinfo=timezone.utc))
    assert moved.identity_hash == f.identity_hash
    UpsertWriter(store).upsert_batch([moved])

    row = _rows(store)[f.identity_hash]
    assert row["location"] == "Megaland, Landgraaf"
    assert row["scraped_at"].startswith("2025-04-01")
    assert (row["favorite"], row["archived"], row["notes"], row["sales_stage"]) == (1, 1, "bel terug", "lead")


def test_duplicates_inside_one_batch_collapse(store):
    res = UpsertWriter(store).upsert_batch([_festival(), _festival(location="Elders")])
    assert res.written == 1
    assert _rows(store)[_festival().identity_hash]["location"] == "Elders"


# ---------------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------------
def test_add_flushes_every_batch_size(store):
    flaky = FlakyStore(store)
    writer = UpsertWriter(flaky, batch_size=2)
    results = [writer.add(_festival(f"F{i}")) for i in range(5)]

    assert [r is not None for r in results] == [False, True, False, True, False]
    assert len(writer) == 1
    writer.flush()
    assert len(writer) == 0
    assert flaky.upsert_calls == [2, 2, 1]
    assert writer.totals.written == 5


def test_flush_of_empty_buffer_is_a_noop(store):
    res = UpsertWriter(store).flush()
    assert (res.written, res.updated, res.failed) == (0, 0, 0)


def test_batch_size_must_be_positive(store):
    with pytest.raises(ValueError):
        UpsertWriter(store, batch_size=0)


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------
def test_transient_failure_is_retried(store):
    flaky = FlakyStore(store, fail_times=1)
    res = UpsertWriter(flaky, sleep=_no_sleep).upsert_batch([_festival(n) for n in ("A", "B", "C")])
    assert res.written == 3
    assert flaky.upsert_calls == [3, 3]


def test_poison_record_is_isolated(store, caplog):
    caplog.set_level(logging.ERROR, logger="festival_crawler.storage")
    flaky = FlakyStore(store, poison={"Broken"})
    writer = UpsertWriter(flaky, batch_size=3, write_retries=2, sleep=_no_sleep)

    writer.add(_festival("Good One"))
    writer.add(_festival("Broken"))
    res = writer.add(_festival("Good Two"))

    assert (res.written, res.failed) == (2, 1)
    assert res.failures[0].detail_url == _festival("Broken").detail_url
    # three whole-batch attempts, then one call per record
    assert flaky.upsert_calls == [3, 3, 3, 1, 1, 1]
    assert {r["name"] for r in _rows(store).values()} == {"Good One", "Good Two"}
    assert "REJECT" in caplog.text


# ---------------------------------------------------------------------------
# Run metadata
# ---------------------------------------------------------------------------
def test_run_rows_are_created_then_finished(store):
    meta = SourceRunMetadata(run_id="run-1", source_website="festivalinfo.nl", started_at=NOW)
    writer = UpsertWriter(store)
    writer.start_run(meta)

    meta.state = RunState.PARTIAL
    meta.records_inserted = 4
    meta.record_error("https://x.test/2: HTTP 503")
    meta.finished_at = NOW
    writer.finish_run(meta)

    rows = [dict(r) for r in store.conn.execute("SELECT * FROM scrape_runs")]
    assert len(rows) == 1
    row = rows[0]
    assert row["state"] == "PARTIAL"
    assert row["status"] == "partial"
    assert row["uniques_written"] == 4
    assert json.loads(row["error_samples"]) == ["https://x.test/2: HTTP 503"]
    assert row["finished_at"] == "2025-03-01T12:00:00+00:00"


def test_dry_run_store_writes_nothing(caplog):
    caplog.set_level(logging.INFO, logger="festival_crawler.storage")
    res = UpsertWriter(DryRunStore()).upsert_batch([_festival()])
    assert res.written == 1
    assert "[storage][dry-run] would upsert festivalinfo.nl | Pinkpop" in caplog.text
