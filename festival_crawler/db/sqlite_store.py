# festival_crawler/db/sqlite_store.py
"""
Local SQLite backend for the festivals / scrape_runs tables.

Same column contract as the Postgres schema in sql/schema.sql: the upsert
lists only pipeline columns, so favorite / archived / notes / sales_stage
keep whatever a user put there.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Dict, Sequence, Set

from ..errors import WriteConflictError
from ..storage import CONFLICT_COLUMN, PIPELINE_COLUMNS

logger = logging.getLogger(__name__)

_CREATE_FESTIVALS = """
CREATE TABLE IF NOT EXISTS festivals (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    start_date      TEXT,
    end_date        TEXT,
    duration_days   INTEGER,
    location        TEXT,
    source_website  TEXT NOT NULL,
    source_id       TEXT,
    detail_url      TEXT NOT NULL,
    identity_hash   TEXT NOT NULL UNIQUE,
    scraped_at      TEXT NOT NULL,
    -- user-owned, never written by the pipeline
    favorite        INTEGER NOT NULL DEFAULT 0,
    archived        INTEGER NOT NULL DEFAULT 0,
    notes           TEXT,
    sales_stage     TEXT,
    created_at      TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CHECK (end_date IS NULL OR start_date IS NULL OR end_date >= start_date)
);
"""

_CREATE_RUNS = """
CREATE TABLE IF NOT EXISTS scrape_runs (
    run_id                 TEXT NOT NULL,
    source_website         TEXT NOT NULL,
    state                  TEXT NOT NULL,
    status                 TEXT,
    listings_seen          INTEGER,
    uniques_written        INTEGER,
    records_inserted       INTEGER,
    records_updated        INTEGER,
    records_failed         INTEGER,
    duplicates_suppressed  INTEGER,
    errors                 INTEGER,
    error_samples          TEXT,          -- JSON list
    pages_processed        INTEGER,
    last_page              INTEGER,
    started_at             TEXT NOT NULL,
    finished_at            TEXT,
    PRIMARY KEY (run_id, source_website)
);
"""


def _upsert_sql() -> str:
    cols = ", ".join(PIPELINE_COLUMNS)
    params = ", ".join(f":{c}" for c in PIPELINE_COLUMNS)
    updates = ", ".join(f"{c} = excluded.{c}" for c in PIPELINE_COLUMNS if c != CONFLICT_COLUMN)
    return (
        f"INSERT INTO festivals ({cols}) VALUES ({params}) "
        f"ON CONFLICT({CONFLICT_COLUMN}) DO UPDATE SET {updates}"
    )


UPSERT_SQL = _upsert_sql()


class SqliteFestivalStore:
    """One connection per instance; each source writer gets its own."""

    def __init__(self, db_path: str, *, timeout_s: float = 30.0) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, timeout=timeout_s)
        self.conn.row_factory = sqlite3.Row
        self.ensure_schema()

    def ensure_schema(self) -> None:
        with self.conn:
            self.conn.execute(_CREATE_FESTIVALS)
            self.conn.execute(_CREATE_RUNS)

    def existing_hashes(self, hashes: Sequence[str]) -> Set[str]:
        if not hashes:
            return set()
        marks = ",".join("?" for _ in hashes)
        try:
            cur = self.conn.execute(
                f"SELECT identity_hash FROM festivals WHERE identity_hash IN ({marks})",
                list(hashes),
            )
        except sqlite3.Error as e:
            raise WriteConflictError(f"sqlite lookup failed: {e}") from e
        return {r[0] for r in cur.fetchall()}

    def upsert_rows(self, rows: Sequence[Dict[str, Any]]) -> None:
        if not rows:
            return
        payload = [{c: row.get(c) for c in PIPELINE_COLUMNS} for row in rows]
        try:
            with self.conn:
                self.conn.executemany(UPSERT_SQL, payload)
        except sqlite3.Error as e:
            raise WriteConflictError(f"sqlite upsert failed: {e}") from e

    def start_run(self, run: Dict[str, Any]) -> None:
        self._write_run(run)

    def finish_run(self, run: Dict[str, Any]) -> None:
        self._write_run(run)

    def _write_run(self, run: Dict[str, Any]) -> None:
        row = dict(run)
        row["error_samples"] = json.dumps(row.get("error_samples") or [], ensure_ascii=False)
        cols = list(row)
        sql = (
            f"INSERT INTO scrape_runs ({', '.join(cols)}) "
            f"VALUES ({', '.join(':' + c for c in cols)}) "
            "ON CONFLICT(run_id, source_website) DO UPDATE SET "
            + ", ".join(f"{c} = excluded.{c}" for c in cols if c not in ("run_id", "source_website"))
        )
        try:
            with self.conn:
                self.conn.execute(sql, row)
        except sqlite3.Error as e:
            raise WriteConflictError(f"sqlite run write failed: {e}") from e

    def close(self) -> None:
        self.conn.close()
