from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set

from .errors import WriteConflictError
from .models import BatchResult, CanonicalFestival, RecordFailure, SourceRunMetadata
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

# Columns the pipeline owns. Upserts name these and nothing else, so the
# user columns below are never part of an INSERT or UPDATE SET list.
PIPELINE_COLUMNS = (
    "name",
    "start_date",
    "end_date",
    "duration_days",
    "location",
    "source_website",
    "source_id",
    "detail_url",
    "identity_hash",
    "scraped_at",
)

USER_COLUMNS = frozenset({
    "favorite",
    "archived",
    "notes",
    "sales_stage",
})

CONFLICT_COLUMN = "identity_hash"

# -----------------------------------------------------------------------------
# Small utilities
# -----------------------------------------------------------------------------


def _dt_iso(dt: Optional[datetime]) -> Optional[str]:
    if not dt:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0).isoformat()


def _date_iso(d: Optional[date]) -> Optional[str]:
    if not d:
        return None
    return d.isoformat()


def festival_to_row(f: CanonicalFestival) -> Dict[str, Any]:
    return {
        "name": f.name,
        "start_date": _date_iso(f.start_date),
        "end_date": _date_iso(f.end_date),
        "duration_days": f.duration_days,
        "location": f.location or None,
        "source_website": f.source_website,
        "source_id": f.source_id or None,
        "detail_url": f.detail_url,
        "identity_hash": f.identity_hash,
        "scraped_at": _dt_iso(f.scraped_at),
    }


def run_to_row(meta: SourceRunMetadata) -> Dict[str, Any]:
    return {
        "run_id": meta.run_id,
        "source_website": meta.source_website,
        "state": meta.state.value,
        "status": meta.status.value if meta.status else None,
        "listings_seen": meta.listings_seen,
        "uniques_written": meta.uniques_written,
        "records_inserted": meta.records_inserted,
        "records_updated": meta.records_updated,
        "records_failed": meta.records_failed,
        "duplicates_suppressed": meta.duplicates_suppressed,
        "errors": meta.errors,
        "error_samples": list(meta.error_samples),
        "pages_processed": meta.pages_processed,
        "last_page": meta.last_page,
        "started_at": _dt_iso(meta.started_at),
        "finished_at": _dt_iso(meta.finished_at),
    }


# -----------------------------------------------------------------------------
# Store interface
# -----------------------------------------------------------------------------


class FestivalStore(Protocol):
    """
    One session against the festivals / scrape_runs tables.

    upsert_rows must be atomic per call and raise WriteConflictError on any
    store-level failure.
    """

    def existing_hashes(self, hashes: Sequence[str]) -> Set[str]: ...

    def upsert_rows(self, rows: Sequence[Dict[str, Any]]) -> None: ...

    def start_run(self, run: Dict[str, Any]) -> None: ...

    def finish_run(self, run: Dict[str, Any]) -> None: ...

    def close(self) -> None: ...


# -----------------------------------------------------------------------------
# Writer
# -----------------------------------------------------------------------------


class UpsertWriter:
    """
    Buffers festivals and writes them in batches.

    A failing batch is retried whole (write_retries times, with backoff);
    when it keeps failing the batch is written record by record so one
    poison record cannot take the rest down with it.
    """

    def __init__(
        self,
        store: FestivalStore,
        *,
        batch_size: int = 50,
        write_retries: int = 2,
        backoff_base_s: float = 0.5,
        backoff_jitter_s: float = 0.25,
        sleep=None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.store = store
        self.batch_size = batch_size
        self.policy = RetryPolicy(
            attempts=write_retries + 1,
            base_delay=backoff_base_s,
            jitter=backoff_jitter_s,
        )
        self._sleep = sleep
        self._buffer: List[CanonicalFestival] = []
        self.totals = BatchResult()

    def __len__(self) -> int:
        return len(self._buffer)

    def add(self, festival: CanonicalFestival) -> Optional[BatchResult]:
        """Buffer one festival; returns the BatchResult when this add triggered a flush."""
        self._buffer.append(festival)
        if len(self._buffer) >= self.batch_size:
            return self.flush()
        return None

    def add_all(self, festivals: Iterable[CanonicalFestival]) -> BatchResult:
        out = BatchResult()
        for f in festivals:
            res = self.add(f)
            if res is not None:
                out.merge(res)
        return out

    def flush(self) -> BatchResult:
        if not self._buffer:
            return BatchResult()
        batch, self._buffer = self._buffer, []
        res = self.upsert_batch(batch)
        self.totals.merge(res)
        return res

    def _retry(self, fn, label: str):
        kwargs: Dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return call_with_retry(
            fn,
            policy=self.policy,
            retryable=lambda e: isinstance(e, WriteConflictError),
            label=label,
            **kwargs,
        )

    def upsert_batch(self, festivals: Sequence[CanonicalFestival]) -> BatchResult:
        # last one wins inside a batch: ON CONFLICT cannot touch a row twice per statement
        by_hash: Dict[str, CanonicalFestival] = {}
        for f in festivals:
            by_hash[f.identity_hash] = f
        unique = list(by_hash.values())
        if not unique:
            return BatchResult()

        rows = [festival_to_row(f) for f in unique]
        hashes = [r[CONFLICT_COLUMN] for r in rows]

        try:
            existing = self._retry(lambda: self.store.existing_hashes(hashes), "existing_hashes")
            self._retry(lambda: self.store.upsert_rows(rows), f"upsert batch of {len(rows)}")
        except WriteConflictError as e:
            logger.warning(
                "[storage] batch of %d failed after %d attempts, isolating records: %s",
                len(rows), self.policy.attempts, e,
            )
            return self._upsert_one_by_one(unique)

        updated = len(set(hashes) & existing)
        res = BatchResult(written=len(rows) - updated, updated=updated)
        logger.info("[storage] upserted batch rows=%d inserted=%d updated=%d", len(rows), res.written, res.updated)
        return res

    def _upsert_one_by_one(self, festivals: Sequence[CanonicalFestival]) -> BatchResult:
        res = BatchResult()
        for f in festivals:
            row = festival_to_row(f)
            h = row[CONFLICT_COLUMN]
            try:
                existed = h in self.store.existing_hashes([h])
                self.store.upsert_rows([row])
            except WriteConflictError as e:
                res.failed += 1
                res.failures.append(RecordFailure(identity_hash=h, detail_url=f.detail_url, error=str(e)[:300]))
                logger.error("[storage] REJECT record %s (%s): %s", f.detail_url, h, e)
                continue
            if existed:
                res.updated += 1
            else:
                res.written += 1
        return res

    # ---- run metadata -----------------------------------------------------

    def start_run(self, meta: SourceRunMetadata) -> None:
        self._retry(lambda: self.store.start_run(run_to_row(meta)), "start_run")

    def finish_run(self, meta: SourceRunMetadata) -> None:
        self._retry(lambda: self.store.finish_run(run_to_row(meta)), "finish_run")


class DryRunStore:
    """--dry-run: logs what would be written, keeps nothing."""

    def existing_hashes(self, hashes: Sequence[str]) -> Set[str]:
        return set()

    def upsert_rows(self, rows: Sequence[Dict[str, Any]]) -> None:
        for r in rows:
            logger.info(
                "[storage][dry-run] would upsert %s | %s | %s..%s",
                r.get("source_website"), r.get("name"), r.get("start_date"), r.get("end_date"),
            )

    def start_run(self, run: Dict[str, Any]) -> None:
        return None

    def finish_run(self, run: Dict[str, Any]) -> None:
        return None

    def close(self) -> None:
        return None
