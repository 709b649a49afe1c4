# festival_crawler/pipeline.py
"""
Run orchestrator and CLI.

Per source:  PENDING -> PAGING -> EXTRACTING -> WRITING -> {SUCCEEDED | PARTIAL | FAILED}

  - pages are walked sequentially, detail pages per listing page in parallel
  - records are deduplicated against the run's SeenSet, then buffered into
    the UpsertWriter (batches of batch_size)
  - a FatalSourceError (or any unexpected error) stops that source only;
    buffered records are still flushed and the run row finished, other
    sources keep going
  - the cancel event stops waits and pending detail fetches; whatever is
    buffered is still flushed and the source ends PARTIAL

Every source run ends with one grep-friendly line:
  grep '[pipeline][summary]' crawl.log
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Callable, ContextManager, List, Optional, Sequence

from .checkpoint import DEFAULT_CHECKPOINT_PATH, Checkpoint
from .config import RunConfig
from .dedupe import SeenSet
from .errors import FatalSourceError, RunCancelled, WriteConflictError
from .models import BatchResult, RunState, SourceRunMetadata
from .sources.base import BaseAdapter
from .sources.browser import ScrollablePage
from .sources.enrich import FLAG_DATE_UNPARSED, enrich_page
from .sources.http import FetchOptions, fetch
from .sources.pagination import PageDocument, make_driver
from .sources.registry import get_adapter, select_sources
from .sources.types import HtmlDocument, PaginationKind, SourceConfig
from .storage import DryRunStore, FestivalStore, UpsertWriter

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], FestivalStore]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunContext:
    """Everything one source run mutates; passed down instead of module globals."""

    source: SourceConfig
    adapter: BaseAdapter
    cfg: RunConfig
    meta: SourceRunMetadata
    seen: SeenSet
    writer: UpsertWriter
    cancel: threading.Event
    checkpoint: Optional[Checkpoint] = None
    last_processed: Optional[int] = None   # last page whose records all reached the writer
    flushed_through: Optional[int] = None  # last page whose records are all in the store

    def record_error(self, where: str, err: BaseException) -> None:
        self.meta.record_error(f"{where}: {type(err).__name__}: {err}")

    def apply(self, res: BatchResult) -> None:
        self.meta.records_inserted += res.written
        self.meta.records_updated += res.updated
        self.meta.records_failed += res.failed
        for failure in res.failures:
            self.meta.record_error(f"{failure.detail_url}: {failure.error}")

    def mark_flushed(self, page: Optional[int]) -> None:
        if page is None or page == self.flushed_through:
            return
        self.flushed_through = page
        self.meta.last_page = page
        if self.checkpoint is not None and self.source.pagination == PaginationKind.PARAM:
            self.checkpoint.mark(self.source.source_website, page, run_id=self.meta.run_id)


def _final_state(meta: SourceRunMetadata, fatal: Optional[BaseException]) -> RunState:
    if fatal is not None:
        return RunState.FAILED
    if meta.cancelled:
        return RunState.PARTIAL
    if meta.uniques_written == 0:
        return RunState.FAILED
    if meta.errors or meta.records_failed:
        return RunState.PARTIAL
    return RunState.SUCCEEDED


def _process_page(
    ctx: RunContext,
    page: PageDocument,
    fetch_detail: Callable[[str], HtmlDocument],
) -> None:
    meta = ctx.meta
    meta.state = RunState.EXTRACTING
    records = ctx.adapter.parse_listing(page.document)
    meta.listings_seen += len(records)

    enriched = enrich_page(
        records,
        ctx.adapter,
        ctx.source.locale,
        fetch_detail=fetch_detail,
        seen=ctx.seen,
        max_workers=ctx.cfg.detail_concurrency,
        cancel=ctx.cancel,
        on_error=ctx.record_error,
    )

    meta.state = RunState.WRITING
    for festival in enriched.festivals:
        if FLAG_DATE_UNPARSED in festival.flags:
            logger.info("[pipeline] %s: no usable date for %s", ctx.source.source_website, festival.detail_url)
        if not ctx.seen.add(festival):
            meta.duplicates_suppressed += 1
            continue
        res = ctx.writer.add(festival)
        if res is not None:
            ctx.apply(res)
            # a mid-page flush covers every earlier page
            ctx.mark_flushed(ctx.last_processed)

    meta.pages_processed += 1
    if enriched.cancelled or ctx.cancel.is_set():
        raise RunCancelled(f"{ctx.source.source_website}: cancelled on page {page.index}")

    ctx.last_processed = page.index
    if len(ctx.writer) == 0:
        ctx.mark_flushed(page.index)


def _traverse(
    ctx: RunContext,
    *,
    start_page: Optional[int],
    fetch_page: Optional[Callable[[str], HtmlDocument]],
    open_page: Optional[Callable[[str], ContextManager[ScrollablePage]]],
    fetch_detail: Optional[Callable[[str], HtmlDocument]],
) -> None:
    ctx.meta.state = RunState.PAGING
    driver = make_driver(
        ctx.source,
        ctx.adapter,
        ctx.cfg,
        cancel=ctx.cancel,
        on_error=ctx.record_error,
        start_page=start_page,
        fetch_page=fetch_page,
        open_page=open_page,
    )
    if fetch_detail is None:
        options = FetchOptions.from_config(ctx.cfg, render_js=ctx.source.render_js_details)
        fetch_detail = partial(fetch, options=options, cancel=ctx.cancel)

    for page in driver.documents():
        logger.info("[pipeline] %s: page %d", ctx.source.source_website, page.index)
        _process_page(ctx, page, fetch_detail)
        ctx.meta.state = RunState.PAGING


def _flush(ctx: RunContext) -> bool:
    """Final flush; record-level failures land in meta, store outages in errors."""
    try:
        ctx.apply(ctx.writer.flush())
    except WriteConflictError as e:
        ctx.record_error("final flush", e)
        return False
    return True


def log_summary(meta: SourceRunMetadata) -> None:
    duration = (
        (meta.finished_at - meta.started_at).total_seconds()
        if meta.finished_at else 0.0
    )
    logger.info(
        "[pipeline][summary]"
        " source=%s run_id=%s status=%s state=%s"
        " listings_seen=%d uniques_written=%d inserted=%d updated=%d"
        " failed=%d duplicates=%d errors=%d pages=%d last_page=%s"
        " cancelled=%s duration_s=%.1f",
        meta.source_website, meta.run_id,
        meta.status.value if meta.status else "-", meta.state.value,
        meta.listings_seen, meta.uniques_written, meta.records_inserted, meta.records_updated,
        meta.records_failed, meta.duplicates_suppressed, meta.errors, meta.pages_processed,
        meta.last_page, meta.cancelled, duration,
    )


def run_source(
    source: SourceConfig,
    cfg: RunConfig,
    store_factory: StoreFactory,
    *,
    run_id: Optional[str] = None,
    cancel: Optional[threading.Event] = None,
    checkpoint: Optional[Checkpoint] = None,
    resume: bool = False,
    fetch_page: Optional[Callable[[str], HtmlDocument]] = None,
    open_page: Optional[Callable[[str], ContextManager[ScrollablePage]]] = None,
    fetch_detail: Optional[Callable[[str], HtmlDocument]] = None,
) -> SourceRunMetadata:
    """
    One source, paginated to exhaustion (or fatal failure / cancellation).

    The metadata row is written at start and at finish whatever the outcome.
    fetch_page / open_page / fetch_detail replace the network for tests.
    """
    meta = SourceRunMetadata(
        run_id=run_id or uuid.uuid4().hex,
        source_website=source.source_website,
        started_at=_utc_now(),
    )
    store = store_factory()
    ctx = RunContext(
        source=source,
        adapter=get_adapter(source.adapter),
        cfg=cfg,
        meta=meta,
        seen=SeenSet(),
        writer=UpsertWriter(store, batch_size=cfg.batch_size, write_retries=cfg.write_retries),
        cancel=cancel or threading.Event(),
        checkpoint=checkpoint,
    )
    logger.info(
        "[source] start source=%s adapter=%s pagination=%s run_id=%s",
        source.source_website, source.adapter, source.pagination.value, meta.run_id,
    )

    try:
        try:
            ctx.writer.start_run(meta)
        except WriteConflictError as e:
            ctx.record_error("start_run", e)

        start_page = None
        if resume and checkpoint is not None and source.pagination == PaginationKind.PARAM:
            start_page = checkpoint.resume_page(source.source_website)
            if start_page is not None:
                logger.info("[source] %s: resuming at page %d", source.source_website, start_page)

        fatal: Optional[BaseException] = None
        try:
            _traverse(
                ctx,
                start_page=start_page,
                fetch_page=fetch_page,
                open_page=open_page,
                fetch_detail=fetch_detail,
            )
        except FatalSourceError as e:
            fatal = e
            ctx.record_error("fatal", e)
            logger.error("[source] %s: aborted: %s", source.source_website, e)
        except RunCancelled as e:
            meta.cancelled = True
            logger.warning("[source] %s: %s", source.source_website, e)
        except Exception as e:
            fatal = e
            ctx.record_error("crash", e)
            logger.exception("[source] %s: crashed: %s", source.source_website, e)

        flushed = _flush(ctx)
        if flushed:
            ctx.mark_flushed(ctx.last_processed)

        meta.state = _final_state(meta, fatal)
        meta.finished_at = _utc_now()

        # pagination ran to the end: the next resume starts from page one
        exhausted = fatal is None and not meta.cancelled and flushed
        if exhausted and checkpoint is not None:
            checkpoint.clear(source.source_website)

        try:
            ctx.writer.finish_run(meta)
        except WriteConflictError as e:
            logger.error("[source] %s: could not persist run metadata: %s", source.source_website, e)
    finally:
        store.close()

    log_summary(meta)
    return meta


def run_sources(
    sources: Sequence[SourceConfig],
    cfg: RunConfig,
    store_factory: StoreFactory,
    *,
    cancel: Optional[threading.Event] = None,
    checkpoint: Optional[Checkpoint] = None,
    resume: bool = False,
    run_id: Optional[str] = None,
    **overrides,
) -> List[SourceRunMetadata]:
    """
    Run sources concurrently (cfg.concurrency at a time). A crashing source
    is reported FAILED; it never takes the others down.
    """
    run_id = run_id or uuid.uuid4().hex
    cancel = cancel or threading.Event()
    results: List[SourceRunMetadata] = []

    with ThreadPoolExecutor(max_workers=max(1, min(cfg.concurrency, len(sources) or 1))) as pool:
        futures = [
            pool.submit(
                run_source,
                s,
                cfg,
                store_factory,
                run_id=run_id,
                cancel=cancel,
                checkpoint=checkpoint,
                resume=resume,
                **overrides,
            )
            for s in sources
        ]
        for s, fut in zip(sources, futures):
            try:
                results.append(fut.result())
            except Exception as e:
                logger.exception("[source] %s: crashed: %s", s.source_website, e)
                now = _utc_now()
                meta = SourceRunMetadata(
                    run_id=run_id,
                    source_website=s.source_website,
                    state=RunState.FAILED,
                    started_at=now,
                    finished_at=now,
                )
                meta.record_error(f"crash: {type(e).__name__}: {e}")
                log_summary(meta)
                results.append(meta)

    logger.info(
        "[pipeline][summary] sources_run=%d succeeded=%d partial=%d failed=%d uniques_written=%d",
        len(results),
        sum(1 for m in results if m.state == RunState.SUCCEEDED),
        sum(1 for m in results if m.state == RunState.PARTIAL),
        sum(1 for m in results if m.state == RunState.FAILED),
        sum(m.uniques_written for m in results),
    )
    return results


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------


def _store_factory(args: argparse.Namespace) -> StoreFactory:
    if args.dry_run:
        return DryRunStore
    if args.store == "supabase":
        from .db.supabase_store import SupabaseFestivalStore

        return SupabaseFestivalStore
    from .db.sqlite_store import SqliteFestivalStore

    return partial(SqliteFestivalStore, args.db_path)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="festival-crawl",
        description="Crawl festival agendas and upsert them into the festivals table.",
    )
    p.add_argument("sources", nargs="*", help="source keys (default: all enabled)")
    p.add_argument("--max-pages", type=int, default=None, help="page cap per source (0 = no cap)")
    p.add_argument("--delay-ms", type=int, default=None, help="minimum delay before each request")
    p.add_argument("--batch-size", type=int, default=None, help="records per upsert batch")
    p.add_argument("--concurrency", type=int, default=None, help="sources crawled at the same time")
    p.add_argument("--detail-concurrency", type=int, default=None, help="detail pages fetched at the same time per source")
    p.add_argument("--resume", action="store_true", help="continue paged sources after their checkpoint")
    p.add_argument("--checkpoint", default=DEFAULT_CHECKPOINT_PATH, help="checkpoint file")
    p.add_argument("--dry-run", action="store_true", help="crawl and log, write nothing")
    p.add_argument("--store", choices=("sqlite", "supabase"), default="sqlite")
    p.add_argument("--db-path", default="festivals.db", help="SQLite file for --store sqlite")
    p.add_argument("--log-level", default="INFO")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        cfg = RunConfig.from_env().with_overrides(
            max_pages=args.max_pages,
            delay_ms=args.delay_ms,
            batch_size=args.batch_size,
            concurrency=args.concurrency,
            detail_concurrency=args.detail_concurrency,
        )
        sources = select_sources(args.sources)
    except (ValueError, KeyError) as e:
        print(f"festival-crawl: {e}", file=sys.stderr)
        return 2

    cancel = threading.Event()

    def _on_sigint(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("[pipeline] interrupt received, finishing current writes (Ctrl-C again to abort)")
        cancel.set()

    signal.signal(signal.SIGINT, _on_sigint)

    results = run_sources(
        sources,
        cfg,
        _store_factory(args),
        cancel=cancel,
        checkpoint=Checkpoint(args.checkpoint),
        resume=args.resume,
    )
    return 1 if any(m.state == RunState.FAILED for m in results) else 0


if __name__ == "__main__":
    sys.exit(main())
