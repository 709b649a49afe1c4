# festival_crawler/db/supabase_store.py
"""
Supabase (PostgREST) backend.

PostgREST builds `INSERT ... ON CONFLICT (identity_hash) DO UPDATE SET`
from the keys present in the payload, so sending only pipeline columns is
what keeps the user columns out of the UPDATE.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence, Set

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from ..errors import WriteConflictError
from ..storage import CONFLICT_COLUMN, PIPELINE_COLUMNS

logger = logging.getLogger(__name__)

FESTIVALS_TABLE = "festivals"
RUNS_TABLE = "scrape_runs"

# transient transport errors seen on long-lived HTTP/2 connections
TRANSIENT_HTTP_ERRORS = (
    httpx.RemoteProtocolError,
    httpx.ReadTimeout,
    httpx.ConnectError,
    httpx.WriteError,
)

# PostgREST caps URL length; IN (...) lookups are chunked
_LOOKUP_CHUNK = 100


def _extract_postgrest_error(e: APIError) -> dict[str, Any]:
    """Normalize PostgREST APIError across versions (message, code, details, hint)."""
    if getattr(e, "args", None) and len(e.args) >= 1 and isinstance(e.args[0], dict):
        return e.args[0]
    if getattr(e, "code", None) is not None:
        return {k: getattr(e, k, None) for k in ("message", "code", "details", "hint")}
    return {"message": str(e)}


def _as_conflict(what: str, e: Exception) -> WriteConflictError:
    if isinstance(e, APIError):
        err = _extract_postgrest_error(e)
        return WriteConflictError(f"{what}: code={err.get('code')} {err.get('message')}")
    return WriteConflictError(f"{what}: {type(e).__name__}: {e}")


class SupabaseFestivalStore:
    def __init__(self, client: Optional[Client] = None) -> None:
        if client is None:
            from .supabase_client import get_supabase_client

            client = get_supabase_client()
        self.client = client

    def existing_hashes(self, hashes: Sequence[str]) -> Set[str]:
        found: Set[str] = set()
        hs = list(hashes)
        for i in range(0, len(hs), _LOOKUP_CHUNK):
            chunk = hs[i:i + _LOOKUP_CHUNK]
            try:
                res = (
                    self.client.table(FESTIVALS_TABLE)
                    .select(CONFLICT_COLUMN)
                    .in_(CONFLICT_COLUMN, chunk)
                    .execute()
                )
            except (APIError, *TRANSIENT_HTTP_ERRORS) as e:
                raise _as_conflict("existing_hashes", e) from e
            found.update(r[CONFLICT_COLUMN] for r in (res.data or []))
        return found

    def upsert_rows(self, rows: Sequence[Dict[str, Any]]) -> None:
        if not rows:
            return
        payload = [{c: row.get(c) for c in PIPELINE_COLUMNS} for row in rows]
        try:
            (
                self.client.table(FESTIVALS_TABLE)
                .upsert(payload, on_conflict=CONFLICT_COLUMN)
                .execute()
            )
        except (APIError, *TRANSIENT_HTTP_ERRORS) as e:
            raise _as_conflict("upsert festivals", e) from e

    def start_run(self, run: Dict[str, Any]) -> None:
        try:
            self.client.table(RUNS_TABLE).insert(run).execute()
        except (APIError, *TRANSIENT_HTTP_ERRORS) as e:
            raise _as_conflict("insert scrape_run", e) from e

    def finish_run(self, run: Dict[str, Any]) -> None:
        payload = {k: v for k, v in run.items() if k not in ("run_id", "source_website")}
        try:
            (
                self.client.table(RUNS_TABLE)
                .update(payload)
                .eq("run_id", run["run_id"])
                .eq("source_website", run["source_website"])
                .execute()
            )
        except (APIError, *TRANSIENT_HTTP_ERRORS) as e:
            raise _as_conflict("update scrape_run", e) from e

    def close(self) -> None:
        return None
