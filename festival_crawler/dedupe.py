# festival_crawler/dedupe.py
"""
Identity-hash contract for festivals.

=== CONTRACT (v1) ===

Format:  "v1|<sha256_hex>"

  NATIVE-ID PATH (source exposes its own identifier):
    seed = "<source_website>|id|<source_id>"

  CONTENT PATH (no native identifier):
    seed = "<source_website>|name|<normalized_name>|<start_date ISO or ''>"

Name normalization: lowercase, collapse whitespace, strip punctuation.

The same hash is the upsert conflict key, so two runs that see the same
festival update one row. source_website is always part of the seed: the same
festival listed on two websites gives two different hashes.
"""
from __future__ import annotations

import re
from datetime import date
from hashlib import sha256
from typing import TYPE_CHECKING, Dict, Optional, Set

if TYPE_CHECKING:
    from .models import CanonicalFestival, DetailFields

VERSION = "v1"


def _sha256_hex(s: str) -> str:
    return sha256(s.encode("utf-8")).hexdigest()


def normalize_name(name: Optional[str]) -> str:
    if not name:
        return ""
    s = name.lower().strip()
    s = re.sub(r"\s+", " ", s)
    s = re.sub(r"[^\w\s]", "", s)
    return s.strip()


def identity_hash(
    *,
    source_website: str,
    source_id: Optional[str],
    name: Optional[str],
    start_date: Optional[date],
) -> str:
    native = (source_id or "").strip()
    if native:
        seed = f"{source_website}|id|{native}"
    else:
        start = start_date.isoformat() if start_date else ""
        seed = "|".join([source_website, "name", normalize_name(name), start])
    return f"{VERSION}|{_sha256_hex(seed)}"


class SeenSet:
    """
    Per-run record of identities already accepted, plus the parsed detail
    pages seen so far (keyed by URL) so a repeated listing is not fetched
    twice. Only the identity hash decides what is a duplicate.

    One instance per source run; never shared between runs.
    """

    def __init__(self) -> None:
        self._hashes: Set[str] = set()
        self._details: Dict[str, "DetailFields"] = {}

    def __len__(self) -> int:
        return len(self._hashes)

    def add(self, festival: "CanonicalFestival") -> bool:
        """Return True when the festival is new in this run."""
        h = festival.identity_hash
        if h in self._hashes:
            return False
        self._hashes.add(h)
        return True

    def cached_detail(self, detail_url: str) -> Optional["DetailFields"]:
        return self._details.get(detail_url.strip())

    def remember_detail(self, detail_url: str, detail: "DetailFields") -> None:
        self._details[detail_url.strip()] = detail
