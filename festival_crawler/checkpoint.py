from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_PATH = ".festival_checkpoint.json"


class Checkpoint:
    """
    JSON file of {source_website: {"last_page": N, "run_id": ..., "updated_at": ...}}.

    last_page is the last page whose records were all flushed to the store,
    so a resumed run starts at last_page + 1 without losing anything.
    Sources run on separate threads; one lock guards the file.
    """

    def __init__(self, path: str = DEFAULT_CHECKPOINT_PATH) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._data: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("[checkpoint] ignoring unreadable %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False, indent=2, sort_keys=True)
        os.replace(tmp, self.path)

    def last_page(self, source_website: str) -> Optional[int]:
        with self._lock:
            entry = self._data.get(source_website) or {}
        page = entry.get("last_page")
        return int(page) if isinstance(page, int) else None

    def resume_page(self, source_website: str) -> Optional[int]:
        """Page to start from on --resume, or None for a fresh start."""
        last = self.last_page(source_website)
        return last + 1 if last is not None else None

    def mark(self, source_website: str, page: int, *, run_id: str = "") -> None:
        with self._lock:
            self._data[source_website] = {
                "last_page": page,
                "run_id": run_id,
                "updated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
            }
            self._save()

    def clear(self, source_website: str) -> None:
        with self._lock:
            if self._data.pop(source_website, None) is not None:
                self._save()
