# festival_crawler/errors.py
"""
Error taxonomy for the ingestion pipeline.

Scope of each error decides how far it propagates:
  - ParseError          record-scoped, never retried
  - FetchError          page-scoped, retried when `retryable`
  - WriteConflictError  store-scoped, retried per batch then per record
  - FatalSourceError    source-scoped, aborts one source, never the run
  - RunCancelled        raised out of waits once the run's cancel event is set
"""
from __future__ import annotations

from typing import Optional


class CrawlerError(Exception):
    """Base class for every pipeline error."""


class FetchError(CrawlerError):
    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        status_code: Optional[int] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class ParseError(CrawlerError):
    def __init__(self, message: str, *, text: str = "") -> None:
        super().__init__(f"{message}: {text!r}" if text else message)
        self.text = text


class WriteConflictError(CrawlerError):
    pass


class FatalSourceError(CrawlerError):
    def __init__(self, message: str, *, source_website: str = "") -> None:
        super().__init__(message)
        self.source_website = source_website


class RunCancelled(CrawlerError):
    pass
