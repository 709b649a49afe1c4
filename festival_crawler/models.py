from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, model_validator

from .dedupe import identity_hash


class Locale(str, Enum):
    DUTCH = "nl"
    GERMAN = "de"
    ENGLISH = "en"
    FRENCH = "fr"


class RawListingRecord(BaseModel):
    source_website: str
    name: str
    raw_date_text: str = ""
    location: str = ""
    detail_url: str
    source_id: str = ""  # native id on the source site, "" when none


class DetailFields(BaseModel):
    date_text: str = ""
    location: str = ""

    # structured dates (JSON-LD / <time datetime>) win over date_text
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class DateRange(BaseModel):
    start: date
    end: date

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError(f"end {self.end} before start {self.start}")
        return self

    @property
    def duration_days(self) -> int:
        return (self.end - self.start).days + 1


class CanonicalFestival(BaseModel):
    name: str = Field(min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    location: str = ""
    source_website: str
    source_id: str = ""
    detail_url: str
    scraped_at: datetime

    date_source: str = "none"  # detail | list | none
    flags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_dates(self) -> "CanonicalFestival":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError(f"end_date {self.end_date} before start_date {self.start_date}")
        if self.start_date and not self.end_date:
            self.end_date = self.start_date
        return self

    @computed_field  # type: ignore[misc]
    @property
    def duration_days(self) -> Optional[int]:
        if not self.start_date or not self.end_date:
            return None
        return (self.end_date - self.start_date).days + 1

    @computed_field  # type: ignore[misc]
    @property
    def identity_hash(self) -> str:
        return identity_hash(
            source_website=self.source_website,
            source_id=self.source_id,
            name=self.name,
            start_date=self.start_date,
        )


class RunState(str, Enum):
    PENDING = "PENDING"
    PAGING = "PAGING"
    EXTRACTING = "EXTRACTING"
    WRITING = "WRITING"
    SUCCEEDED = "SUCCEEDED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


_TERMINAL_STATUS = {
    RunState.SUCCEEDED: RunStatus.SUCCESS,
    RunState.PARTIAL: RunStatus.PARTIAL,
    RunState.FAILED: RunStatus.FAILED,
}

ERROR_SAMPLE_LIMIT = 20


class SourceRunMetadata(BaseModel):
    run_id: str
    source_website: str
    state: RunState = RunState.PENDING
    listings_seen: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    records_failed: int = 0
    duplicates_suppressed: int = 0
    errors: int = 0
    error_samples: List[str] = Field(default_factory=list)
    pages_processed: int = 0
    last_page: Optional[int] = None
    cancelled: bool = False
    started_at: datetime
    finished_at: Optional[datetime] = None

    @computed_field  # type: ignore[misc]
    @property
    def uniques_written(self) -> int:
        return self.records_inserted + self.records_updated

    @computed_field  # type: ignore[misc]
    @property
    def status(self) -> Optional[RunStatus]:
        return _TERMINAL_STATUS.get(self.state)

    def record_error(self, sample: str) -> None:
        self.errors += 1
        if len(self.error_samples) < ERROR_SAMPLE_LIMIT:
            self.error_samples.append(sample[:300])


class RecordFailure(BaseModel):
    identity_hash: str
    detail_url: str
    error: str


class BatchResult(BaseModel):
    written: int = 0
    updated: int = 0
    failed: int = 0
    failures: List[RecordFailure] = Field(default_factory=list)

    def merge(self, other: "BatchResult") -> None:
        self.written += other.written
        self.updated += other.updated
        self.failed += other.failed
        self.failures.extend(other.failures)
