# festival_crawler/dates.py
"""
Locale-aware festival date parsing.

normalize() turns listing / detail date text into a DateRange:

  nl  "26 april 2025"            -> 2025-04-26 .. 2025-04-26
  nl  "11 april t/m 13 april"    -> year inferred (list pass) or ParseError
  de  "11.–13. April 2025"       -> 2025-04-11 .. 2025-04-13
  en  "April 11–13, 2025"        -> 2025-04-11 .. 2025-04-13
  fr  "11 au 13 avril 2025"      -> 2025-04-11 .. 2025-04-13

Range resolution:
  - an endpoint without a month borrows the other endpoint's month; if that
    makes the range run backwards the borrowed month rolls by one
    ("28-2 januari" starts in December)
  - an endpoint without a year borrows the other endpoint's year; December ->
    January ranges put the end in the following year
  - no year anywhere: inferred from `reference` when infer_year=True (upcoming
    dates preferred), ParseError otherwise
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union

import dateparser

from .errors import ParseError
from .models import DateRange, Locale

# A date this far in the past (relative to `reference`) is taken to mean next
# year's edition when the text carries no year.
YEAR_INFERENCE_GRACE_DAYS = 60


def _fold(s: str) -> str:
    s = unicodedata.normalize("NFKD", s)
    return "".join(c for c in s if not unicodedata.combining(c))


_MONTHS_RAW: Dict[Locale, Dict[str, int]] = {
    Locale.DUTCH: {
        "januari": 1, "jan": 1,
        "februari": 2, "feb": 2, "febr": 2,
        "maart": 3, "mrt": 3, "mar": 3,
        "april": 4, "apr": 4,
        "mei": 5,
        "juni": 6, "jun": 6,
        "juli": 7, "jul": 7,
        "augustus": 8, "aug": 8,
        "september": 9, "sep": 9, "sept": 9,
        "oktober": 10, "okt": 10, "oct": 10,
        "november": 11, "nov": 11,
        "december": 12, "dec": 12,
    },
    Locale.GERMAN: {
        "januar": 1, "jänner": 1, "jan": 1,
        "februar": 2, "feb": 2, "febr": 2,
        "märz": 3, "maerz": 3, "mär": 3, "mrz": 3,
        "april": 4, "apr": 4,
        "mai": 5,
        "juni": 6, "jun": 6,
        "juli": 7, "jul": 7,
        "august": 8, "aug": 8,
        "september": 9, "sep": 9, "sept": 9,
        "oktober": 10, "okt": 10,
        "november": 11, "nov": 11,
        "dezember": 12, "dez": 12,
    },
    Locale.ENGLISH: {
        "january": 1, "jan": 1,
        "february": 2, "feb": 2,
        "march": 3, "mar": 3,
        "april": 4, "apr": 4,
        "may": 5,
        "june": 6, "jun": 6,
        "july": 7, "jul": 7,
        "august": 8, "aug": 8,
        "september": 9, "sep": 9, "sept": 9,
        "october": 10, "oct": 10,
        "november": 11, "nov": 11,
        "december": 12, "dec": 12,
    },
    Locale.FRENCH: {
        "janvier": 1, "janv": 1,
        "février": 2, "févr": 2, "fév": 2,
        "mars": 3,
        "avril": 4, "avr": 4,
        "mai": 5,
        "juin": 6,
        "juillet": 7, "juil": 7,
        "août": 8,
        "septembre": 9, "sept": 9,
        "octobre": 10, "oct": 10,
        "novembre": 11, "nov": 11,
        "décembre": 12, "déc": 12,
    },
}

MONTHS: Dict[Locale, Dict[str, int]] = {
    loc: {_fold(k): v for k, v in table.items()} for loc, table in _MONTHS_RAW.items()
}

# Longest first so "tot en met" wins over "tot".
RANGE_WORDS: Dict[Locale, List[str]] = {
    Locale.DUTCH: ["tot en met", "tot", "t/m", "tm"],
    Locale.GERMAN: ["bis zum", "bis"],
    Locale.ENGLISH: ["through", "until", "thru", "till", "to"],
    Locale.FRENCH: ["jusqu'au", "au"],
}

IGNORED_WORDS: Dict[Locale, frozenset] = {
    Locale.DUTCH: frozenset({
        "maandag", "dinsdag", "woensdag", "donderdag", "vrijdag", "zaterdag", "zondag",
        "ma", "di", "wo", "do", "vr", "za", "zo", "van", "op", "en",
    }),
    Locale.GERMAN: frozenset({
        "montag", "dienstag", "mittwoch", "donnerstag", "freitag", "samstag", "sonntag",
        "sonnabend", "mo", "di", "mi", "do", "fr", "sa", "so", "vom", "von", "am", "und",
    }),
    Locale.ENGLISH: frozenset({
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
        "mon", "tue", "tues", "wed", "thu", "thur", "thurs", "fri", "sat", "sun",
        "from", "on", "the", "of", "and",
    }),
    Locale.FRENCH: frozenset({
        "lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche",
        "lun", "mer", "jeu", "ven", "sam", "dim", "du", "le", "et",
    }),
}

_DASHES_RE = re.compile(r"[‐‑‒–—―−]")
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})(?:t[\d:.+z-]*)?\b")
_DASHED_DATE_RE = re.compile(r"\b(\d{1,2})-(\d{1,2})-(\d{4}|\d{2})\b")
_TIME_RES = (
    re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?\s*(?:uur|uhr|u|h|am|pm)?(?![\w])"),
    re.compile(r"\b\d{1,2}[.h]\d{2}\s*(?:uur|uhr|h)\b"),
    re.compile(r"\b\d{1,2}\s*[hu](?:\d{2})?\b"),
    re.compile(r"\b\d{1,2}\s*(?:uur|uhr|am|pm)\b"),
)
_ORDINAL_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th|er|e|ste|de)\b")
_DIGIT_LETTER_RE = re.compile(r"(\d)\.?(?=[^\W\d_])")
_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})[./](\d{1,2})(?:[./](\d{4}|\d{2}))?$")
_SHORT_YEAR_RE = re.compile(r"^'(\d{2})$")


@dataclass
class _Partial:
    days: List[int] = field(default_factory=list)
    month: Optional[int] = None
    year: Optional[int] = None

    @property
    def day(self) -> Optional[int]:
        return self.days[0] if self.days else None


def _full_year(y: int) -> int:
    if y >= 100:
        return y
    return 2000 + y if y < 50 else 1900 + y


def _clean(text: str, locale: Locale) -> str:
    s = (text or "").replace("\xa0", " ").replace("’", "'").lower()
    s = _DASHES_RE.sub("-", s)
    if locale == Locale.ENGLISH:
        s = _ISO_DATE_RE.sub(lambda m: f"{m.group(2)}/{m.group(3)}/{m.group(1)}", s)
    else:
        s = _ISO_DATE_RE.sub(lambda m: f"{m.group(3)}.{m.group(2)}.{m.group(1)}", s)
    s = _DASHED_DATE_RE.sub(lambda m: f"{m.group(1)}.{m.group(2)}.{m.group(3)}", s)
    for rx in _TIME_RES:
        s = rx.sub(" ", s)
    s = _ORDINAL_RE.sub(r"\1", s)
    s = _DIGIT_LETTER_RE.sub(r"\1 ", s)
    s = re.sub(r"[,;|()\[\]]", " ", s)
    s = re.sub(r"\s+", " ", s).strip(" -")
    return s


def _split_pattern(locale: Locale) -> "re.Pattern[str]":
    words = "|".join(re.escape(w) for w in RANGE_WORDS[locale])
    return re.compile(rf"(?:\s+(?:{words})\s+|\s*t/m\s*|\s*-+\s*)")


_SPLIT_RES = {loc: _split_pattern(loc) for loc in Locale}


def _split_range(cleaned: str, locale: Locale) -> Tuple[str, str]:
    parts = _SPLIT_RES[locale].split(cleaned, maxsplit=1)
    if len(parts) == 1:
        return parts[0].strip(), ""
    return parts[0].strip(), parts[1].strip()


def month_to_int(token: str, locale: Union[Locale, str]) -> Optional[int]:
    t = _fold((token or "").strip().strip(".").lower())
    return MONTHS[Locale(locale)].get(t)


def _parse_endpoint(part: str, locale: Locale) -> _Partial:
    out = _Partial()
    ignored = IGNORED_WORDS[locale]
    for raw_tok in part.split():
        tok = raw_tok.strip(".")
        if not tok:
            continue

        m = _NUMERIC_DATE_RE.match(tok)
        if m:
            a, b = int(m.group(1)), int(m.group(2))
            # English numeric dates are month-first unless that cannot be a month
            if locale == Locale.ENGLISH and a <= 12:
                a, b = b, a
            out.days.append(a)
            out.month = b
            if m.group(3):
                out.year = _full_year(int(m.group(3)))
            continue

        m = _SHORT_YEAR_RE.match(tok)
        if m:
            out.year = _full_year(int(m.group(1)))
            continue

        if tok.isdigit():
            n = int(tok)
            if len(tok) == 4 and 1900 <= n <= 2100:
                out.year = n
            elif 1 <= n <= 31 and len(tok) <= 2:
                out.days.append(n)
            continue

        if tok in ignored:
            continue
        mon = month_to_int(tok, locale)
        if mon is not None and out.month is None:
            out.month = mon
    return out


def _infer_year(month: int, day: int, reference: date) -> int:
    year = reference.year
    try:
        candidate = date(year, month, day)
    except ValueError:
        # 29 February in a non-leap reference year
        return year
    if candidate < reference - timedelta(days=YEAR_INFERENCE_GRACE_DAYS):
        year += 1
    return year


def _make_date(year: int, month: int, day: int, text: str) -> date:
    try:
        return date(year, month, day)
    except ValueError:
        raise ParseError("invalid calendar date", text=text) from None


def _parse_with_dateparser(
    text: str, locale: Locale, reference: date, infer_year: bool
) -> Optional[date]:
    """Fallback for single-date phrasings the token scanner does not cover."""
    required = ["day", "month"] if infer_year else ["day", "month", "year"]
    dt = dateparser.parse(
        text,
        languages=[locale.value],
        settings={
            "PREFER_DATES_FROM": "future",
            "RELATIVE_BASE": datetime(reference.year, reference.month, reference.day),
            "REQUIRE_PARTS": required,
            "DATE_ORDER": "MDY" if locale == Locale.ENGLISH else "DMY",
            "PARSERS": ["absolute-time"],
        },
    )
    return dt.date() if dt else None


def normalize(
    text: Optional[str],
    locale: Union[Locale, str],
    *,
    reference: Optional[date] = None,
    infer_year: bool = True,
) -> DateRange:
    """
    Parse `text` into a DateRange or raise ParseError.

    `infer_year=False` is the detail-page mode: text without any year is
    rejected so it can never override a list-page value.
    """
    loc = Locale(locale)
    raw = text or ""
    ref = reference or date.today()

    cleaned = _clean(raw, loc)
    if not cleaned:
        raise ParseError("empty date text", text=raw)

    left, right = _split_range(cleaned, loc)
    start = _parse_endpoint(left, loc)
    end = _parse_endpoint(right, loc) if right else None
    if end is not None and end.day is None and end.month is None and end.year is None:
        end = None  # separator followed by noise only

    if end is None:
        return _resolve_single(start, raw, loc, ref, infer_year)
    return _resolve_range(start, end, raw, ref, infer_year)


def _resolve_single(
    p: _Partial, raw: str, loc: Locale, ref: date, infer_year: bool
) -> DateRange:
    if p.day is None or p.month is None:
        d = _parse_with_dateparser(raw, loc, ref, infer_year)
        if d is None:
            raise ParseError("no day and month found", text=raw)
        return DateRange(start=d, end=d)

    year = p.year
    if year is None:
        if not infer_year:
            raise ParseError("missing year", text=raw)
        year = _infer_year(p.month, p.day, ref)

    start = _make_date(year, p.month, p.day, raw)
    if len(p.days) > 1:
        # enumerations like "11, 12 en 13 juli" span first..last day
        end = _make_date(year, p.month, p.days[-1], raw)
        if end < start:
            raise ParseError("enumerated days out of order", text=raw)
        return DateRange(start=start, end=end)
    return DateRange(start=start, end=start)


def _resolve_range(
    s: _Partial, e: _Partial, raw: str, ref: date, infer_year: bool
) -> DateRange:
    if s.day is None or e.day is None:
        raise ParseError("range endpoint without a day", text=raw)
    if s.month is None and e.month is None:
        raise ParseError("range without a month", text=raw)

    s_day, e_day = s.day, e.days[-1]
    s_month, e_month = s.month, e.month
    s_month_borrowed = e_month_borrowed = False
    if e_month is None:
        e_month, e_month_borrowed = s_month, True
    elif s_month is None:
        s_month, s_month_borrowed = e_month, True

    s_year, e_year = s.year, e.year
    s_year_explicit, e_year_explicit = s_year is not None, e_year is not None
    if s_year is None and e_year is None:
        if not infer_year:
            raise ParseError("missing year", text=raw)
        s_year = e_year = _infer_year(s_month, s_day, ref)
    elif s_year is None:
        s_year = e_year
    elif e_year is None:
        e_year = s_year

    if e_month_borrowed and e_day < s_day:
        e_month += 1
        if e_month == 13:
            e_month = 1
            if not e_year_explicit:
                e_year += 1
    elif s_month_borrowed and s_day > e_day:
        s_month -= 1
        if s_month == 0:
            s_month = 12
            if not s_year_explicit:
                s_year -= 1
    elif s_month > e_month and s_year == e_year:
        # December -> January
        if not e_year_explicit:
            e_year = s_year + 1
        elif not s_year_explicit:
            s_year = e_year - 1

    start = _make_date(s_year, s_month, s_day, raw)
    end = _make_date(e_year, e_month, e_day, raw)
    if end < start:
        raise ParseError("range ends before it starts", text=raw)
    return DateRange(start=start, end=end)


def try_normalize(
    text: Optional[str],
    locale: Union[Locale, str],
    **kwargs,
) -> Tuple[Optional[DateRange], Optional[ParseError]]:
    """normalize() that returns (range, None) or (None, error) instead of raising."""
    try:
        return normalize(text, locale, **kwargs), None
    except ParseError as e:
        return None, e
