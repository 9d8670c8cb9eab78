"""Shared utilities for cleaning POS CSV values.

This module provides the value-level helpers used by the column mapper, the
row normalizer and the exporters for normalizing text, parsing numbers and
dates, rounding money, and preventing formula injection.

Key utilities:
- Text normalization: strip invisible characters, remove accents
- Number parsing: currency-formatted strings, never raising
- Date parsing: textual ``Mon DD YYYY`` prefixes, ISO dates, explicit formats
- Hour parsing: ``HH:MM`` components with a fixed offset
- Rounding: two decimals, half away from zero
- Security: neutralize formula injection attempts

Examples:
    >>> from pos_reports.ingest.cleaning import to_number, parse_date, round2
    >>> to_number("$1,234.50")
    1234.5
    >>> parse_date("Jan 05 2024 10:31 AM").iso
    '2024-01-05'
    >>> round2(2.675)
    2.68
"""

from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

import numpy as np
import pandas as pd

# Unicode characters that should be stripped from text
NBSP = "\u00a0"  # Non-breaking space
NNBSP = "\u202f"  # Narrow non-breaking space
ZW = "".join(chr(c) for c in (0x200B, 0x200C, 0x200D, 0xFEFF))  # Zero-width characters

# Prefixes that could trigger formula injection in spreadsheets
DANGEROUS_PREFIXES = ("=", "+", "@", "-")

MONTHS = {
    "Jan": 1,
    "Feb": 2,
    "Mar": 3,
    "Apr": 4,
    "May": 5,
    "Jun": 6,
    "Jul": 7,
    "Aug": 8,
    "Sep": 9,
    "Oct": 10,
    "Nov": 11,
    "Dec": 12,
}

# Explicit day formats tried before the generic parser (US before EU)
DATE_FORMATS = ("%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y", "%d.%m.%Y")

# Calendar years representable as datetime64[ns]
MIN_YEAR = 1678
MAX_YEAR = 2261

_MON_DD_YYYY_RE = re.compile(r"^([A-Za-z]{3})\s+(\d{1,2})\s+(\d{4})")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_TZ_SUFFIX_RE = re.compile(r"(?:Z|[+-]\d{2}:?\d{2})$")
_TIME_RE = re.compile(r"(?<!\d)(\d{1,2}):(\d{2})(?::\d{2}(?:\.\d+)?)?\s*([AaPp][Mm])?")
_NUMBER_NOISE_RE = re.compile(r"[,\s]")

_CENT = Decimal("0.01")


def _is_missing(x: Any) -> bool:
    if x is None or x is pd.NaT or x is pd.NA:
        return True
    return isinstance(x, float) and math.isnan(x)


def strip_invisibles(x: Any) -> Optional[str]:
    """Remove invisible and problematic whitespace characters from text.

    Strips carriage returns, tabs (converted to spaces), non-breaking spaces
    and zero-width characters, then collapses runs of whitespace.

    Args:
        x: Value to clean (string, number, or None).

    Returns:
        Cleaned string or None if input is None/NaN.

    Examples:
        >>> strip_invisibles("  Hello World  ")
        'Hello World'
        >>> strip_invisibles(None)

    """
    if _is_missing(x):
        return None
    s = str(x)
    s = s.replace("\r", "").replace("\t", " ").replace(NBSP, " ").replace(NNBSP, " ")
    s = re.sub(r"[%s]" % re.escape(ZW), "", s)  # zero-width
    s = re.sub(r"\s+", " ", s).strip()
    return s


def to_text(x: Any) -> str:
    """Convert a raw cell to trimmed text; missing values become ``""``.

    Integral floats lose their ``.0`` so numeric order ids stay stable.

    Examples:
        >>> to_text(1001.0)
        '1001'
        >>> to_text(float("nan"))
        ''

    """
    if _is_missing(x):
        return ""
    if isinstance(x, float) and x.is_integer():
        x = int(x)
    return strip_invisibles(x) or ""


def neutralize(text: Any) -> Any:
    """Prevent formula injection by prefixing dangerous characters.

    Spreadsheet applications interpret text starting with =, +, @, or -
    as formulas. This function adds a leading apostrophe to neutralize
    such values. Numbers are returned unchanged.

    Examples:
        >>> neutralize("=SUM(A1:A10)")
        "'=SUM(A1:A10)"
        >>> neutralize(-5.0)
        -5.0

    """
    if _is_missing(text) or not isinstance(text, str):
        return text
    return "'" + text if text.startswith(DANGEROUS_PREFIXES) else text


def to_number(x: Any) -> float:
    """Parse a possibly currency-formatted number; never raises.

    Currency symbols, thousands commas and whitespace are stripped before
    conversion. A value wrapped in parentheses is negative. Anything that is
    still not a finite number becomes 0.0.

    Args:
        x: Value to parse (string, number, or None).

    Returns:
        Parsed float, or 0.0.

    Examples:
        >>> to_number("$ 1,234.56")
        1234.56
        >>> to_number("(12.50)")
        -12.5
        >>> to_number("n/a")
        0.0

    """
    if _is_missing(x) or isinstance(x, bool):
        return 0.0
    if isinstance(x, (int, float, np.integer, np.floating)):
        v = float(x)
        return v if math.isfinite(v) else 0.0

    s = strip_invisibles(x) or ""
    neg = False
    if s.startswith("(") and s.endswith(")"):
        neg, s = True, s[1:-1]
    s = "".join(ch for ch in s if unicodedata.category(ch) != "Sc")
    s = _NUMBER_NOISE_RE.sub("", s)
    if not s:
        return 0.0
    try:
        v = float(s)
    except ValueError:
        return 0.0
    if not math.isfinite(v):
        return 0.0
    return -v if neg else v


def round2(x: Any) -> float:
    """Round to two decimals, half away from zero.

    The value's shortest decimal representation is rounded, so ``2.675``
    becomes ``2.68`` rather than the binary-float ``2.67``. Non-finite
    input rounds to 0.0.

    Examples:
        >>> round2(1.005)
        1.01
        >>> round2(-1.005)
        -1.01

    """
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(v):
        return 0.0
    try:
        d = Decimal(repr(v)).quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return 0.0
    return float(d) + 0.0


def round2_series(s: pd.Series) -> pd.Series:
    """Apply :func:`round2` element-wise, returning a float Series."""
    return s.map(round2).astype(float)


@dataclass(frozen=True)
class ParsedDate:
    """Result of parsing one raw date cell.

    Attributes:
        value: Local calendar day as a naive Timestamp, or NaT.
        iso: ``YYYY-MM-DD`` or ``""`` when unparseable.
        pretty: Human display string (raw text when unparseable).
    """

    value: pd.Timestamp
    iso: str
    pretty: str


EMPTY_DATE = ParsedDate(pd.NaT, "", "")


def _to_local_day(ts: pd.Timestamp) -> pd.Timestamp:
    """Drop the time of day, converting aware timestamps to local time first."""
    if ts.tzinfo is not None:
        local = ts.to_pydatetime().astimezone().replace(tzinfo=None)
        ts = pd.Timestamp(local)
    return ts.normalize()


def _from_timestamp(ts: pd.Timestamp, pretty: str | None = None) -> ParsedDate:
    day = _to_local_day(ts)
    if not MIN_YEAR <= day.year <= MAX_YEAR:
        raise ValueError(f"Date out of range: {day}")
    return ParsedDate(day, day.strftime("%Y-%m-%d"), pretty or day.strftime("%b %d, %Y"))


def parse_date(val: Any) -> ParsedDate:
    """Parse a raw date cell into a local calendar day.

    Attempts, in order:
    1. Textual prefix ``Mon DD YYYY`` (month abbreviation Jan-Dec)
    2. ISO date prefix ``YYYY-MM-DD`` (taken literally unless the text
       carries a timezone offset, which is converted to local time)
    3. Explicit formats: MM/DD/YYYY, DD/MM/YYYY, YYYY/MM/DD, DD-MM-YYYY,
       DD.MM.YYYY
    4. Pandas auto-detection

    Args:
        val: Value to parse (string, Timestamp, datetime, or None).

    Returns:
        ParsedDate; ``iso`` is empty when nothing matched.

    Examples:
        >>> parse_date("Mar 07 2024 18:02").pretty
        'Mar 07 2024'
        >>> parse_date("2024-03-07").iso
        '2024-03-07'
        >>> parse_date("garbage").iso
        ''

    """
    if _is_missing(val):
        return EMPTY_DATE
    if isinstance(val, (pd.Timestamp, datetime, date, np.datetime64)):
        ts = pd.to_datetime(val, errors="coerce")
        if pd.isna(ts):
            return EMPTY_DATE
        try:
            return _from_timestamp(ts)
        except ValueError:
            return EMPTY_DATE

    s = strip_invisibles(val) or ""
    if not s:
        return EMPTY_DATE

    m = _MON_DD_YYYY_RE.match(s)
    if m:
        month = MONTHS.get(m.group(1).title())
        if month:
            try:
                day = pd.Timestamp(year=int(m.group(3)), month=month, day=int(m.group(2)))
                return _from_timestamp(day, m.group(0))
            except ValueError:
                pass

    m = _ISO_DATE_RE.match(s)
    if m and not _TZ_SUFFIX_RE.search(s):
        try:
            return _from_timestamp(
                pd.Timestamp(year=int(m.group(1)), month=int(m.group(2)), day=int(m.group(3)))
            )
        except ValueError:
            pass

    head = s.split(" ")[0]
    for fmt in DATE_FORMATS:
        try:
            return _from_timestamp(pd.Timestamp(datetime.strptime(head, fmt)))
        except ValueError:
            pass

    try:
        ts = pd.to_datetime(s, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        ts = pd.NaT
    if pd.isna(ts):
        return ParsedDate(pd.NaT, "", s)
    try:
        return _from_timestamp(ts)
    except ValueError:
        return ParsedDate(pd.NaT, "", s)


def parse_hour(val: Any, offset: int = 0) -> Optional[int]:
    """Extract the hour of day from a raw date/time cell.

    Looks for an ``HH:MM`` component (optionally ``AM``/``PM``), then applies
    the signed ``offset`` with wrap-around modulo 24.

    Args:
        val: Raw date/time value.
        offset: Hours to add to the parsed hour.

    Returns:
        Hour in 0-23, or None when no time component is present.

    Examples:
        >>> parse_hour("2024-01-01 02:15", offset=-5)
        21
        >>> parse_hour("Jan 01 2024 3:05 PM")
        15
        >>> parse_hour("2024-01-01")

    """
    s = to_text(val)
    if not s:
        return None
    m = _TIME_RE.search(s)
    if not m:
        return None
    hour = int(m.group(1))
    meridiem = (m.group(3) or "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23:
        return None
    return (hour + offset) % 24


def remove_accents(s: str) -> str:
    """Remove accents and diacritics from string.

    Examples:
        >>> remove_accents("Categoría")
        'Categoria'

    """
    return "".join(c for c in unicodedata.normalize("NFD", s) if unicodedata.category(c) != "Mn")


def normalize_header(s: str) -> str:
    """Normalize a header or name for comparison.

    Process:
    1. Strip invisible characters
    2. Remove accents
    3. Collapse whitespace
    4. Convert to lowercase

    Examples:
        >>> normalize_header("  Unit Price ")
        'unit price'

    """
    base = strip_invisibles(s or "")
    if base is None:
        return ""
    base = remove_accents(base)
    return re.sub(r"\s+", " ", base).strip().lower()
