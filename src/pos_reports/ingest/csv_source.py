"""CSV source adapter: exports on disk -> raw records + headers.

Reads one or many POS CSV exports with pandas, keeping every value as text
so the normalizer sees exactly what the file contains. The result mirrors
what the upload screen works with: ``CsvSource(rows, headers)``.

Clean-up:
- blank lines are skipped in every read
- preview reads drop rows whose name column (first header mentioning
  name/item/product/title, else the first header) is blank
- full reads drop the final row of the combined set by default, since POS
  exports usually end with a totals line
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Sequence, Union

import pandas as pd

from pos_reports.ingest.cleaning import normalize_header
from pos_reports.ingest.normalize import ProgressCallback

logger = logging.getLogger(__name__)

CsvInput = Union[str, Path, IO[str]]

NAME_COLUMN_HINTS = ("name", "item", "product", "title")


@dataclass
class CsvSource:
    """Parsed CSV rows (header -> text) and the union of headers in file order."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    headers: list[str] = field(default_factory=list)


def find_name_column(headers: Sequence[str]) -> str:
    """Header used to decide whether a row carries data."""
    for h in headers:
        norm = normalize_header(str(h))
        if any(hint in norm for hint in NAME_COLUMN_HINTS):
            return h
    return headers[0] if headers else ""


def _read_one(src: CsvInput, preview: int | None) -> CsvSource:
    df = pd.read_csv(
        src,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        nrows=preview or None,
        encoding="utf-8",
    )
    headers = [str(c) for c in df.columns]
    if preview:
        name_col = find_name_column(headers)
        before = len(df)
        if name_col:
            df = df[df[name_col].astype(str).str.strip() != ""]
        if len(df) < before:
            logger.debug("Dropped %d row(s) with empty %r column", before - len(df), name_col)
    return CsvSource(rows=df.to_dict("records"), headers=headers)


def read_csv_source(
    sources: CsvInput | Sequence[CsvInput],
    preview: int | None = None,
    drop_trailing_row: bool = True,
    on_progress: ProgressCallback | None = None,
) -> CsvSource:
    """Read one or more CSV exports.

    Args:
        sources: Path, open text handle, or a list of them.
        preview: Read at most this many data rows per file (column detection).
        drop_trailing_row: On full reads, drop the last row of the combined
            set (the totals line most POS exports append).
        on_progress: Called as ``on_progress(percent, rows_read)`` after each file.

    Returns:
        CsvSource with rows from all files and the union of their headers.

    Raises:
        FileNotFoundError: If a path does not exist.
        pandas.errors.ParserError: If a file is not parseable CSV.

    """
    if isinstance(sources, (str, Path)) or hasattr(sources, "read"):
        sources = [sources]  # type: ignore[list-item]
    sources = list(sources)  # type: ignore[arg-type]

    result = CsvSource()
    seen: dict[str, None] = {}
    for i, src in enumerate(sources, start=1):
        part = _read_one(src, preview)
        result.rows.extend(part.rows)
        for h in part.headers:
            seen.setdefault(h, None)
        if on_progress is not None:
            on_progress(round(i / len(sources) * 100), len(result.rows))
    result.headers = list(seen)

    if not preview and drop_trailing_row and result.rows:
        result.rows = result.rows[:-1]

    logger.info("Read %d row(s) with %d header(s)", len(result.rows), len(result.headers))
    return result
