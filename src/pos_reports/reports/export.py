"""Export surface: summaries as flat tables with fixed column sets.

Column order and naming are part of the contract; downstream CSV and
spreadsheet exports rely on them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import IO, Union

import pandas as pd

from pos_reports.ingest.cleaning import neutralize
from pos_reports.reports.aggregate import aggregate_by_category_over_time, aggregate_by_granularity
from pos_reports.reports.report import Report

logger = logging.getLogger(__name__)

_MONEY = ["quantity", "revenue", "cost", "profit", "margin"]

EXPORT_COLUMNS: dict[str, list[str]] = {
    "item": ["item", *_MONEY],
    "date": ["date", *_MONEY],
    "client": ["client", *_MONEY],
    "staff": ["staff", *_MONEY],
    "category": ["category", *_MONEY],
    "order": ["order", "date", "client", "staff", *_MONEY],
}


def to_export_frame(summary: pd.DataFrame, kind: str) -> pd.DataFrame:
    """Select and order a summary's columns for export.

    A generic ``label`` column is renamed to ``kind`` first.

    Args:
        summary: Output of an aggregation (or a Report breakdown).
        kind: One of ``EXPORT_COLUMNS``.

    Returns:
        New DataFrame with exactly ``EXPORT_COLUMNS[kind]``.

    Raises:
        ValueError: On an unknown kind or a summary missing required columns.

    """
    if kind not in EXPORT_COLUMNS:
        raise ValueError(f"Invalid export kind '{kind}'. Must be one of {tuple(EXPORT_COLUMNS)}.")
    columns = EXPORT_COLUMNS[kind]
    frame = summary
    if "label" in frame.columns and kind not in frame.columns:
        frame = frame.rename(columns={"label": kind})
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise ValueError(f"Summary is missing columns for '{kind}' export: {missing}")
    return frame[columns].reset_index(drop=True).copy()


def write_export_csv(frame: pd.DataFrame, path: Union[str, Path, IO[str]]) -> None:
    """Write an export table as UTF-8 CSV.

    Text cells starting with ``=``, ``+``, ``@`` or ``-`` are prefixed with an
    apostrophe; numbers are written with two decimals.
    """
    out = frame.copy()
    for c in out.columns:
        if not pd.api.types.is_numeric_dtype(out[c]):
            out[c] = out[c].map(neutralize)
    out.to_csv(path, index=False, encoding="utf-8", float_format="%.2f")
    logger.info("Exported %d row(s)", len(out))


def workbook_sheets(report: Report, transactions: pd.DataFrame) -> dict[str, pd.DataFrame]:
    """Sheets of the spreadsheet export, in workbook order.

    ``By Item`` and ``By Date`` come from the report; the week and month
    sheets and the month x category breakdown are aggregated from
    ``transactions``.
    """
    sheets = {
        "By Item": to_export_frame(report.by_item, "item"),
        "By Date": to_export_frame(report.by_date, "date"),
        "By Week": aggregate_by_granularity(transactions, "week").rename(columns={"label": "week"}),
        "By Month": aggregate_by_granularity(transactions, "month").rename(columns={"label": "month"}),
    }

    pivot = aggregate_by_category_over_time(transactions, "month", "revenue")
    if not pivot.empty and len(pivot.columns):
        wide = pivot.reset_index()
        wide.columns.name = None
        long = wide.melt(id_vars="period", var_name="category", value_name="revenue")
        sheets["By Month by Category"] = long.rename(columns={"period": "month"})
    return sheets
