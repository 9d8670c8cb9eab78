"""Ingest layer: CSV exports -> canonical transaction table.

- ``csv_source``: read exports into raw records + headers
- ``mapping``: detect which header feeds which canonical field
- ``normalize``: turn raw records into deduplicated transactions

Example:
    >>> from pos_reports.ingest import detect_columns, normalize, read_csv_source
    >>>
    >>> source = read_csv_source("exports/sales_2024-01.csv")
    >>> mapping = detect_columns(source.headers)
    >>> transactions = normalize(source.rows, mapping)
"""

from pos_reports.ingest.csv_source import CsvSource, read_csv_source
from pos_reports.ingest.mapping import FieldMapping, apply_saved_mapping, detect_columns
from pos_reports.ingest.normalize import (
    TRANSACTION_COLUMNS,
    canonicalize_item,
    dedupe_transactions,
    empty_transactions,
    is_disqualified,
    normalize,
    normalize_async,
    recategorize,
    records_to_transactions,
    transactions_to_records,
)

__all__ = [
    "TRANSACTION_COLUMNS",
    "CsvSource",
    "FieldMapping",
    "apply_saved_mapping",
    "canonicalize_item",
    "dedupe_transactions",
    "detect_columns",
    "empty_transactions",
    "is_disqualified",
    "normalize",
    "normalize_async",
    "read_csv_source",
    "recategorize",
    "records_to_transactions",
    "transactions_to_records",
]
