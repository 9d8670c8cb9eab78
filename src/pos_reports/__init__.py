"""POS Reports - normalization and aggregation of point-of-sale CSV exports.

This package turns loosely structured POS exports into a canonical
transaction table and folds it into summaries and a report:

- **Ingest**: read CSV exports, detect the column mapping, normalize rows
- **Reports**: group-by summaries, time buckets, series transforms, report
- **Storage / Session**: persisted datasets, settings and saved reports

Module Structure:
    pos_reports.ingest: CSV adapter, column mapper, row normalizer
    pos_reports.reports: aggregation engine, report assembler, filters, export
    pos_reports.storage: JSON document store and persistence helpers
    pos_reports.session: ReportSession (explicit per-user state)
    pos_reports.config: constants and settings objects

Quick Start:
    >>> from pos_reports import compute_report, detect_columns, normalize, read_csv_source
    >>> from pos_reports.reports import aggregate_by_granularity
    >>>
    >>> source = read_csv_source("exports/sales_2024-01.csv")
    >>> mapping = detect_columns(source.headers)
    >>> transactions = normalize(source.rows, mapping)
    >>>
    >>> report = compute_report(transactions, mapping)
    >>> print(report.by_item.head())
    >>>
    >>> weekly = aggregate_by_granularity(transactions, "week")

Grain Reference:
    - transactions: one row per sale line (deduplicated by order + item)
    - by_item / by_client / by_staff / by_category: one row per key
    - by_order: one row per order id
    - by_granularity: one row per day / ISO week / month / quarter / year
"""

__version__ = "0.1.0"

from pos_reports.config import NormalizationSettings, UserSettings
from pos_reports.exceptions import ConfigError, MappingError, PosReportsError, StorageError
from pos_reports.ingest import FieldMapping, detect_columns, normalize, normalize_async, read_csv_source
from pos_reports.reports import Report, ReportFilters, compute_report
from pos_reports.session import ReportSession
from pos_reports.storage import JsonFileStore

__all__ = [
    "ConfigError",
    "FieldMapping",
    "JsonFileStore",
    "MappingError",
    "NormalizationSettings",
    "PosReportsError",
    "Report",
    "ReportFilters",
    "ReportSession",
    "StorageError",
    "UserSettings",
    "__version__",
    "compute_report",
    "detect_columns",
    "normalize",
    "normalize_async",
    "read_csv_source",
]
