"""Reporting layer: aggregation, time series, report assembly, filters, export.

Example:
    >>> from pos_reports.reports import aggregate_by_granularity, compute_report
    >>>
    >>> report = compute_report(transactions)
    >>> monthly = aggregate_by_granularity(transactions, "month")
"""

from pos_reports.reports.aggregate import (
    GRANULARITIES,
    METRICS,
    aggregate_by_category,
    aggregate_by_category_over_time,
    aggregate_by_client,
    aggregate_by_field,
    aggregate_by_granularity,
    aggregate_by_item,
    aggregate_by_order,
    aggregate_by_staff,
    aggregate_custom,
)
from pos_reports.reports.export import EXPORT_COLUMNS, to_export_frame, workbook_sheets, write_export_csv
from pos_reports.reports.filters import ReportFilters, apply_filters
from pos_reports.reports.report import Report, ReportTotals, compute_report, empty_report
from pos_reports.reports.series import (
    as_series,
    month_over_month_change,
    rolling_average,
    year_over_year_change,
)

__all__ = [
    "EXPORT_COLUMNS",
    "GRANULARITIES",
    "METRICS",
    "Report",
    "ReportFilters",
    "ReportTotals",
    "aggregate_by_category",
    "aggregate_by_category_over_time",
    "aggregate_by_client",
    "aggregate_by_field",
    "aggregate_by_granularity",
    "aggregate_by_item",
    "aggregate_by_order",
    "aggregate_by_staff",
    "aggregate_custom",
    "apply_filters",
    "as_series",
    "compute_report",
    "empty_report",
    "month_over_month_change",
    "rolling_average",
    "to_export_frame",
    "workbook_sheets",
    "write_export_csv",
    "year_over_year_change",
]
