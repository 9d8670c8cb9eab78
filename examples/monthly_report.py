"""Example: Monthly report from POS CSV exports

This example demonstrates the end-to-end flow: read one or more exports,
detect the column mapping, normalize rows into transactions, and print the
report plus a few secondary views.

Prerequisites:
- Put one or more POS CSV exports under exports/ (or modify paths below)
- Optionally create data/users/ for persisted settings and datasets
"""

import logging
from pathlib import Path

from pos_reports import JsonFileStore, ReportSession
from pos_reports.reports import (
    aggregate_by_category_over_time,
    aggregate_by_granularity,
    as_series,
    month_over_month_change,
    rolling_average,
)

logging.basicConfig(level=logging.INFO)

# Files to load - MODIFY AS NEEDED
exports = sorted(Path("exports").glob("*.csv"))

session = ReportSession(store=JsonFileStore(Path("data/users"), "local"))
session.load_settings()

print(f"Reading {len(exports)} export(s)...")
if not session.ingest_files(exports, on_progress=lambda pct, n: print(f"  {pct}% ({n} rows)")):
    raise SystemExit(session.status)

print(session.status)
print("Detected mapping:", session.mapping.mapped_fields())

report = session.report
print("\nTotals:")
for key, value in report.totals.to_dict().items():
    print(f"  {key}: {value}")

print("\nTop items:")
print(report.by_item.head(10).to_string(index=False))

# Monthly trend with a 3-month rolling average and month-over-month change
monthly = as_series(aggregate_by_granularity(session.transactions, "month"))
trend = monthly.to_frame("revenue")
trend["rolling_3"] = rolling_average(monthly, 3)
trend["mom_pct"] = month_over_month_change(monthly)
print("\nMonthly trend:")
print(trend.to_string())

print("\nRevenue by category per month (top 5):")
print(aggregate_by_category_over_time(session.transactions, "month", "revenue", top_n=5).to_string())

# Secondary views honour display filters; the report above does not
session.set_filters({"start": "2024-01-01", "no_zero": True})
views = session.secondary_views()
print(f"\nOrders since 2024-01-01: {len(views['order'])}")
print(views["client"].head(5).to_string(index=False))

session.persist()
