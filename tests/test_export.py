"""Tests for the export surface."""

from pathlib import Path

import pandas as pd
import pytest

from pos_reports.ingest.mapping import FieldMapping
from pos_reports.ingest.normalize import normalize
from pos_reports.reports.aggregate import aggregate_by_client, aggregate_by_order
from pos_reports.reports.export import EXPORT_COLUMNS, to_export_frame, workbook_sheets, write_export_csv
from pos_reports.reports.report import compute_report


@pytest.fixture
def transactions() -> pd.DataFrame:
    mapping = FieldMapping(
        date="Date", item="Item", qty="Qty", price="Price", category="Cat", order="Order", client="Client"
    )
    rows = [
        {"Date": "2024-01-05", "Item": "Latte", "Qty": "2", "Price": "4", "Cat": "Coffee", "Order": "1", "Client": "=HYPERLINK()"},
        {"Date": "2024-01-20", "Item": "Muffin", "Qty": "1", "Price": "3", "Cat": "Bakery", "Order": "2", "Client": "Beta"},
        {"Date": "2024-02-10", "Item": "Latte", "Qty": "1", "Price": "4", "Cat": "Coffee", "Order": "3", "Client": "Beta"},
    ]
    return normalize(rows, mapping)


def test_export_columns_contract() -> None:
    """Column order is fixed per export kind."""
    assert EXPORT_COLUMNS["item"] == ["item", "quantity", "revenue", "cost", "profit", "margin"]
    assert EXPORT_COLUMNS["order"] == [
        "order", "date", "client", "staff", "quantity", "revenue", "cost", "profit", "margin"
    ]


def test_to_export_frame_renames_label(transactions: pd.DataFrame) -> None:
    frame = to_export_frame(aggregate_by_client(transactions), "client")
    assert list(frame.columns) == EXPORT_COLUMNS["client"]
    assert "Beta" in frame["client"].tolist()


def test_to_export_frame_order(transactions: pd.DataFrame) -> None:
    frame = to_export_frame(aggregate_by_order(transactions), "order")
    assert list(frame.columns) == EXPORT_COLUMNS["order"]
    assert "items" not in frame.columns


def test_to_export_frame_errors(transactions: pd.DataFrame) -> None:
    with pytest.raises(ValueError):
        to_export_frame(aggregate_by_client(transactions), "weather")
    with pytest.raises(ValueError):
        to_export_frame(pd.DataFrame({"label": ["x"]}), "item")


def test_write_export_csv_neutralizes_formulas(tmp_path: Path, transactions: pd.DataFrame) -> None:
    """Formula-like text is prefixed; numbers get two decimals."""
    path = tmp_path / "clients.csv"
    write_export_csv(to_export_frame(aggregate_by_client(transactions), "client"), path)
    text = path.read_text(encoding="utf-8")
    assert text.splitlines()[0] == "client,quantity,revenue,cost,profit,margin"
    assert "'=HYPERLINK()" in text
    assert "Beta,2.00,7.00,0.00,7.00,100.00" in text


def test_workbook_sheets(transactions: pd.DataFrame) -> None:
    sheets = workbook_sheets(compute_report(transactions), transactions)
    assert list(sheets) == ["By Item", "By Date", "By Week", "By Month", "By Month by Category"]
    assert sheets["By Month"]["month"].tolist() == ["2024-01", "2024-02"]
    by_cat = sheets["By Month by Category"]
    assert list(by_cat.columns) == ["month", "category", "revenue"]
    jan_coffee = by_cat[(by_cat["month"] == "2024-01") & (by_cat["category"] == "Coffee")]
    assert jan_coffee["revenue"].tolist() == [8.0]
