"""Tests for ReportSession, the explicit per-user state object."""

import asyncio
from pathlib import Path

import pytest

from pos_reports.config import UserSettings
from pos_reports.ingest.mapping import FieldMapping
from pos_reports.reports.filters import ReportFilters
from pos_reports.session import ReportSession
from pos_reports.storage import JsonFileStore, load_user_settings

HEADERS = ["Order", "Date", "Item", "Qty", "Price", "Customer", "Staff"]
ROWS = [
    {"Order": "1", "Date": "2024-01-05", "Item": "Latte", "Qty": "2", "Price": "4", "Customer": "Acme", "Staff": "Ann"},
    {"Order": "2", "Date": "2024-01-06", "Item": "Muffin", "Qty": "1", "Price": "3", "Customer": "Beta", "Staff": "Bob"},
    {"Order": "3", "Date": "2024-02-01", "Item": "Latte", "Qty": "1", "Price": "4", "Customer": "Acme", "Staff": "Bob"},
]


@pytest.fixture
def session(tmp_path: Path) -> ReportSession:
    s = ReportSession(store=JsonFileStore(tmp_path, "alice"))
    s.load_settings()
    return s


def test_ingest_and_report(session: ReportSession) -> None:
    """Detected mapping feeds normalization; the report covers everything."""
    mapping = session.detect_mapping(HEADERS)
    assert mapping.client == "Customer"

    assert session.ingest(ROWS)
    assert len(session.transactions) == 3
    assert session.report.totals.total_revenue == 15
    assert session.status.startswith("Loaded 3")
    # last mapping is remembered
    assert load_user_settings(session.store).mapping["item"] == "Item"


def test_filters_only_affect_secondary_views(session: ReportSession) -> None:
    session.detect_mapping(HEADERS)
    session.ingest(ROWS)
    session.set_filters({"staff": "bob"})

    views = session.secondary_views()
    assert set(views) == {"order", "client", "staff", "category", "item"}
    assert views["order"]["order"].tolist() == ["3", "2"]
    assert session.report.totals.total_revenue == 15

    session.set_filters(None)
    assert session.filters == ReportFilters()


def test_ingest_async(session: ReportSession) -> None:
    session.detect_mapping(HEADERS)
    progress = []
    assert asyncio.run(session.ingest_async(ROWS, on_progress=lambda p, n: progress.append(p)))
    assert progress[-1] == 100
    assert session.report.totals.distinct_items == 2


def test_failed_ingest_keeps_previous_data(session: ReportSession) -> None:
    """A failing normalization leaves the old transactions in place."""
    session.detect_mapping(HEADERS)
    session.ingest(ROWS)
    before = session.transactions

    assert not session.ingest(object())  # type: ignore[arg-type]
    assert session.transactions is before
    assert session.status.startswith("Could not process data")


def test_empty_mapping_gives_empty_report(session: ReportSession) -> None:
    assert not session.ingest(ROWS, FieldMapping(), HEADERS)
    assert session.status == "No usable columns mapped."
    assert session.report.is_empty()


def test_empty_mapping_keeps_previous_data(session: ReportSession) -> None:
    """An unusable mapping leaves the table and the saved mapping untouched."""
    session.detect_mapping(HEADERS)
    session.ingest(ROWS)
    before = session.transactions
    saved = load_user_settings(session.store).mapping

    assert not session.ingest(ROWS, FieldMapping(), HEADERS)
    assert session.status == "No usable columns mapped."
    assert session.transactions is before
    assert session.mapping.item == "Item"
    assert session.settings.mapping["item"] == "Item"
    assert load_user_settings(session.store).mapping == saved
    assert session.report.totals.total_revenue == 15


def test_saved_mapping_preferred(tmp_path: Path) -> None:
    """A mapping saved in settings overrides the heuristic."""
    settings = UserSettings(mapping={"revenue": "Price"})
    session = ReportSession(settings=settings)
    assert session.detect_mapping(HEADERS).revenue == "Price"


def test_recategorize(session: ReportSession) -> None:
    session.detect_mapping(HEADERS)
    session.ingest(ROWS)
    assert session.report.by_item["item"].tolist() == ["Latte", "Muffin"]

    session.recategorize({"Latte": "Coffee"})
    assert set(session.transactions["category"]) == {"Coffee", "Uncategorized"}
    assert session.settings.category_map == {"Latte": "Coffee"}
    views = session.secondary_views()
    assert views["category"]["label"].tolist() == ["Coffee", "Uncategorized"]


def test_persist_and_restore(session: ReportSession, tmp_path: Path) -> None:
    session.detect_mapping(HEADERS)
    session.ingest(ROWS)
    assert session.persist()

    fresh = ReportSession(store=JsonFileStore(tmp_path, "alice"))
    assert fresh.restore()
    assert fresh.report.totals == session.report.totals
    assert fresh.mapping == session.mapping
    assert fresh.headers == HEADERS


def test_restore_without_data(session: ReportSession) -> None:
    assert not session.restore()
    assert session.status == "No saved data found."


def test_ingest_files(session: ReportSession, tmp_path: Path) -> None:
    """CSV files are read, mapped and ingested; the totals row is dropped."""
    path = tmp_path / "export.csv"
    path.write_text(
        "Date,Item,Qty,Price\n"
        "2024-01-05,Latte,2,4.00\n"
        "2024-01-06,Muffin,1,3.00\n"
        "Total,,3,\n",
        encoding="utf-8",
    )
    read_progress = []
    assert session.ingest_files(path, on_read_progress=lambda p, n: read_progress.append((p, n)))
    assert read_progress == [(100, 3)]
    assert session.report.totals.total_revenue == 11

    assert not session.ingest_files(tmp_path / "missing.csv")
    assert session.status.startswith("Could not read file")
    assert session.report.totals.total_revenue == 11


def test_save_report_snapshot(session: ReportSession) -> None:
    session.detect_mapping(HEADERS)
    session.ingest(ROWS)
    assert session.save_report("Q1")
