"""Tests for the JSON document store and persistence helpers."""

from pathlib import Path

import numpy as np
import pytest

from pos_reports.config import ItemSynonym, UserSettings
from pos_reports.exceptions import StorageError
from pos_reports.ingest.mapping import FieldMapping
from pos_reports.ingest.normalize import normalize
from pos_reports.reports.report import compute_report
from pos_reports.storage import (
    CSV_DATA_KEY,
    SETTINGS_KEY,
    DocumentStore,
    JsonFileStore,
    delete_csv_data,
    delete_report,
    list_reports,
    load_csv_data,
    load_report,
    load_user_settings,
    save_csv_data,
    save_report,
    save_user_settings,
)


class FailingStore(JsonFileStore):
    """Store whose saves start failing after a number of successful writes."""

    def __init__(self, root: Path, allowed_saves: int) -> None:
        super().__init__(root)
        self.allowed_saves = allowed_saves

    def save(self, key: str, value: object) -> bool:
        if self.allowed_saves <= 0:
            return False
        self.allowed_saves -= 1
        return super().save(key, value)


@pytest.fixture
def store(tmp_path: Path) -> JsonFileStore:
    return JsonFileStore(tmp_path, "alice")


def test_store_basics(store: JsonFileStore, tmp_path: Path) -> None:
    """Documents round-trip; numpy scalars are encoded; namespaces are directories."""
    assert isinstance(store, DocumentStore)
    assert store.load("missing") is None
    assert store.save("doc", {"a": np.int64(3), "b": [np.float64(1.5)]})
    assert store.load("doc") == {"a": 3, "b": [1.5]}
    assert (tmp_path / "alice" / "doc.json").exists()
    assert store.keys() == ["doc"]
    assert store.delete("doc")
    assert store.load("doc") is None
    assert store.delete("doc")


def test_store_corrupt_document(store: JsonFileStore) -> None:
    """Unreadable JSON is logged and treated as missing."""
    store.directory.mkdir(parents=True)
    (store.directory / "broken.json").write_text("{not json", encoding="utf-8")
    assert store.load("broken") is None


def test_store_unserializable_value(store: JsonFileStore) -> None:
    assert store.save("bad", {"x": object()}) is False
    assert store.load("bad") is None


def test_store_rejects_bad_keys(store: JsonFileStore, tmp_path: Path) -> None:
    with pytest.raises(StorageError):
        store.load("../escape")
    with pytest.raises(StorageError):
        JsonFileStore(tmp_path, "a/b")


class TestCsvData:
    """Chunked dataset persistence."""

    def test_round_trip_in_chunks(self, store: JsonFileStore) -> None:
        rows = [{"Item": f"Item {i}", "Qty": str(i)} for i in range(7)]
        mapping = FieldMapping(item="Item", qty="Qty")
        assert save_csv_data(store, rows, ["Item", "Qty"], mapping, chunk_rows=3)

        manifest = store.load(CSV_DATA_KEY)
        assert manifest["chunks"] == 3
        assert manifest["rowCount"] == 7

        data = load_csv_data(store)
        assert data["rows"] == rows
        assert data["headers"] == ["Item", "Qty"]
        assert data["mapping"]["item"] == "Item"
        assert data["uploadedAt"]

    def test_replacing_removes_old_chunks(self, store: JsonFileStore) -> None:
        save_csv_data(store, [{"a": 1}] * 5, ["a"], {}, chunk_rows=2)
        save_csv_data(store, [{"a": 2}], ["a"], {}, chunk_rows=2)
        chunk_keys = [k for k in store.keys(CSV_DATA_KEY + ".")]
        assert len(chunk_keys) == 1
        assert load_csv_data(store)["rows"] == [{"a": 2}]

    def test_failed_save_keeps_previous_dataset(self, tmp_path: Path) -> None:
        """A save that fails midway leaves the earlier dataset loadable."""
        ok_store = JsonFileStore(tmp_path)
        assert save_csv_data(ok_store, [{"a": 1}, {"a": 2}], ["a"], {}, chunk_rows=1)

        failing = FailingStore(tmp_path, allowed_saves=1)
        assert not save_csv_data(failing, [{"b": 1}, {"b": 2}, {"b": 3}], ["b"], {}, chunk_rows=1)

        data = load_csv_data(ok_store)
        assert data["rows"] == [{"a": 1}, {"a": 2}]
        assert len(ok_store.keys(CSV_DATA_KEY + ".")) == 2

    def test_missing_chunk_is_none(self, store: JsonFileStore) -> None:
        save_csv_data(store, [{"a": 1}, {"a": 2}], ["a"], {}, chunk_rows=1)
        store.delete(store.keys(CSV_DATA_KEY + ".")[0])
        assert load_csv_data(store) is None

    def test_delete(self, store: JsonFileStore) -> None:
        save_csv_data(store, [{"a": 1}], ["a"], {})
        assert delete_csv_data(store)
        assert store.keys() == []
        assert load_csv_data(store) is None


class TestReports:
    """Saved report snapshots."""

    def test_save_list_load_delete(self, store: JsonFileStore) -> None:
        mapping = FieldMapping(item="Item", qty="Qty", price="Price")
        tx = normalize([{"Item": "Latte", "Qty": "2", "Price": "4"}], mapping)
        report = compute_report(tx, mapping)

        report_id = save_report(store, report, mapping, name="January")
        assert report_id

        listed = list_reports(store)
        assert [r["name"] for r in listed] == ["January"]
        assert listed[0]["totals"]["totalRevenue"] == 8

        loaded = load_report(store, report_id)
        assert loaded.totals == report.totals
        assert loaded.by_item["item"].tolist() == ["Latte"]

        assert delete_report(store, report_id)
        assert load_report(store, report_id) is None
        assert list_reports(store) == []

    def test_load_report_bad_id(self, store: JsonFileStore) -> None:
        assert load_report(store, "../nope") is None
        assert delete_report(store, "../nope") is False


class TestSettings:
    """User settings persistence."""

    def test_round_trip(self, store: JsonFileStore) -> None:
        settings = UserSettings(
            category_map={"Latte": "Coffee"},
            item_synonyms=[ItemSynonym("Tri Color", "Northern")],
        )
        assert save_user_settings(store, settings)
        assert load_user_settings(store) == settings

    def test_defaults_when_missing_or_malformed(self, store: JsonFileStore) -> None:
        assert load_user_settings(store) == UserSettings()
        store.save(SETTINGS_KEY, ["not", "a", "mapping"])
        assert load_user_settings(store) == UserSettings()
