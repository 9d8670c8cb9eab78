"""Tests for header -> field mapping detection."""

import pytest

from pos_reports.exceptions import MappingError
from pos_reports.ingest.mapping import FieldMapping, apply_saved_mapping, detect_columns


def test_detect_typical_export_headers() -> None:
    """A typical POS export maps every field it has."""
    headers = [
        "Order Number",
        "Date",
        "Product Name",
        "Qty",
        "Unit Price",
        "Unit Cost",
        "Category",
        "Customer",
        "Employee",
    ]
    m = detect_columns(headers)
    assert m.order == "Order Number"
    assert m.date == "Date"
    assert m.item == "Product Name"
    assert m.qty == "Qty"
    assert m.price == "Unit Price"
    assert m.cost == "Unit Cost"
    assert m.category == "Category"
    assert m.client == "Customer"
    assert m.staff == "Employee"
    assert m.revenue == ""


def test_detect_is_case_and_accent_insensitive() -> None:
    """Headers are normalized before matching."""
    m = detect_columns(["FECHA", "  ITEM ", "Catégory", "QUANTITY"])
    assert m.item == "  ITEM "
    assert m.qty == "QUANTITY"
    assert m.category == "Catégory"
    assert m.date == ""


def test_candidate_priority_beats_header_order() -> None:
    """Earlier candidates win even when a later candidate's header comes first."""
    m = detect_columns(["Name", "SKU", "Item"])
    assert m.item == "Item"


def test_first_header_wins_within_candidate() -> None:
    """For one candidate, the first header in file order wins."""
    m = detect_columns(["Gross Total", "Net Total"])
    assert m.revenue == "Gross Total"


def test_empty_headers() -> None:
    """No headers means an all-empty mapping."""
    assert detect_columns([]).is_empty()
    assert detect_columns(None).is_empty()


def test_detection_is_pure() -> None:
    """Same headers, same mapping."""
    headers = ["Date", "Item", "Qty", "Price"]
    assert detect_columns(headers) == detect_columns(list(headers))


def test_apply_saved_mapping_only_where_header_exists() -> None:
    """Saved slots apply only when their header is in the current file."""
    headers = ["Date", "Item", "Qty", "Price", "Amount Paid"]
    detected = detect_columns(headers)
    saved = {"revenue": "Amount Paid", "client": "Account", "qty": "Qty"}
    merged = apply_saved_mapping(detected, saved, headers)
    assert merged.revenue == "Amount Paid"
    assert merged.client == ""
    assert merged.item == "Item"
    # detected is not modified
    assert detected.revenue == ""


def test_apply_saved_mapping_overrides_detection() -> None:
    """A saved header replaces the heuristic choice."""
    headers = ["Item", "Description", "Qty"]
    merged = apply_saved_mapping(detect_columns(headers), FieldMapping(item="Description"), headers)
    assert merged.item == "Description"


class TestFieldMapping:
    """FieldMapping helpers."""

    def test_round_trip_dict(self) -> None:
        """to_dict/from_dict keep every slot."""
        m = FieldMapping(date="Date", item="Item", qty="Qty")
        assert FieldMapping.from_dict(m.to_dict()) == m
        assert m.mapped_fields() == {"date": "Date", "item": "Item", "qty": "Qty"}

    def test_unknown_slots(self) -> None:
        """Unknown slots are ignored, or rejected in strict mode."""
        assert FieldMapping.from_dict({"item": "Item", "bogus": "X"}) == FieldMapping(item="Item")
        with pytest.raises(MappingError):
            FieldMapping.from_dict({"bogus": "X"}, strict=True)

    def test_canonical_covers_every_slot(self) -> None:
        """The canonical mapping maps all slots."""
        assert set(FieldMapping.canonical().mapped_fields()) == set(FieldMapping.slots())
