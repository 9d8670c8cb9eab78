"""Display filters for the secondary views (orders, clients, staff, items).

Filters never touch the canonical Report, which is always built from the
full transaction set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

import pandas as pd

from pos_reports.ingest.cleaning import to_number, to_text

logger = logging.getLogger(__name__)

_TEXT_FILTERS = ("item", "client", "staff", "order", "category")
_NUMBER_FILTERS = ("rev_min", "rev_max", "qty_min", "qty_max")


@dataclass
class ReportFilters:
    """Active display filters; empty/None fields are inactive.

    Attributes:
        start: Inclusive ``YYYY-MM-DD`` lower bound on ``date_iso``.
        end: Inclusive ``YYYY-MM-DD`` upper bound on ``date_iso``.
        item: Case-insensitive substring of the item name (raw or canonical).
        client: Case-insensitive substring of the client.
        staff: Case-insensitive substring of the staff member.
        order: Case-insensitive substring of the order id.
        category: Case-insensitive substring of the category.
        rev_min: Minimum line revenue.
        rev_max: Maximum line revenue.
        qty_min: Minimum line quantity.
        qty_max: Maximum line quantity.
        no_zero: Drop lines with zero quantity and zero revenue.
    """

    start: str = ""
    end: str = ""
    item: str = ""
    client: str = ""
    staff: str = ""
    order: str = ""
    category: str = ""
    rev_min: Optional[float] = None
    rev_max: Optional[float] = None
    qty_min: Optional[float] = None
    qty_max: Optional[float] = None
    no_zero: bool = False

    def is_active(self) -> bool:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _NUMBER_FILTERS:
                if value is not None:
                    return True
            elif value:
                return True
        return False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ReportFilters:
        """Build filters from form-style values; blank numbers mean "no bound"."""
        data = data or {}
        values: dict[str, Any] = {}
        for name in ("start", "end", *_TEXT_FILTERS):
            values[name] = to_text(data.get(name))
        for name in _NUMBER_FILTERS:
            raw = data.get(name)
            values[name] = None if to_text(raw) == "" else to_number(raw)
        values["no_zero"] = bool(data.get("no_zero", False))
        return cls(**values)


def _contains(series: pd.Series, needle: str) -> pd.Series:
    return series.fillna("").astype(str).str.lower().str.contains(needle.lower(), regex=False)


def apply_filters(transactions: pd.DataFrame, filters: ReportFilters | None) -> pd.DataFrame:
    """Return the transactions matching every active filter.

    A date bound excludes rows without a ``date_iso``.
    """
    if filters is None or transactions.empty or not filters.is_active():
        return transactions

    mask = pd.Series(True, index=transactions.index)
    dates = transactions["date_iso"].fillna("")
    if filters.start:
        mask &= (dates != "") & (dates >= filters.start)
    if filters.end:
        mask &= (dates != "") & (dates <= filters.end)

    if filters.item:
        mask &= _contains(transactions["item"], filters.item) | _contains(
            transactions["item_raw"], filters.item
        )
    for name in ("client", "staff", "order", "category"):
        needle = getattr(filters, name)
        if needle:
            mask &= _contains(transactions[name], needle)

    if filters.rev_min is not None:
        mask &= transactions["revenue"] >= filters.rev_min
    if filters.rev_max is not None:
        mask &= transactions["revenue"] <= filters.rev_max
    if filters.qty_min is not None:
        mask &= transactions["quantity"] >= filters.qty_min
    if filters.qty_max is not None:
        mask &= transactions["quantity"] <= filters.qty_max
    if filters.no_zero:
        mask &= ~((transactions["quantity"] == 0) & (transactions["revenue"] == 0))

    result = transactions[mask]
    logger.debug("Filters kept %d of %d transaction(s)", len(result), len(transactions))
    return result
