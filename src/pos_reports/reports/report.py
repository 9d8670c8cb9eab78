"""Report assembler: transaction table -> Report (totals + breakdowns).

The Report is always computed from the whole transaction set; display filters
(``pos_reports.reports.filters``) only feed secondary views. Rows with no
item, no quantity and no revenue are dropped here and nowhere else.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Optional

import pandas as pd

from pos_reports.ingest.cleaning import round2, round2_series, to_number
from pos_reports.ingest.mapping import FieldMapping
from pos_reports.ingest.normalize import is_disqualified
from pos_reports.reports.aggregate import aggregate_by_field, margin_pct, real_orders

logger = logging.getLogger(__name__)

ITEM_COLUMNS = ["item", "quantity", "revenue", "cost", "profit", "margin"]
DATE_COLUMNS = ["date", "quantity", "revenue", "cost", "profit", "margin"]

_TOTALS_KEYS = {
    "total_quantity": "totalQuantity",
    "total_revenue": "totalRevenue",
    "total_cost": "totalCost",
    "total_profit": "totalProfit",
    "margin_pct": "marginPct",
    "distinct_items": "distinctItems",
    "total_orders": "totalOrders",
}


@dataclass
class ReportTotals:
    """Grand totals over the qualified transaction set."""

    total_quantity: float = 0.0
    total_revenue: float = 0.0
    total_cost: float = 0.0
    total_profit: float = 0.0
    margin_pct: float = 0.0
    distinct_items: int = 0
    total_orders: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {_TOTALS_KEYS[k]: v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ReportTotals:
        data = data or {}
        values: dict[str, Any] = {}
        for attr, key in _TOTALS_KEYS.items():
            raw = data.get(key, 0)
            number = to_number(raw)
            values[attr] = int(number) if attr in ("distinct_items", "total_orders") else number
        return cls(**values)


@dataclass(eq=False)
class Report:
    """Totals plus the per-item and per-day breakdowns.

    Attributes:
        totals: Grand totals.
        by_item: ``ITEM_COLUMNS``, revenue descending.
        by_date: ``DATE_COLUMNS``, chronological (``YYYY-MM-DD`` keys).
    """

    totals: ReportTotals = field(default_factory=ReportTotals)
    by_item: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=ITEM_COLUMNS))
    by_date: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=DATE_COLUMNS))

    def is_empty(self) -> bool:
        return self.by_item.empty and self.by_date.empty

    def to_dict(self) -> dict[str, Any]:
        """Document shape used for persistence: ``{totals, byItem, byDate}``."""
        return {
            "totals": self.totals.to_dict(),
            "byItem": self.by_item.to_dict("records"),
            "byDate": self.by_date.to_dict("records"),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Report:
        data = data or {}
        by_item = pd.DataFrame(list(data.get("byItem") or []), columns=ITEM_COLUMNS)
        by_date = pd.DataFrame(list(data.get("byDate") or []), columns=DATE_COLUMNS)
        return cls(totals=ReportTotals.from_dict(data.get("totals")), by_item=by_item, by_date=by_date)


def empty_report() -> Report:
    """Zeroed report used for empty input or an unusable mapping."""
    return Report()


def _local_day_keys(transactions: pd.DataFrame) -> pd.Series:
    # Day key comes from the parsed local date, not the stored ISO string
    if "date" in transactions.columns:
        dates = pd.to_datetime(transactions["date"], errors="coerce")
    else:
        dates = pd.to_datetime(transactions["date_iso"], format="%Y-%m-%d", errors="coerce")
    return dates.dt.strftime("%Y-%m-%d")


def _by_date(transactions: pd.DataFrame) -> pd.DataFrame:
    df = transactions.assign(_day=_local_day_keys(transactions))
    df = df[df["_day"].notna()]
    if df.empty:
        return pd.DataFrame(columns=DATE_COLUMNS)
    grouped = df.groupby("_day", sort=True).agg(
        quantity=("quantity", "sum"),
        revenue=("revenue", "sum"),
        cost=("cost", "sum"),
    )
    grouped["profit"] = grouped["revenue"] - grouped["cost"]
    grouped["margin"] = margin_pct(grouped["profit"], grouped["revenue"])
    result = grouped.reset_index().rename(columns={"_day": "date"})
    for c in DATE_COLUMNS[1:]:
        result[c] = round2_series(result[c])
    return result[DATE_COLUMNS]


def compute_report(
    transactions: Optional[pd.DataFrame],
    mapping: FieldMapping | Mapping[str, Any] | None = None,
) -> Report:
    """Assemble the Report from the full transaction set.

    Args:
        transactions: Normalized transaction table.
        mapping: The field mapping the table was built with. A mapping with
            no usable fields yields an empty report.

    Returns:
        Report with totals, ``by_item`` and ``by_date``.

    Examples:
        >>> report = compute_report(transactions)
        >>> report.totals.total_revenue
        30.0

    """
    if mapping is not None:
        if not isinstance(mapping, FieldMapping):
            mapping = FieldMapping.from_dict(mapping)
        if mapping.is_empty():
            logger.warning("Field mapping has no usable fields; returning empty report")
            return empty_report()
    if transactions is None or transactions.empty:
        return empty_report()

    qualified = transactions[~is_disqualified(transactions)]
    skipped = len(transactions) - len(qualified)
    if skipped:
        logger.debug("Skipped %d row(s) with no item, quantity or revenue", skipped)
    if qualified.empty:
        return empty_report()

    revenue = float(qualified["revenue"].sum())
    cost = float(qualified["cost"].sum())
    profit = revenue - cost
    items = qualified["item"].fillna("")
    totals = ReportTotals(
        total_quantity=round2(float(qualified["quantity"].sum())),
        total_revenue=round2(revenue),
        total_cost=round2(cost),
        total_profit=round2(profit),
        margin_pct=round2(profit / revenue * 100) if round2(revenue) > 0 else 0.0,
        distinct_items=int(items[items != ""].nunique()),
        total_orders=int(real_orders(qualified["order"]).nunique()),
    )

    by_item = aggregate_by_field(qualified, "item").rename(columns={"label": "item"})[ITEM_COLUMNS]
    report = Report(totals=totals, by_item=by_item, by_date=_by_date(qualified))
    logger.info(
        "Report: %d transaction(s), %d item(s), revenue %.2f",
        len(qualified),
        totals.distinct_items,
        totals.total_revenue,
    )
    return report
