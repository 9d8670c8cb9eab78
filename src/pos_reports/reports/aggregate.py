"""Aggregation engine: transaction table -> summary tables.

Every function here is pure: it reads a transaction table (see
``pos_reports.ingest.normalize.TRANSACTION_COLUMNS``) and returns a new
DataFrame. Sums are accumulated at full precision and rounded to two
decimals (half away from zero) only as the last step.

Summaries:
- ``aggregate_by_field``: one row per key (item, client, staff, category...)
  with a distinct-order count
- ``aggregate_by_order``: one row per order with date, client, staff and a
  distinct-item count
- ``aggregate_by_granularity``: day/week/month/quarter/year buckets
- ``aggregate_by_category_over_time``: category x period pivot
- ``aggregate_custom``: the custom chart/table builder on top of the above
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Union

import numpy as np
import pandas as pd

from pos_reports.config import SENTINEL_ORDER_IDS, UNCATEGORIZED
from pos_reports.ingest.cleaning import round2_series, to_text

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ["label", "quantity", "revenue", "cost", "profit", "margin", "orders"]
ORDER_COLUMNS = [
    "order",
    "date",
    "client",
    "staff",
    "quantity",
    "revenue",
    "cost",
    "profit",
    "margin",
    "items",
]
PERIOD_COLUMNS = ["label", "quantity", "revenue"]

GRANULARITIES = ("day", "week", "month", "quarter", "year")
METRICS = ("quantity", "revenue", "cost", "profit")

# group_by value -> transaction column for the custom builder
CUSTOM_DIMENSIONS = {
    "item": "item",
    "client": "client",
    "staff": "staff",
    "category": "category",
    "order": "order",
}

KeyFunc = Union[str, Callable[[pd.Series], Any]]

_MONEY_COLUMNS = ["quantity", "revenue", "cost", "profit", "margin"]


def margin_pct(profit: pd.Series, revenue: pd.Series) -> pd.Series:
    """``profit / revenue * 100``, or exactly 0 where rounded revenue <= 0."""
    positive = revenue.where(round2_series(revenue) > 0)
    return (profit / positive * 100).fillna(0.0)


def _round_money(df: pd.DataFrame) -> pd.DataFrame:
    for c in _MONEY_COLUMNS:
        if c in df.columns:
            df[c] = round2_series(df[c])
    return df


def _label(value: Any) -> str:
    return to_text(value) or "-"


def real_orders(orders: pd.Series) -> pd.Series:
    """Order ids with sentinel values (``""``, ``"undefined"``, ``"-"``) masked out."""
    text = orders.map(to_text)
    return text.where(~text.isin(SENTINEL_ORDER_IDS))


def _check_metric(metric: str) -> None:
    if metric not in METRICS:
        raise ValueError(f"Invalid metric '{metric}'. Must be one of {METRICS}.")


def _check_granularity(granularity: str) -> None:
    if granularity not in GRANULARITIES:
        raise ValueError(f"Invalid granularity '{granularity}'. Must be one of {GRANULARITIES}.")


def aggregate_by_field(transactions: pd.DataFrame, key: KeyFunc) -> pd.DataFrame:
    """Group transactions by an arbitrary key.

    Args:
        transactions: Transaction table.
        key: Column name, or a callable receiving one transaction row.
            Keys are trimmed to text; empty keys become ``"-"``.

    Returns:
        DataFrame with ``SUMMARY_COLUMNS`` sorted by revenue descending.
        ``orders`` counts distinct real order ids in the group; rows with
        sentinel order ids still count toward the sums.

    """
    if transactions.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    keys = transactions.apply(key, axis=1) if callable(key) else transactions[key]
    df = transactions.assign(
        label=keys.map(_label).to_numpy(),
        _order=real_orders(transactions["order"]).to_numpy(),
    )
    grouped = df.groupby("label", sort=False).agg(
        quantity=("quantity", "sum"),
        revenue=("revenue", "sum"),
        cost=("cost", "sum"),
        orders=("_order", "nunique"),
    )
    grouped["profit"] = grouped["revenue"] - grouped["cost"]
    grouped["margin"] = margin_pct(grouped["profit"], grouped["revenue"])

    result = grouped.reset_index().sort_values("revenue", ascending=False, kind="stable")
    result["orders"] = result["orders"].astype(int)
    return _round_money(result[SUMMARY_COLUMNS].reset_index(drop=True))


def aggregate_by_item(transactions: pd.DataFrame) -> pd.DataFrame:
    return aggregate_by_field(transactions, "item")


def aggregate_by_client(transactions: pd.DataFrame) -> pd.DataFrame:
    return aggregate_by_field(transactions, "client")


def aggregate_by_staff(transactions: pd.DataFrame) -> pd.DataFrame:
    return aggregate_by_field(transactions, "staff")


def aggregate_by_category(transactions: pd.DataFrame) -> pd.DataFrame:
    return aggregate_by_field(transactions, "category")


def _earliest_date(s: pd.Series) -> str:
    dated = s[s.fillna("") != ""]
    return str(dated.min()) if len(dated) else ""


def _first_nonempty(s: pd.Series) -> str:
    for v in s:
        text = to_text(v)
        if text:
            return text
    return ""


def _distinct_items(s: pd.Series) -> int:
    return int(s[s.fillna("") != ""].nunique())


def aggregate_by_order(transactions: pd.DataFrame) -> pd.DataFrame:
    """One row per order id (``"-"`` when absent).

    Tracks the earliest ``date_iso`` seen, the first non-empty client and
    staff, and the number of distinct item names in the order.

    Returns:
        DataFrame with ``ORDER_COLUMNS`` sorted by revenue descending.

    """
    if transactions.empty:
        return pd.DataFrame(columns=ORDER_COLUMNS)

    df = transactions.assign(_key=transactions["order"].map(_label).to_numpy())
    grouped = df.groupby("_key", sort=False).agg(
        date=("date_iso", _earliest_date),
        client=("client", _first_nonempty),
        staff=("staff", _first_nonempty),
        quantity=("quantity", "sum"),
        revenue=("revenue", "sum"),
        cost=("cost", "sum"),
        items=("item", _distinct_items),
    )
    grouped["profit"] = grouped["revenue"] - grouped["cost"]
    grouped["margin"] = margin_pct(grouped["profit"], grouped["revenue"])

    result = grouped.reset_index().rename(columns={"_key": "order"})
    result = result.sort_values("revenue", ascending=False, kind="stable")
    result["items"] = result["items"].astype(int)
    return _round_money(result[ORDER_COLUMNS].reset_index(drop=True))


def period_labels(date_iso: pd.Series, granularity: str) -> pd.Series:
    """Map ``YYYY-MM-DD`` strings to period keys that sort chronologically.

    - day: ``YYYY-MM-DD``
    - week: ISO week ``YYYY-Www`` (Monday start, ISO week-numbering year)
    - month: ``YYYY-MM``
    - quarter: ``YYYY-Qn``
    - year: ``YYYY``

    Unparseable or empty dates map to NaN.

    Examples:
        >>> period_labels(pd.Series(["2021-01-03", "2024-12-30"]), "week").tolist()
        ['2020-W53', '2025-W01']

    """
    _check_granularity(granularity)
    d = pd.to_datetime(date_iso.fillna(""), format="%Y-%m-%d", errors="coerce")
    valid = d.notna()
    labels = pd.Series(np.nan, index=date_iso.index, dtype=object)
    if not valid.any():
        return labels

    dv = d[valid]
    if granularity == "day":
        out = dv.dt.strftime("%Y-%m-%d")
    elif granularity == "week":
        iso = dv.dt.isocalendar()
        out = iso["year"].astype(int).astype(str) + "-W" + iso["week"].astype(int).astype(str).str.zfill(2)
    elif granularity == "month":
        out = dv.dt.strftime("%Y-%m")
    elif granularity == "quarter":
        out = dv.dt.year.astype(str) + "-Q" + dv.dt.quarter.astype(str)
    else:  # year
        out = dv.dt.year.astype(str)
    labels[valid] = out
    return labels


def aggregate_by_granularity(transactions: pd.DataFrame, granularity: str) -> pd.DataFrame:
    """Sum quantity and revenue per calendar period.

    Transactions without a parseable ``date_iso`` are excluded.

    Returns:
        DataFrame with ``PERIOD_COLUMNS`` in chronological order.

    Raises:
        ValueError: If ``granularity`` is not one of ``GRANULARITIES``.

    """
    _check_granularity(granularity)
    if transactions.empty:
        return pd.DataFrame(columns=PERIOD_COLUMNS)

    df = transactions.assign(label=period_labels(transactions["date_iso"], granularity))
    df = df[df["label"].notna()]
    if df.empty:
        return pd.DataFrame(columns=PERIOD_COLUMNS)

    result = (
        df.groupby("label", sort=True)
        .agg(quantity=("quantity", "sum"), revenue=("revenue", "sum"))
        .reset_index()
    )
    return _round_money(result[PERIOD_COLUMNS])


def aggregate_by_category_over_time(
    transactions: pd.DataFrame,
    granularity: str = "month",
    metric: str = "revenue",
    top_n: int = 0,
) -> pd.DataFrame:
    """Category x period pivot on a shared chronological axis.

    Args:
        transactions: Transaction table.
        granularity: Period width, one of ``GRANULARITIES``.
        metric: Summed value, one of ``METRICS``.
        top_n: When > 0, keep only the N categories with the largest total
            metric (the rest are dropped, not merged).

    Returns:
        DataFrame indexed by period label (ascending) with one column per
        category, ordered by total metric descending. Missing cells are 0.

    """
    _check_granularity(granularity)
    _check_metric(metric)
    empty = pd.DataFrame(index=pd.Index([], name="period", dtype=object))
    if transactions.empty:
        return empty

    df = pd.DataFrame(
        {
            "period": period_labels(transactions["date_iso"], granularity),
            "category": transactions["category"].map(to_text).replace("", UNCATEGORIZED),
            "value": transactions[metric].astype(float),
        }
    )
    df = df[df["period"].notna()]
    if df.empty:
        return empty

    pivot = df.pivot_table(
        index="period", columns="category", values="value", aggfunc="sum", fill_value=0.0
    ).sort_index()
    totals = pivot.sum(axis=0).sort_values(ascending=False, kind="stable")
    if top_n and top_n > 0:
        totals = totals.head(top_n)
    pivot = pivot[list(totals.index)].astype(float)
    pivot.columns.name = "category"
    return pivot.apply(round2_series)


def aggregate_custom(
    transactions: pd.DataFrame,
    group_by: str = "item",
    granularity: str = "month",
    metric: str = "revenue",
    top_n: int = 0,
) -> pd.DataFrame:
    """Summary behind the custom chart and table view.

    ``group_by="date"`` buckets by ``granularity`` (chronological, no
    truncation). Any other dimension groups by that field, sorts by
    ``metric`` descending and keeps the first ``top_n`` rows when
    ``top_n > 0``.

    Raises:
        ValueError: On an unknown dimension, granularity or metric.

    """
    _check_metric(metric)
    if group_by == "date":
        return aggregate_by_granularity(transactions, granularity)
    if group_by not in CUSTOM_DIMENSIONS:
        raise ValueError(
            f"Invalid group_by '{group_by}'. Must be 'date' or one of {tuple(CUSTOM_DIMENSIONS)}."
        )

    summary = aggregate_by_field(transactions, CUSTOM_DIMENSIONS[group_by])
    if summary.empty:
        return summary
    summary = summary.sort_values(metric, ascending=False, kind="stable").reset_index(drop=True)
    if top_n and top_n > 0:
        summary = summary.head(top_n)
    return summary
