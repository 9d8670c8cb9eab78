"""Time-series helpers over aggregated period summaries.

These operate on a pandas Series of values indexed by period label (as
produced by ``as_series(aggregate_by_granularity(...))``) and return a Series
with the same index.
"""

from __future__ import annotations

import logging

import pandas as pd

from pos_reports.ingest.cleaning import round2_series

logger = logging.getLogger(__name__)


def as_series(summary: pd.DataFrame, value: str = "revenue", label: str = "label") -> pd.Series:
    """Turn a summary table into a ``label -> value`` Series."""
    if summary.empty:
        return pd.Series(dtype=float, name=value)
    return pd.Series(summary[value].astype(float).to_numpy(), index=summary[label].to_numpy(), name=value)


def rolling_average(series: pd.Series, window: int) -> pd.Series:
    """Trailing mean over the last ``window`` points.

    Fewer than ``window`` points at the start average what is available.

    Examples:
        >>> rolling_average(pd.Series([1, 2, 3, 4, 5]), 3).tolist()
        [1.0, 1.5, 2.0, 3.0, 4.0]

    Raises:
        ValueError: If ``window`` is smaller than 1.

    """
    if window < 1:
        raise ValueError(f"window must be >= 1, got {window}")
    values = series.astype(float)
    return round2_series(values.rolling(window, min_periods=1).mean())


def _pct_change(current: pd.Series, prior: pd.Series) -> pd.Series:
    # Undefined changes (no prior point, or a zero prior) read as 0.0
    base = prior.where(prior != 0)
    return round2_series(((current - base) / base * 100).fillna(0.0))


def month_over_month_change(monthly: pd.Series) -> pd.Series:
    """Percent change of each month against the previous point in the series.

    The first point, and any point whose predecessor is 0, gets 0.0.
    """
    values = monthly.astype(float)
    return _pct_change(values, values.shift(1))


def _prior_year_label(label: object) -> str | None:
    text = str(label)
    year, sep, rest = text.partition("-")
    if not sep or not year.isdigit():
        return None
    return f"{int(year) - 1:04d}-{rest}"


def year_over_year_change(monthly: pd.Series) -> pd.Series:
    """Percent change of each ``YYYY-MM`` point against the same month a year earlier.

    Points without a matching prior-year month (or whose prior value is 0)
    get 0.0.

    Examples:
        >>> s = pd.Series([100.0, 150.0], index=["2023-03", "2024-03"])
        >>> year_over_year_change(s).tolist()
        [0.0, 50.0]

    """
    values = monthly.astype(float)
    lookup = values.to_dict()
    prior = pd.Series(
        [lookup.get(_prior_year_label(label), float("nan")) for label in values.index],
        index=values.index,
        dtype=float,
    )
    return _pct_change(values, prior)
