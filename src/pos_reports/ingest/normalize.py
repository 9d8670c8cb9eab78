"""Row normalizer: raw CSV records -> canonical transaction table.

This module turns loosely structured POS export rows into one DataFrame with
a fixed column set (``TRANSACTION_COLUMNS``), one row per sale line.

Per row, in order:
1. Parse the mapped date column into a local day, ISO key and display text
2. Parse the hour of day and shift it by the configured offset (mod 24)
3. Canonicalize the item name (ordered synonyms, then allow-list flag)
4. Parse quantity, price and unit cost (currency-formatted, never raising)
5. Revenue from a mapped revenue column, else quantity * price; cost is
   quantity * unit cost; profit = revenue - cost (all rounded to cents)
6. Resolve the category (category map, then CSV column, then fallback)
7. Build the dedup key; the last row with a given key wins

Rows are processed in chunks so progress can be reported, and
``normalize_async`` yields to the event loop between chunks.

Example:
    >>> from pos_reports.ingest import FieldMapping, normalize
    >>> rows = [{"Date": "Jan 01 2024", "Item": "Widget", "Qty": "2", "Price": "$10"}]
    >>> tx = normalize(rows, FieldMapping(date="Date", item="Item", qty="Qty", price="Price"))
    >>> tx.loc[0, ["item", "revenue", "category"]].tolist()
    ['Widget', 20.0, 'Uncategorized']
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, Union

import pandas as pd

from pos_reports.config import DEFAULT_CHUNK_SIZE, UNCATEGORIZED, ItemSynonym, NormalizationSettings
from pos_reports.ingest.cleaning import parse_date, parse_hour, round2_series, to_number, to_text
from pos_reports.ingest.mapping import FieldMapping

logger = logging.getLogger(__name__)

RawRecord = Mapping[str, Any]
RawRows = Union[Sequence[RawRecord], pd.DataFrame]
ProgressCallback = Callable[[int, int], None]

TRANSACTION_COLUMNS = [
    "date",
    "date_iso",
    "date_pretty",
    "hour",
    "item_raw",
    "item",
    "is_allowed",
    "quantity",
    "price",
    "unit_cost",
    "revenue",
    "cost",
    "profit",
    "order",
    "client",
    "staff",
    "source_category",
    "category",
    "dedup_key",
]

_TEXT_COLUMNS = [
    "date_iso",
    "date_pretty",
    "item_raw",
    "item",
    "order",
    "client",
    "staff",
    "source_category",
    "category",
    "dedup_key",
]
_NUMERIC_COLUMNS = ["quantity", "price", "unit_cost", "revenue", "cost", "profit"]


def empty_transactions() -> pd.DataFrame:
    """Return a zero-row transaction table with the canonical dtypes."""
    df = pd.DataFrame({c: pd.Series(dtype=object) for c in _TEXT_COLUMNS})
    for c in _NUMERIC_COLUMNS:
        df[c] = pd.Series(dtype=float)
    df["date"] = pd.Series(dtype="datetime64[ns]")
    df["hour"] = pd.Series(dtype="Int64")
    df["is_allowed"] = pd.Series(dtype=bool)
    return df[TRANSACTION_COLUMNS]


def canonicalize_item(
    raw_name: Any,
    synonyms: Sequence[ItemSynonym] = (),
    allowed_items: Sequence[str] | set[str] = (),
    enforce_allowed: bool = False,
) -> tuple[str, bool]:
    """Apply synonym substitution and the allow-list check to an item name.

    Rules are tried in order and the first matching rule wins: a rule whose
    source equals the whole name replaces it; otherwise a rule whose source
    occurs in the name (case-sensitive) replaces that substring.

    Args:
        raw_name: Raw item cell.
        synonyms: Ordered substitution rules.
        allowed_items: Canonical names accepted when enforcing.
        enforce_allowed: Whether to check the allow-list at all.

    Returns:
        ``(canonical_name, is_allowed)``. Items are never dropped here.

    Examples:
        >>> canonicalize_item(" Tri Color ", [ItemSynonym("Tri Color", "Northern")])
        ('Northern', True)

    """
    name = to_text(raw_name)
    for rule in synonyms:
        if not rule.source:
            continue
        if name == rule.source:
            name = rule.target
            break
        if rule.source in name:
            name = name.replace(rule.source, rule.target).strip()
            break

    allowed = True
    if enforce_allowed and allowed_items:
        allowed = name in allowed_items
    return name, allowed


def _lowercase_index(category_map: Mapping[str, str]) -> dict[str, str]:
    return {str(k).strip().lower(): v for k, v in category_map.items()}


def resolve_category(
    item_raw: str,
    item: str,
    source_category: str,
    category_map: Mapping[str, str],
    lowered: Optional[Mapping[str, str]] = None,
) -> str:
    """Pick a transaction's category.

    Lookup order: category map by raw name, by canonical name, by canonical
    name ignoring case; then the CSV category value; then ``Uncategorized``.
    Never returns an empty string.
    """
    for key in (item_raw, item):
        value = category_map.get(key)
        if value:
            return str(value)
    if lowered is None:
        lowered = _lowercase_index(category_map)
    value = lowered.get(item.lower()) if item else None
    if value:
        return str(value)
    if source_category:
        return source_category
    return UNCATEGORIZED


def build_dedup_key(order: str, item: str, record: Mapping[str, Any]) -> str:
    """Identity used to collapse duplicate rows.

    ``"<order>|<item>"`` when an order id exists, otherwise the JSON identity
    of the whole raw record.
    """
    if order:
        return f"{order}|{item}"
    return "row:" + json.dumps(dict(record), sort_keys=True, default=str, ensure_ascii=False)


def dedupe_transactions(transactions: pd.DataFrame) -> pd.DataFrame:
    """Collapse rows sharing a dedup key, keeping the last one processed.

    This is full-record replacement in ingestion order, not a merge. The
    surviving row sits at the position of its last occurrence.
    """
    before = len(transactions)
    deduped = transactions.drop_duplicates(subset="dedup_key", keep="last").reset_index(drop=True)
    if len(deduped) < before:
        logger.info("Dropped %d duplicate row(s) by order+item key", before - len(deduped))
    return deduped


def is_disqualified(transactions: pd.DataFrame) -> pd.Series:
    """Rows with no item, no quantity and no revenue."""
    return (
        (transactions["item"].fillna("") == "")
        & (transactions["quantity"] == 0)
        & (transactions["revenue"] == 0)
    )


def _column(frame: pd.DataFrame, header: str) -> Optional[pd.Series]:
    if header and header in frame.columns:
        return frame[header]
    return None


def _text(frame: pd.DataFrame, header: str) -> pd.Series:
    col = _column(frame, header)
    if col is None:
        return pd.Series([""] * len(frame), index=frame.index, dtype=object)
    return col.map(to_text).astype(object)


def _number(frame: pd.DataFrame, header: str) -> pd.Series:
    col = _column(frame, header)
    if col is None:
        return pd.Series(0.0, index=frame.index, dtype=float)
    return col.map(to_number).astype(float)


def _normalize_chunk(
    records: list[dict[str, Any]],
    mapping: FieldMapping,
    settings: NormalizationSettings,
) -> pd.DataFrame:
    """Normalize one chunk of raw records into transaction rows."""
    frame = pd.DataFrame(records, index=pd.RangeIndex(len(records)))
    out = pd.DataFrame(index=frame.index)

    date_col = _column(frame, mapping.date)
    if date_col is not None:
        parsed = [parse_date(v) for v in date_col]
        out["date"] = pd.Series([p.value for p in parsed], index=frame.index, dtype="datetime64[ns]")
        out["date_iso"] = [p.iso for p in parsed]
        out["date_pretty"] = [p.pretty for p in parsed]
        hours = [parse_hour(v, settings.hour_offset) for v in date_col]
        out["hour"] = pd.array(hours, dtype="Int64")
    else:
        out["date"] = pd.Series(pd.NaT, index=frame.index, dtype="datetime64[ns]")
        out["date_iso"] = ""
        out["date_pretty"] = ""
        out["hour"] = pd.array([None] * len(frame), dtype="Int64")

    out["item_raw"] = _text(frame, mapping.item)
    allowed_set = set(settings.allowed_items)
    canonical = [
        canonicalize_item(name, settings.item_synonyms, allowed_set, settings.enforce_allowed)
        for name in out["item_raw"]
    ]
    out["item"] = [c[0] for c in canonical]
    out["is_allowed"] = pd.Series([c[1] for c in canonical], index=frame.index, dtype=bool)

    out["quantity"] = _number(frame, mapping.qty)
    out["price"] = _number(frame, mapping.price)
    out["unit_cost"] = _number(frame, mapping.cost)
    if _column(frame, mapping.revenue) is not None:
        revenue = _number(frame, mapping.revenue)
    else:
        revenue = out["quantity"] * out["price"]
    out["revenue"] = round2_series(revenue)
    out["cost"] = round2_series(out["quantity"] * out["unit_cost"])
    out["profit"] = round2_series(out["revenue"] - out["cost"])

    out["order"] = _text(frame, mapping.order)
    out["client"] = _text(frame, mapping.client)
    out["staff"] = _text(frame, mapping.staff)
    out["source_category"] = _text(frame, mapping.category)

    lowered = _lowercase_index(settings.category_map)
    out["category"] = [
        resolve_category(raw, item, src, settings.category_map, lowered)
        for raw, item, src in zip(out["item_raw"], out["item"], out["source_category"])
    ]
    out["dedup_key"] = [
        build_dedup_key(order, item, record)
        for order, item, record in zip(out["order"], out["item"], records)
    ]
    return out[TRANSACTION_COLUMNS]


def _iter_chunks(raw_rows: RawRows, chunk_size: int) -> Iterator[tuple[list[dict[str, Any]], int]]:
    """Yield ``(records, rows_consumed)`` slices of the input."""
    if isinstance(raw_rows, pd.DataFrame):
        for start in range(0, len(raw_rows), chunk_size):
            chunk = raw_rows.iloc[start : start + chunk_size]
            yield chunk.to_dict("records"), len(chunk)
        return

    for start in range(0, len(raw_rows), chunk_size):
        chunk = raw_rows[start : start + chunk_size]
        records = []
        for r in chunk:
            if isinstance(r, Mapping):
                records.append(dict(r))
            else:
                logger.debug("Skipping non-record row: %r", r)
        yield records, len(chunk)


def _prepare(
    raw_rows: RawRows | None,
    mapping: FieldMapping | Mapping[str, Any],
    settings: NormalizationSettings | None,
    chunk_size: int,
) -> tuple[RawRows, FieldMapping, NormalizationSettings]:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not isinstance(mapping, FieldMapping):
        mapping = FieldMapping.from_dict(mapping)
    return (raw_rows if raw_rows is not None else []), mapping, settings or NormalizationSettings()


def _steps(
    raw_rows: RawRows,
    mapping: FieldMapping,
    settings: NormalizationSettings,
    chunk_size: int,
) -> Iterator[tuple[pd.DataFrame, int, int]]:
    """Normalize chunk by chunk, yielding ``(frame, percent, processed)``."""
    total = len(raw_rows)
    processed = 0
    for records, consumed in _iter_chunks(raw_rows, chunk_size):
        frame = _normalize_chunk(records, mapping, settings) if records else empty_transactions()
        processed += consumed
        percent = int(processed * 100 / total) if total else 100
        yield frame, percent, processed


def _finish(frames: list[pd.DataFrame], total: int) -> pd.DataFrame:
    frames = [f for f in frames if len(f)]
    if not frames:
        return empty_transactions()
    transactions = dedupe_transactions(pd.concat(frames, ignore_index=True))
    logger.info("Normalized %d row(s) into %d transaction(s)", total, len(transactions))
    return transactions


def normalize(
    raw_rows: RawRows | None,
    mapping: FieldMapping | Mapping[str, Any],
    settings: NormalizationSettings | None = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_progress: ProgressCallback | None = None,
) -> pd.DataFrame:
    """Normalize raw CSV records into the canonical transaction table.

    Never raises for malformed individual rows: unparseable numbers become
    0, unparseable dates leave ``date_iso`` empty, unmapped fields take
    their defaults. A mapping with no usable fields yields an empty table.

    Args:
        raw_rows: Sequence of header -> value records, or a DataFrame.
        mapping: Field mapping (or its dict form).
        settings: Synonyms, allow-list, category map and hour offset.
        chunk_size: Rows per chunk between progress callbacks.
        on_progress: Called as ``on_progress(percent_complete, rows_processed)``
            after each chunk.

    Returns:
        Deduplicated DataFrame with ``TRANSACTION_COLUMNS``.

    Raises:
        ValueError: If ``chunk_size`` is not positive.

    """
    raw_rows, mapping, settings = _prepare(raw_rows, mapping, settings, chunk_size)
    if mapping.is_empty():
        logger.warning("Field mapping has no usable fields; nothing to normalize")
        return empty_transactions()

    frames: list[pd.DataFrame] = []
    for frame, percent, processed in _steps(raw_rows, mapping, settings, chunk_size):
        frames.append(frame)
        if on_progress:
            on_progress(percent, processed)
    if on_progress and not len(raw_rows):
        on_progress(100, 0)
    return _finish(frames, len(raw_rows))


async def normalize_async(
    raw_rows: RawRows | None,
    mapping: FieldMapping | Mapping[str, Any],
    settings: NormalizationSettings | None = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_progress: ProgressCallback | None = None,
) -> pd.DataFrame:
    """Cooperative variant of :func:`normalize` for large batches.

    Yields control to the event loop after every chunk. There is no
    cancellation: a caller that no longer wants the result discards the
    task.
    """
    raw_rows, mapping, settings = _prepare(raw_rows, mapping, settings, chunk_size)
    if mapping.is_empty():
        logger.warning("Field mapping has no usable fields; nothing to normalize")
        return empty_transactions()

    frames: list[pd.DataFrame] = []
    for frame, percent, processed in _steps(raw_rows, mapping, settings, chunk_size):
        frames.append(frame)
        if on_progress:
            on_progress(percent, processed)
        await asyncio.sleep(0)
    if on_progress and not len(raw_rows):
        on_progress(100, 0)
    return _finish(frames, len(raw_rows))


def recategorize(transactions: pd.DataFrame, category_map: Mapping[str, str]) -> pd.DataFrame:
    """Recompute ``category`` for every transaction from scratch.

    Returns a new table; the input is not modified. Only the category
    column changes.
    """
    result = transactions.copy()
    if result.empty:
        return result
    lowered = _lowercase_index(category_map)
    result["category"] = [
        resolve_category(raw, item, src, category_map, lowered)
        for raw, item, src in zip(result["item_raw"], result["item"], result["source_category"])
    ]
    logger.debug("Recategorized %d transaction(s)", len(result))
    return result


def transactions_to_records(transactions: pd.DataFrame) -> list[dict[str, Any]]:
    """Plain JSON-friendly records for a transaction table.

    ``date`` is dropped (it is re-derived from ``date_iso``) and missing
    hours become None.
    """
    if transactions.empty:
        return []
    df = transactions.drop(columns=["date"]).astype({"hour": object})
    df["hour"] = df["hour"].where(df["hour"].notna(), None)
    return df.to_dict("records")


def records_to_transactions(records: Sequence[Mapping[str, Any]]) -> pd.DataFrame:
    """Rebuild a transaction table from :func:`transactions_to_records` output."""
    if not records:
        return empty_transactions()
    df = pd.DataFrame([dict(r) for r in records], index=pd.RangeIndex(len(records)))
    for c in _TEXT_COLUMNS:
        df[c] = df[c].map(to_text).astype(object) if c in df.columns else ""
    for c in _NUMERIC_COLUMNS:
        df[c] = df[c].map(to_number).astype(float) if c in df.columns else 0.0
    allowed = df["is_allowed"] if "is_allowed" in df.columns else pd.Series(True, index=df.index)
    df["is_allowed"] = [True if v is None or v != v else bool(v) for v in allowed]
    hours = df["hour"] if "hour" in df.columns else [None] * len(df)
    df["hour"] = pd.array([None if pd.isna(h) else int(h) for h in hours], dtype="Int64")
    df["date"] = pd.to_datetime(df["date_iso"], format="%Y-%m-%d", errors="coerce")
    return df[TRANSACTION_COLUMNS]
