"""Column mapping: CSV headers -> canonical semantic fields.

A ``FieldMapping`` names, for each canonical field, the source header that
feeds it (``""`` when unmapped). ``detect_columns`` builds a first guess from
the header list by keyword matching; the user's last committed mapping can
then be laid over it with ``apply_saved_mapping``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping, Sequence

from pos_reports.exceptions import MappingError
from pos_reports.ingest.cleaning import normalize_header

logger = logging.getLogger(__name__)

# Ranked keyword candidates per field; the first candidate with any matching
# header wins, and within a candidate the first header in file order wins.
CANDIDATES: dict[str, tuple[str, ...]] = {
    "date": ("date", "time", "timestamp"),
    "item": ("item", "sku", "product", "name", "title"),
    "qty": ("quantity", "qty", "units"),
    "price": ("price", "unit price", "amount"),
    "cost": ("cost", "unit cost", "cost per unit"),
    "revenue": ("revenue", "total", "gross", "net", "sales"),
    "category": ("category", "group", "department"),
    "order": ("order number", "order", "order no", "orderno"),
    "client": ("client", "customer", "company"),
    "staff": ("staff", "employee", "salesperson", "rep"),
}


@dataclass
class FieldMapping:
    """Canonical field -> source header (``""`` when unmapped)."""

    date: str = ""
    item: str = ""
    qty: str = ""
    price: str = ""
    cost: str = ""
    revenue: str = ""
    category: str = ""
    order: str = ""
    client: str = ""
    staff: str = ""

    @classmethod
    def slots(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, strict: bool = False) -> FieldMapping:
        """Build a mapping from a stored document.

        Args:
            data: Slot -> header mapping; missing slots stay unmapped.
            strict: Raise on unknown slots instead of ignoring them.

        Raises:
            MappingError: If ``strict`` and ``data`` has unknown slots.

        """
        if not data:
            return cls()
        known = set(cls.slots())
        unknown = sorted(set(data) - known)
        if unknown:
            if strict:
                raise MappingError(f"Unknown mapping slots: {unknown}")
            logger.debug("Ignoring unknown mapping slots: %s", unknown)
        return cls(**{k: str(v or "") for k, v in data.items() if k in known})

    @classmethod
    def canonical(cls) -> FieldMapping:
        """Mapping onto the transaction table's own columns.

        Normalizing a transaction table's records with this mapping re-derives
        every canonical field from the already-normalized values.
        """
        return cls(
            date="date_iso",
            item="item",
            qty="quantity",
            price="price",
            cost="unit_cost",
            revenue="revenue",
            category="category",
            order="order",
            client="client",
            staff="staff",
        )

    def mapped_fields(self) -> dict[str, str]:
        """Return only the slots that point at a header."""
        return {k: v for k, v in self.to_dict().items() if v}

    def is_empty(self) -> bool:
        return not self.mapped_fields()


def detect_columns(headers: Sequence[str] | None = None) -> FieldMapping:
    """Guess a field mapping from a header list.

    Headers are compared case-insensitively (after invisible-character
    stripping and accent removal) by substring against each field's ranked
    candidates. Unmatched fields stay empty. Pure function of ``headers``.

    Args:
        headers: Header strings in file order.

    Returns:
        FieldMapping with detected headers.

    Examples:
        >>> m = detect_columns(["Order Number", "Product Name", "Qty", "Unit Price"])
        >>> (m.order, m.item, m.qty, m.price)
        ('Order Number', 'Product Name', 'Qty', 'Unit Price')
        >>> detect_columns([]).is_empty()
        True

    """
    headers = list(headers or [])
    normalized = [normalize_header(str(h)) for h in headers]

    def find(candidates: tuple[str, ...]) -> str:
        for candidate in candidates:
            for original, norm in zip(headers, normalized):
                if candidate in norm:
                    return original
        return ""

    detected = FieldMapping(**{slot: find(CANDIDATES[slot]) for slot in FieldMapping.slots()})
    logger.debug("Detected mapping %s from %d header(s)", detected.mapped_fields(), len(headers))
    return detected


def apply_saved_mapping(
    detected: FieldMapping,
    saved: FieldMapping | Mapping[str, Any] | None,
    headers: Sequence[str],
) -> FieldMapping:
    """Overlay a persisted mapping on a detected one.

    A saved slot is only applied when its header exists in the current file;
    otherwise the detected value is kept.

    Args:
        detected: Heuristic mapping for the current headers.
        saved: The user's last committed mapping.
        headers: Headers of the current file.

    Returns:
        A new FieldMapping.

    """
    if saved is None:
        return FieldMapping(**detected.to_dict())
    saved_map = saved if isinstance(saved, FieldMapping) else FieldMapping.from_dict(saved)
    present = set(headers)
    merged = detected.to_dict()
    for slot, header in saved_map.to_dict().items():
        if header and header in present:
            merged[slot] = header
    return FieldMapping(**merged)
