"""Configuration for POS Reports.

This module holds the package constants and the settings objects consumed by
the normalizer and the session:

- ``NormalizationSettings``: everything the row normalizer needs besides the
  raw rows and the field mapping.
- ``UserSettings``: the persisted per-user document (category map, item
  synonyms, allow-list, last mapping) with text rule parsers for each part.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pos_reports.exceptions import ConfigError

logger = logging.getLogger(__name__)

# Category assigned when neither the category map nor the CSV provides one
UNCATEGORIZED = "Uncategorized"

# Fixed hour skew between source timestamps and local display time
HOUR_OFFSET = -5

# Rows normalized between two progress callbacks / cooperative yields
DEFAULT_CHUNK_SIZE = 2000

# Order ids that never count as a real order
SENTINEL_ORDER_IDS = frozenset({"", "undefined", "-"})

# Rows per stored chunk of a persisted CSV dataset
CSV_CHUNK_ROWS = 5000

_SYNONYM_SPLIT_RE = re.compile(r"\s*(?:->|=>|→)\s*")
_CATEGORY_SPLIT_RE = re.compile(r"\s*[=:,\t]\s*")


@dataclass(frozen=True)
class ItemSynonym:
    """One ordered item-name substitution rule (``source -> target``)."""

    source: str
    target: str

    def to_dict(self) -> dict[str, str]:
        return {"from": self.source, "to": self.target}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ItemSynonym:
        return cls(source=str(data.get("from", "")), target=str(data.get("to", "")))


@dataclass
class NormalizationSettings:
    """User settings applied while normalizing rows.

    Attributes:
        item_synonyms: Ordered substitution rules; the first matching rule wins.
        allowed_items: Canonical item names accepted when enforcement is on.
        enforce_allowed: Flag non-allowed items with ``is_allowed=False``.
        category_map: Item name (raw or canonical) -> category.
        hour_offset: Signed hour shift applied to parsed hours (mod 24).
    """

    item_synonyms: list[ItemSynonym] = field(default_factory=list)
    allowed_items: list[str] = field(default_factory=list)
    enforce_allowed: bool = False
    category_map: dict[str, str] = field(default_factory=dict)
    hour_offset: int = HOUR_OFFSET


@dataclass
class UserSettings:
    """Persisted per-user settings document.

    Attributes:
        category_map: Item name -> category.
        item_synonyms: Ordered ``source -> target`` rules.
        allowed_items: Canonical item names.
        enforce_allowed: Whether the allow-list flags items.
        mapping: Last field mapping the user committed (slot -> header).
    """

    category_map: dict[str, str] = field(default_factory=dict)
    item_synonyms: list[ItemSynonym] = field(default_factory=list)
    allowed_items: list[str] = field(default_factory=list)
    enforce_allowed: bool = False
    mapping: dict[str, str] = field(default_factory=dict)

    def to_normalization_settings(self, hour_offset: int = HOUR_OFFSET) -> NormalizationSettings:
        """Build the settings object consumed by the normalizer."""
        return NormalizationSettings(
            item_synonyms=list(self.item_synonyms),
            allowed_items=list(self.allowed_items),
            enforce_allowed=self.enforce_allowed,
            category_map=dict(self.category_map),
            hour_offset=hour_offset,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the stored document keys."""
        return {
            "categoryMap": dict(self.category_map),
            "itemSynonyms": [rule.to_dict() for rule in self.item_synonyms],
            "allowedItemsList": list(self.allowed_items),
            "enforceAllowed": self.enforce_allowed,
            "mapping": dict(self.mapping),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> UserSettings:
        """Load settings from a stored document.

        Individual malformed entries are skipped. A document that is not a
        mapping at all raises ConfigError.

        Args:
            data: Stored document, or None for defaults.

        Returns:
            UserSettings instance.

        Raises:
            ConfigError: If ``data`` is not a mapping.

        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError(f"User settings must be a mapping, got {type(data).__name__}")

        category_map: dict[str, str] = {}
        raw_map = data.get("categoryMap") or {}
        if isinstance(raw_map, Mapping):
            for key, value in raw_map.items():
                if str(key).strip() and str(value).strip():
                    category_map[str(key).strip()] = str(value).strip()

        synonyms: list[ItemSynonym] = []
        for raw_rule in data.get("itemSynonyms") or []:
            if isinstance(raw_rule, Mapping) and str(raw_rule.get("from", "")).strip():
                synonyms.append(ItemSynonym.from_dict(raw_rule))
            else:
                logger.debug("Skipping malformed synonym rule: %r", raw_rule)

        allowed = [str(x).strip() for x in data.get("allowedItemsList") or [] if str(x).strip()]
        raw_mapping = data.get("mapping") or {}
        mapping = {str(k): str(v or "") for k, v in raw_mapping.items()} if isinstance(raw_mapping, Mapping) else {}

        return cls(
            category_map=category_map,
            item_synonyms=synonyms,
            allowed_items=allowed,
            enforce_allowed=bool(data.get("enforceAllowed", False)),
            mapping=mapping,
        )


def _rule_lines(text: str | Iterable[str]) -> Iterable[str]:
    lines = text.splitlines() if isinstance(text, str) else text
    for line in lines:
        s = str(line).strip()
        if s and not s.startswith("#"):
            yield s


def parse_synonym_lines(text: str | Iterable[str]) -> list[ItemSynonym]:
    """Parse ``from -> to`` rule lines into ordered synonym rules.

    Blank lines and ``#`` comments are ignored. Lines without a separator or
    with an empty side are skipped; the remaining lines still apply.

    Args:
        text: Multi-line string or iterable of lines.

    Returns:
        Rules in input order.

    Examples:
        >>> parse_synonym_lines("Tri Color -> Northern")
        [ItemSynonym(source='Tri Color', target='Northern')]

    """
    rules: list[ItemSynonym] = []
    for line in _rule_lines(text):
        parts = _SYNONYM_SPLIT_RE.split(line, maxsplit=1)
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            logger.debug("Skipping malformed synonym line: %r", line)
            continue
        rules.append(ItemSynonym(source=parts[0].strip(), target=parts[1].strip()))
    return rules


def parse_category_lines(text: str | Iterable[str]) -> dict[str, str]:
    """Parse ``item = category`` lines into a category map.

    ``:``, ``,`` and tab are accepted as separators too. Later lines
    override earlier lines for the same item.

    Examples:
        >>> parse_category_lines("Latte = Coffee\\nbroken line")
        {'Latte': 'Coffee'}

    """
    result: dict[str, str] = {}
    for line in _rule_lines(text):
        parts = _CATEGORY_SPLIT_RE.split(line, maxsplit=1)
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            logger.debug("Skipping malformed category line: %r", line)
            continue
        result[parts[0].strip()] = parts[1].strip()
    return result


def parse_allowed_items(text: str | Iterable[str]) -> list[str]:
    """Parse an allow-list given one name per line or as a comma list.

    Duplicates are dropped, first occurrence order is kept.
    """
    seen: dict[str, None] = {}
    for line in _rule_lines(text):
        for name in line.split(","):
            name = name.strip()
            if name:
                seen.setdefault(name, None)
    return list(seen)
