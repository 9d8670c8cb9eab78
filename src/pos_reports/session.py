"""Session state for one user's reporting workflow.

``ReportSession`` owns the current headers, field mapping, settings,
transaction table and display filters, and is passed explicitly to whatever
renders them. The transaction table is only ever replaced wholesale: a new
table is built first and swapped in on success, so a failed upload or load
leaves the previous data intact.

Example:
    >>> from pos_reports import JsonFileStore, ReportSession
    >>>
    >>> session = ReportSession(store=JsonFileStore("data/users", "alice"))
    >>> session.load_settings()
    >>> session.ingest_files(["exports/sales_2024-01.csv"])
    True
    >>> session.report.totals.total_revenue
    12840.5
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

import pandas as pd

from pos_reports.config import HOUR_OFFSET, UserSettings
from pos_reports.exceptions import PosReportsError
from pos_reports.ingest.csv_source import CsvInput, read_csv_source
from pos_reports.ingest.mapping import FieldMapping, apply_saved_mapping, detect_columns
from pos_reports.ingest.normalize import (
    ProgressCallback,
    RawRows,
    empty_transactions,
    normalize,
    normalize_async,
    records_to_transactions,
    transactions_to_records,
)
from pos_reports.ingest.normalize import recategorize as recategorize_transactions
from pos_reports.reports.aggregate import (
    aggregate_by_category,
    aggregate_by_client,
    aggregate_by_item,
    aggregate_by_order,
    aggregate_by_staff,
)
from pos_reports.reports.filters import ReportFilters, apply_filters
from pos_reports.reports.report import Report, compute_report
from pos_reports.storage import (
    DocumentStore,
    load_csv_data,
    load_user_settings,
    save_csv_data,
    save_report,
    save_user_settings,
)

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ReportSession:
    """Explicit application state for one user.

    Attributes:
        store: Where datasets, reports and settings persist (optional).
        settings: Category map, synonyms, allow-list and last mapping.
        hour_offset: Hour shift applied while normalizing.
        headers: Headers of the current dataset.
        mapping: Field mapping of the current dataset.
        transactions: Current normalized transaction table.
        filters: Display filters for the secondary views.
        status: Last user-facing status message.
    """

    store: Optional[DocumentStore] = None
    settings: UserSettings = field(default_factory=UserSettings)
    hour_offset: int = HOUR_OFFSET
    headers: list[str] = field(default_factory=list)
    mapping: FieldMapping = field(default_factory=FieldMapping)
    transactions: pd.DataFrame = field(default_factory=empty_transactions)
    filters: ReportFilters = field(default_factory=ReportFilters)
    status: str = ""
    _report: Optional[Report] = field(default=None, init=False, repr=False)

    def load_settings(self) -> UserSettings:
        if self.store is not None:
            self.settings = load_user_settings(self.store)
        return self.settings

    def save_settings(self) -> bool:
        if self.store is None:
            return False
        ok = save_user_settings(self.store, self.settings)
        if not ok:
            self.status = "Could not save settings."
        return ok

    def detect_mapping(self, headers: Sequence[str]) -> FieldMapping:
        """Detect a mapping for ``headers``, preferring the user's saved mapping."""
        self.headers = list(headers)
        detected = detect_columns(self.headers)
        self.mapping = apply_saved_mapping(detected, self.settings.mapping, self.headers)
        return self.mapping

    def preview(self, sources: CsvInput | Sequence[CsvInput], rows: int = 100) -> Optional[FieldMapping]:
        """Read the first rows of the files and detect their mapping."""
        try:
            source = read_csv_source(sources, preview=rows)
        except (OSError, ValueError) as e:
            logger.warning("Preview failed: %s", e)
            self.status = f"Could not read file: {e}"
            return None
        return self.detect_mapping(source.headers)

    def _resolve(
        self, mapping: FieldMapping | Mapping[str, Any] | None, headers: Optional[Sequence[str]]
    ) -> tuple[FieldMapping, list[str]]:
        if mapping is None:
            mapping = self.mapping
        elif not isinstance(mapping, FieldMapping):
            mapping = FieldMapping.from_dict(mapping)
        return mapping, list(headers) if headers is not None else list(self.headers)

    def _commit(self, transactions: pd.DataFrame, mapping: FieldMapping, headers: list[str]) -> bool:
        if mapping.is_empty():
            logger.warning("Ingest skipped: field mapping has no usable fields")
            self.status = "No usable columns mapped."
            return False
        self.transactions = transactions
        self.mapping = mapping
        self.headers = headers
        self._report = None
        self.settings.mapping = mapping.to_dict()
        if self.store is not None:
            save_user_settings(self.store, self.settings)
        self.status = f"Loaded {len(transactions)} transaction(s)."
        return True

    def ingest(
        self,
        rows: RawRows,
        mapping: FieldMapping | Mapping[str, Any] | None = None,
        headers: Optional[Sequence[str]] = None,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        """Normalize ``rows`` into a new transaction table and swap it in.

        Returns:
            True on success. On failure ``status`` explains why and the
            previous transaction table is kept.

        """
        mapping, headers = self._resolve(mapping, headers)
        try:
            transactions = normalize(
                rows,
                mapping,
                self.settings.to_normalization_settings(self.hour_offset),
                on_progress=on_progress,
            )
        except (PosReportsError, ValueError, TypeError) as e:
            logger.warning("Normalization failed: %s", e)
            self.status = f"Could not process data: {e}"
            return False
        return self._commit(transactions, mapping, headers)

    async def ingest_async(
        self,
        rows: RawRows,
        mapping: FieldMapping | Mapping[str, Any] | None = None,
        headers: Optional[Sequence[str]] = None,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        """Cooperative variant of :meth:`ingest`."""
        mapping, headers = self._resolve(mapping, headers)
        try:
            transactions = await normalize_async(
                rows,
                mapping,
                self.settings.to_normalization_settings(self.hour_offset),
                on_progress=on_progress,
            )
        except (PosReportsError, ValueError, TypeError) as e:
            logger.warning("Normalization failed: %s", e)
            self.status = f"Could not process data: {e}"
            return False
        return self._commit(transactions, mapping, headers)

    def ingest_files(
        self,
        sources: CsvInput | Sequence[CsvInput],
        mapping: FieldMapping | Mapping[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
        on_read_progress: ProgressCallback | None = None,
    ) -> bool:
        """Read CSV exports, detect the mapping when none is given, and ingest.

        ``on_read_progress`` reports file reading, ``on_progress`` normalization.
        """
        try:
            source = read_csv_source(sources, on_progress=on_read_progress)
        except (OSError, ValueError) as e:
            logger.warning("Reading CSV failed: %s", e)
            self.status = f"Could not read file: {e}"
            return False
        if mapping is None:
            mapping = apply_saved_mapping(
                detect_columns(source.headers), self.settings.mapping, source.headers
            )
        return self.ingest(source.rows, mapping, source.headers, on_progress)

    @property
    def report(self) -> Report:
        """Report over the full transaction set (filters do not apply)."""
        if self._report is None:
            self._report = compute_report(self.transactions, self.mapping)
        return self._report

    def set_filters(self, filters: ReportFilters | Mapping[str, Any] | None) -> None:
        if filters is None:
            self.filters = ReportFilters()
        elif isinstance(filters, ReportFilters):
            self.filters = filters
        else:
            self.filters = ReportFilters.from_dict(filters)

    def filtered_transactions(self) -> pd.DataFrame:
        return apply_filters(self.transactions, self.filters)

    def secondary_views(self) -> dict[str, pd.DataFrame]:
        """Filtered summaries for the orders, clients, staff, categories and items pages."""
        filtered = self.filtered_transactions()
        return {
            "order": aggregate_by_order(filtered),
            "client": aggregate_by_client(filtered),
            "staff": aggregate_by_staff(filtered),
            "category": aggregate_by_category(filtered),
            "item": aggregate_by_item(filtered),
        }

    def recategorize(self, category_map: Optional[Mapping[str, str]] = None) -> pd.DataFrame:
        """Re-apply the category map (optionally a new one) to every transaction."""
        if category_map is not None:
            self.settings.category_map = dict(category_map)
        self.transactions = recategorize_transactions(self.transactions, self.settings.category_map)
        self._report = None
        return self.transactions

    def persist(self) -> bool:
        """Store the current transaction table and settings."""
        if self.store is None:
            self.status = "No storage configured."
            return False
        ok = save_csv_data(self.store, transactions_to_records(self.transactions), self.headers, self.mapping)
        ok = save_user_settings(self.store, self.settings) and ok
        self.status = "Saved." if ok else "Could not save data; previous save kept."
        return ok

    def restore(self) -> bool:
        """Load the last persisted transaction table."""
        if self.store is None:
            self.status = "No storage configured."
            return False
        data = load_csv_data(self.store)
        if data is None:
            self.status = "No saved data found."
            return False
        try:
            transactions = records_to_transactions(data["rows"])
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Stored dataset is unreadable: %s", e)
            self.status = "Saved data is unreadable."
            return False
        self.transactions = transactions
        self.headers = list(data["headers"])
        self.mapping = FieldMapping.from_dict(data["mapping"])
        self._report = None
        self.status = f"Restored {len(transactions)} transaction(s)."
        return True

    def save_report(self, name: str = "") -> Optional[str]:
        if self.store is None:
            return None
        report_id = save_report(self.store, self.report, self.mapping, name)
        if report_id is None:
            self.status = "Could not save report."
        return report_id
