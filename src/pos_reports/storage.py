"""Persistence for datasets, saved reports and user settings.

Everything is stored as JSON documents addressed by key through a
``DocumentStore``. ``JsonFileStore`` keeps one ``<key>.json`` file per
document under ``<root>/<namespace>/`` (one namespace per user).

Store failures are logged and returned as ``False``/``None``; they are never
raised into callers.

Keys used:
- ``csvData``: manifest of the last uploaded dataset (headers, mapping,
  row count, chunk count, generation)
- ``csvData.<generation>.<n>``: the dataset's rows, ``CSV_CHUNK_ROWS`` per chunk
- ``report.<id>``: saved report snapshots
- ``userSettings``: the ``UserSettings`` document
"""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
import pandas as pd

from pos_reports.config import CSV_CHUNK_ROWS, UserSettings
from pos_reports.exceptions import ConfigError, StorageError
from pos_reports.ingest.mapping import FieldMapping
from pos_reports.reports.report import Report

logger = logging.getLogger(__name__)

CSV_DATA_KEY = "csvData"
SETTINGS_KEY = "userSettings"
REPORT_PREFIX = "report."

_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


@runtime_checkable
class DocumentStore(Protocol):
    """Key -> JSON document store."""

    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, value: Any) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...


def _json_default(obj: Any) -> Any:
    """Encode numpy/pandas scalars and dates that json cannot handle."""
    if isinstance(obj, np.generic):
        return obj.item()
    if obj is pd.NaT or obj is pd.NA:
        return None
    if isinstance(obj, (pd.Timestamp, datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class JsonFileStore:
    """``DocumentStore`` backed by JSON files on disk.

    Args:
        root: Base directory for all namespaces.
        namespace: Per-user subdirectory.
    """

    def __init__(self, root: Path | str, namespace: str = "local") -> None:
        if not _KEY_RE.match(namespace):
            raise StorageError(f"Invalid namespace: {namespace!r}")
        self.root = Path(root)
        self.namespace = namespace

    @property
    def directory(self) -> Path:
        return self.root / self.namespace

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise StorageError(f"Invalid document key: {key!r}")
        return self.directory / f"{key}.json"

    def load(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Error reading document %s: %s", path, e)
            return None

    def save(self, key: str, value: Any) -> bool:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            payload = json.dumps(value, default=_json_default, ensure_ascii=False)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Error writing document %s: %s", path, e)
            tmp.unlink(missing_ok=True)
            return False
        logger.debug("Wrote document: %s", path)
        return True

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Error deleting document %s: %s", path, e)
            return False
        return True

    def keys(self, prefix: str = "") -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json") if p.stem.startswith(prefix))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _chunk_key(generation: str, index: int) -> str:
    return f"{CSV_DATA_KEY}.{generation}.{index}"


def _delete_chunks(store: DocumentStore, generation: str, count: int) -> None:
    for i in range(count):
        store.delete(_chunk_key(generation, i))


def save_csv_data(
    store: DocumentStore,
    rows: Sequence[dict[str, Any]],
    headers: Sequence[str],
    mapping: FieldMapping | dict[str, str],
    chunk_rows: int = CSV_CHUNK_ROWS,
) -> bool:
    """Persist a dataset in chunks.

    Chunks are written under a fresh generation id before the manifest is
    switched over, so a failed save leaves the previously stored dataset
    readable. Chunks of the replaced generation are removed afterwards.

    Returns:
        True when the new dataset is fully stored.

    """
    if chunk_rows <= 0:
        raise ValueError(f"chunk_rows must be positive, got {chunk_rows}")
    rows = list(rows)
    previous = store.load(CSV_DATA_KEY)
    generation = uuid.uuid4().hex[:12]
    chunks = [rows[i : i + chunk_rows] for i in range(0, len(rows), chunk_rows)]

    for i, chunk in enumerate(chunks):
        if not store.save(_chunk_key(generation, i), chunk):
            logger.warning("Saving dataset chunk %d failed; keeping previous dataset", i)
            _delete_chunks(store, generation, i)
            return False

    manifest = {
        "headers": list(headers),
        "mapping": mapping.to_dict() if isinstance(mapping, FieldMapping) else dict(mapping),
        "uploadedAt": _now(),
        "rowCount": len(rows),
        "chunks": len(chunks),
        "generation": generation,
    }
    if not store.save(CSV_DATA_KEY, manifest):
        _delete_chunks(store, generation, len(chunks))
        return False

    if isinstance(previous, dict) and previous.get("generation"):
        _delete_chunks(store, str(previous["generation"]), int(previous.get("chunks") or 0))
    logger.info("Saved dataset: %d row(s) in %d chunk(s)", len(rows), len(chunks))
    return True


def load_csv_data(store: DocumentStore) -> Optional[dict[str, Any]]:
    """Load the stored dataset.

    Returns:
        ``{"rows", "headers", "mapping", "uploadedAt", "rowCount"}``, or None
        when nothing is stored or the stored chunks are incomplete.

    """
    manifest = store.load(CSV_DATA_KEY)
    if not isinstance(manifest, dict):
        return None
    generation = str(manifest.get("generation") or "")
    rows: list[dict[str, Any]] = []
    for i in range(int(manifest.get("chunks") or 0)):
        part = store.load(_chunk_key(generation, i))
        if not isinstance(part, list):
            logger.warning("Stored dataset chunk %d is missing or invalid", i)
            return None
        rows.extend(part)
    if len(rows) != int(manifest.get("rowCount") or 0):
        logger.warning(
            "Stored dataset has %d row(s), manifest says %s", len(rows), manifest.get("rowCount")
        )
        return None
    return {
        "rows": rows,
        "headers": list(manifest.get("headers") or []),
        "mapping": dict(manifest.get("mapping") or {}),
        "uploadedAt": manifest.get("uploadedAt"),
        "rowCount": len(rows),
    }


def delete_csv_data(store: DocumentStore) -> bool:
    manifest = store.load(CSV_DATA_KEY)
    if isinstance(manifest, dict) and manifest.get("generation"):
        _delete_chunks(store, str(manifest["generation"]), int(manifest.get("chunks") or 0))
    return store.delete(CSV_DATA_KEY)


def save_report(
    store: DocumentStore,
    report: Report,
    mapping: FieldMapping | dict[str, str] | None = None,
    name: str = "",
) -> Optional[str]:
    """Save a report snapshot; returns its id, or None on failure."""
    report_id = uuid.uuid4().hex
    doc = {
        "id": report_id,
        "name": name or f"Report {datetime.now().strftime('%Y-%m-%d %H:%M')}",
        "ts": _now(),
        "mapping": mapping.to_dict() if isinstance(mapping, FieldMapping) else dict(mapping or {}),
        **report.to_dict(),
    }
    if not store.save(REPORT_PREFIX + report_id, doc):
        return None
    return report_id


def list_reports(store: DocumentStore, limit: int = 20) -> list[dict[str, Any]]:
    """Saved snapshots (``id``, ``name``, ``ts``, ``totals``), newest first."""
    docs = []
    for key in store.keys(REPORT_PREFIX):
        doc = store.load(key)
        if isinstance(doc, dict):
            docs.append({k: doc.get(k) for k in ("id", "name", "ts", "totals")})
    docs.sort(key=lambda d: str(d.get("ts") or ""), reverse=True)
    return docs[:limit] if limit else docs


def load_report(store: DocumentStore, report_id: str) -> Optional[Report]:
    try:
        doc = store.load(REPORT_PREFIX + report_id)
    except StorageError as e:
        logger.warning("Cannot load report %r: %s", report_id, e)
        return None
    if not isinstance(doc, dict):
        return None
    return Report.from_dict(doc)


def delete_report(store: DocumentStore, report_id: str) -> bool:
    try:
        return store.delete(REPORT_PREFIX + report_id)
    except StorageError as e:
        logger.warning("Cannot delete report %r: %s", report_id, e)
        return False


def load_user_settings(store: DocumentStore) -> UserSettings:
    """Load user settings, falling back to defaults on a malformed document."""
    try:
        return UserSettings.from_dict(store.load(SETTINGS_KEY))
    except ConfigError as e:
        logger.warning("Ignoring stored user settings: %s", e)
        return UserSettings()


def save_user_settings(store: DocumentStore, settings: UserSettings) -> bool:
    return store.save(SETTINGS_KEY, settings.to_dict())
