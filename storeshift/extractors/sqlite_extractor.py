"""SQLite source store and the exporter that normalizes its rows."""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, timezone

from dateutil import parser as date_parser

from .base import ExportedDataset, ExtractionResult, SourceStore
from ..models.errors import ExportError
from ..models.record import SourceRecord
from ..models.schema import IMPORT_ORDER, SOURCE_TABLES, SourceTableSpec

logger = logging.getLogger(__name__)


class SQLiteSourceStore(SourceStore):
    """Legacy embedded store backed by a single SQLite file."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._conn: Optional[sqlite3.Connection] = None

    def _get_conn(self) -> sqlite3.Connection:
        """Get SQLite connection."""
        if self._conn is None:
            if not self.path.exists():
                raise ExportError(f"SQLite database not found: {self.path}", path=str(self.path))
            try:
                self._conn = sqlite3.connect(str(self.path))
            except sqlite3.Error as e:
                raise ExportError(f"Cannot open {self.path}: {e}", path=str(self.path)) from e
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def table_names(self) -> List[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        except sqlite3.Error as e:
            raise ExportError(f"Cannot read {self.path}: {e}", path=str(self.path)) from e
        return [row["name"] for row in rows]

    def select_all(self, table: str) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        # Table names cannot be bound as parameters; only known tables are read.
        if table not in self.table_names():
            raise ExportError(f"Source table {table!r} does not exist", table=table)
        try:
            rows = conn.execute(f'SELECT * FROM "{table}"').fetchall()
        except sqlite3.Error as e:
            raise ExportError(f"Failed reading {table}: {e}", table=table) from e
        return [dict(row) for row in rows]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def parse_list(value: Any) -> List[str]:
    """Split a comma-separated text column. Empty or null gives an empty list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Epoch milliseconds (or an ISO string) to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
    parsed = date_parser.parse(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


class SourceExporter:
    """
    Reads every row of every legacy table into typed records.

    Any failure is fatal: the export either yields the complete dataset or
    raises ExportError before anything downstream runs.
    """

    def __init__(
        self,
        store: SourceStore,
        tables: Optional[List[str]] = None,
        on_table: Optional[Callable[[str, int, int], None]] = None,
    ):
        """
        Args:
            store: Source store to read from
            tables: Tables to export (defaults to all eight, in import order)
            on_table: Called as on_table(table, index, total) after each table
        """
        self.store = store
        self.tables = tables or list(IMPORT_ORDER)
        self.on_table = on_table

    def export(self) -> ExportedDataset:
        """Export all tables."""
        dataset = ExportedDataset()
        for index, table in enumerate(self.tables, start=1):
            result = self.export_table(table)
            dataset.results[table] = result
            logger.info(f"Exported {result.total_extracted} {table} records")
            if self.on_table:
                self.on_table(table, index, len(self.tables))
        logger.info(f"Export complete: {dataset.total_records} records from {len(self.tables)} tables")
        return dataset

    def export_table(self, table: str) -> ExtractionResult:
        spec = SOURCE_TABLES.get(table, SourceTableSpec(name=table))
        result = ExtractionResult(table=table, started_at=datetime.now(timezone.utc))

        for raw in self.store.select_all(table):
            if raw.get("id") is None:
                raise ExportError(f"Row without id in {table}", table=table)
            record_id = str(raw["id"])
            try:
                data = self._normalize(raw, spec)
            except (ValueError, OverflowError, OSError) as e:
                raise ExportError(
                    f"Malformed value in {table}/{record_id}: {e}",
                    table=table,
                    record_id=record_id,
                ) from e
            result.records.append(SourceRecord(table=table, id=record_id, data=data, raw_data=dict(raw)))

        result.total_extracted = len(result.records)
        result.completed_at = datetime.now(timezone.utc)
        return result

    def _normalize(self, raw: Dict[str, Any], spec: SourceTableSpec) -> Dict[str, Any]:
        data = dict(raw)
        data["id"] = str(raw["id"])
        for name in spec.list_fields:
            if name in data:
                data[name] = parse_list(data[name])
        for name in spec.timestamp_fields:
            if name in data:
                data[name] = parse_timestamp(data[name])
        for name in spec.bool_fields:
            if name in data:
                data[name] = parse_bool(data[name])
        return data
