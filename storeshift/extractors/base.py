"""Base source store interface and export result types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Result of exporting one source table."""
    table: str
    records: List[SourceRecord] = field(default_factory=list)
    total_extracted: int = 0
    warnings: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table,
            "total_extracted": self.total_extracted,
            "warnings": self.warnings,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ExportedDataset:
    """The whole legacy store, one typed collection per table."""
    results: Dict[str, ExtractionResult] = field(default_factory=dict)

    def records(self, table: str) -> List[SourceRecord]:
        result = self.results.get(table)
        return list(result.records) if result else []

    @property
    def tables(self) -> List[str]:
        return list(self.results.keys())

    @property
    def counts(self) -> Dict[str, int]:
        return {table: r.total_extracted for table, r in self.results.items()}

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "counts": self.counts,
            "total_records": self.total_records,
            "tables": {table: r.to_dict() for table, r in self.results.items()},
        }


class SourceStore(ABC):
    """
    Read-only access to the legacy store.

    Implementations return raw rows exactly as stored. Normalization is
    the exporter's job.
    """

    @abstractmethod
    def select_all(self, table: str) -> List[Dict[str, Any]]:
        """
        Read every row of a table.

        Raises:
            ExportError: if the table cannot be read
        """
        pass

    def close(self) -> None:
        """Release any held resources."""
        pass

    def __enter__(self) -> "SourceStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
