"""Base destination store interface and import result types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from datetime import datetime
import logging

from ..models.errors import MigrationIssue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Predicate:
    """A single-column row filter understood by every destination store."""
    column: str
    op: str  # eq, neq, in, not_in, is_not_null
    value: Any = None

    OPS = ("eq", "neq", "in", "not_in", "is_not_null")

    def __post_init__(self):
        if self.op not in self.OPS:
            raise ValueError(f"Unsupported predicate op: {self.op}")

    def matches(self, row: Dict[str, Any]) -> bool:
        """Evaluate against an in-memory row."""
        actual = row.get(self.column)
        if self.op == "eq":
            return actual == self.value
        if self.op == "neq":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "not_in":
            return actual not in self.value
        return actual is not None

    @classmethod
    def all_rows(cls) -> "Predicate":
        return cls("id", "is_not_null")


@dataclass
class LoadResult:
    """Result of writing one table."""
    table: str
    total_attempted: int = 0
    total_succeeded: int = 0
    created_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "total_attempted": self.total_attempted,
            "total_succeeded": self.total_succeeded,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ImportResult:
    """Result of writing the whole dataset, possibly partial."""
    tables_written: List[str] = field(default_factory=list)
    failed_table: Optional[str] = None
    results: Dict[str, LoadResult] = field(default_factory=dict)
    baseline_counts: Dict[str, int] = field(default_factory=dict)
    errors: List[MigrationIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_table is None and not self.errors

    @property
    def total_imported(self) -> int:
        return sum(r.total_succeeded for r in self.results.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "tables_written": self.tables_written,
            "failed_table": self.failed_table,
            "total_imported": self.total_imported,
            "baseline_counts": self.baseline_counts,
            "results": {t: r.to_dict() for t, r in self.results.items()},
            "errors": [e.to_dict() for e in self.errors],
        }


class DestinationStore(ABC):
    """
    Async access to the hosted relational service.

    Every method raises DestinationError when the service rejects or
    cannot serve the request.
    """

    @abstractmethod
    async def insert_batch(self, table: str, rows: Sequence[Dict[str, Any]]) -> int:
        """
        Insert rows into a table as one batch.

        Returns:
            Number of rows inserted
        """
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        columns: Optional[List[str]] = None,
        filters: Optional[List[Predicate]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def delete_where(self, table: str, predicate: Predicate) -> int:
        """
        Delete rows matching the predicate.

        Returns:
            Number of rows deleted
        """
        pass

    @abstractmethod
    async def count(self, table: str, filters: Optional[List[Predicate]] = None) -> int:
        pass

    async def close(self) -> None:
        """Release any held resources."""
        pass
