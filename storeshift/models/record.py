"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import date, datetime


class RecordStatus(str, Enum):
    """Status of a record during migration."""
    TRANSFORMED = "transformed"
    VALIDATED = "validated"
    IMPORTED = "imported"
    FAILED = "failed"


def to_jsonable(value: Any) -> Any:
    """Convert a record value into something json.dumps accepts."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


@dataclass
class ValidationError:
    """A constraint violation on one transformed record."""
    table: str
    record_id: str
    field: str
    message: str
    error_type: str = "validation"
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table,
            "record_id": self.record_id,
            "field": self.field,
            "message": self.message,
            "error_type": self.error_type,
            "value": to_jsonable(self.value),
        }


@dataclass(frozen=True)
class SourceRecord:
    """A row read from the legacy store. Never mutated after export."""
    table: str
    id: str
    data: Dict[str, Any]
    raw_data: Optional[Dict[str, Any]] = None  # Row exactly as SQLite returned it

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table,
            "id": self.id,
            "data": to_jsonable(self.data),
        }


@dataclass
class TransformedRecord:
    """A destination-shaped row keyed by its surrogate id."""
    id: str
    table: str
    data: Dict[str, Any]
    source_table: Optional[str] = None
    source_key: Optional[str] = None  # None for identities the pipeline synthesizes
    status: RecordStatus = RecordStatus.TRANSFORMED
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "table": self.table,
            "data": to_jsonable(self.data),
            "source_table": self.source_table,
            "source_key": self.source_key,
            "status": self.status.value,
            "warnings": self.warnings,
        }

    def to_row(self) -> Dict[str, Any]:
        """The row as written to the destination."""
        row = to_jsonable(self.data)
        row["id"] = self.id
        return row
