"""Error kinds and exceptions raised inside the migration pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of failure categories."""
    EXPORT_ERROR = "export_error"
    TRANSFORMATION_ERROR = "transformation_error"
    VALIDATION_ERROR = "validation_error"
    IMPORT_ERROR = "import_error"
    VERIFICATION_DISCREPANCY = "verification_discrepancy"
    ROLLBACK_ERROR = "rollback_error"
    RESTORE_ERROR = "restore_error"


@dataclass
class MigrationIssue:
    """A structured error or warning attached to a component result."""
    kind: ErrorKind
    message: str
    table: Optional[str] = None
    record_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "table": self.table,
            "record_id": self.record_id,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class MigrationError(Exception):
    """Base class for pipeline exceptions. Carries a kind and structured context."""

    kind: ErrorKind = ErrorKind.TRANSFORMATION_ERROR

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        **context: Any
    ):
        super().__init__(message)
        self.message = message
        self.table = table
        self.record_id = record_id
        self.context = context

    def to_issue(self) -> MigrationIssue:
        """Convert the exception into a result entry."""
        return MigrationIssue(
            kind=self.kind,
            message=self.message,
            table=self.table,
            record_id=self.record_id,
            context=dict(self.context),
        )


class ExportError(MigrationError):
    """The source store could not be read."""
    kind = ErrorKind.EXPORT_ERROR


class TransformationError(MigrationError):
    """A source record cannot be reshaped for the destination."""
    kind = ErrorKind.TRANSFORMATION_ERROR


class DuplicateMappingError(TransformationError):
    """A source key was assigned a surrogate key twice in one run."""


class UnmappedIdentifierError(TransformationError):
    """A lookup referenced a source key that has no surrogate key."""


class DestinationError(MigrationError):
    """A destination store request failed."""
    kind = ErrorKind.IMPORT_ERROR


class RollbackError(MigrationError):
    kind = ErrorKind.ROLLBACK_ERROR


class RestoreError(MigrationError):
    kind = ErrorKind.RESTORE_ERROR


class BackupNotFoundError(RestoreError):
    """No snapshot exists for the requested backup id."""


class InvalidPhaseTransition(RuntimeError):
    """The progress state machine was asked for an illegal transition."""


class RunFinalizedError(RuntimeError):
    """A finished MigrationRun was mutated."""
