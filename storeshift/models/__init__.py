"""Data models for the migration pipeline."""

from .errors import (
    ErrorKind,
    MigrationIssue,
    MigrationError,
    ExportError,
    TransformationError,
    DuplicateMappingError,
    UnmappedIdentifierError,
    DestinationError,
    RollbackError,
    RestoreError,
    BackupNotFoundError,
    InvalidPhaseTransition,
    RunFinalizedError,
)
from .mapping import IdentifierMapping
from .migration import (
    MigrationConfig,
    MigrationRun,
    MigrationPhase,
    ProgressUpdate,
)
from .record import (
    SourceRecord,
    TransformedRecord,
    RecordStatus,
    ValidationError,
)
from .schema import (
    Table,
    IMPORT_ORDER,
    ROLLBACK_ORDER,
    SOURCE_TABLES,
    DESTINATION_TABLES,
)

__all__ = [
    "ErrorKind",
    "MigrationIssue",
    "MigrationError",
    "ExportError",
    "TransformationError",
    "DuplicateMappingError",
    "UnmappedIdentifierError",
    "DestinationError",
    "RollbackError",
    "RestoreError",
    "BackupNotFoundError",
    "InvalidPhaseTransition",
    "RunFinalizedError",
    "IdentifierMapping",
    "MigrationConfig",
    "MigrationRun",
    "MigrationPhase",
    "ProgressUpdate",
    "SourceRecord",
    "TransformedRecord",
    "RecordStatus",
    "ValidationError",
    "Table",
    "IMPORT_ORDER",
    "ROLLBACK_ORDER",
    "SOURCE_TABLES",
    "DESTINATION_TABLES",
]
