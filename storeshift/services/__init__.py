"""Services for the migration pipeline."""

from .transformer import MigrationTransformer, TransformationResult, ENUM_TRANSLATIONS
from .validator import DatasetValidator, ValidationReport, ValidationRules
from .verifier import MigrationVerifier, VerificationReport, CheckResult
from .backup import BackupSnapshot, FileBackupStore
from .rollback import RollbackManager, RollbackResult, RestoreResult
from .progress import ProgressTracker, FileReportSink, RunReport

__all__ = [
    "MigrationTransformer",
    "TransformationResult",
    "ENUM_TRANSLATIONS",
    "DatasetValidator",
    "ValidationReport",
    "ValidationRules",
    "MigrationVerifier",
    "VerificationReport",
    "CheckResult",
    "BackupSnapshot",
    "FileBackupStore",
    "RollbackManager",
    "RollbackResult",
    "RestoreResult",
    "ProgressTracker",
    "FileReportSink",
    "RunReport",
]
