"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum


class MigrationPhaseEnum(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    EXPORTING = "exporting"
    TRANSFORMING = "transforming"
    VALIDATING = "validating"
    IMPORTING = "importing"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"


# Request Models
class MigrationRunRequest(BaseModel):
    """Unset flags fall back to the server configuration."""
    dry_run: Optional[bool] = None
    skip_validation: Optional[bool] = None
    auto_verify: Optional[bool] = None
    create_backup: Optional[bool] = None


class RollbackRequest(BaseModel):
    confirm: bool = False
    preserve_backup: bool = True


class RestoreRequest(BaseModel):
    backup_id: str
    confirm: bool = False


# Response Models
class MigrationStartedResponse(BaseModel):
    status: str
    dry_run: Optional[bool] = None


class MigrationStatusResponse(BaseModel):
    run_id: Optional[str] = None
    phase: MigrationPhaseEnum
    progress: float = 0.0
    label: str = ""
    in_progress: bool = False
    started_at: Optional[str] = None
    last_success: Optional[bool] = None
    statistics: Dict[str, Any] = Field(default_factory=dict)


class IssueResponse(BaseModel):
    kind: str
    message: str
    table: Optional[str] = None
    record_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None


class RollbackResponse(BaseModel):
    success: bool
    backup_id: Optional[str] = None
    deleted_counts: Dict[str, int] = Field(default_factory=dict)
    total_deleted: int = 0
    remaining_counts: Dict[str, int] = Field(default_factory=dict)
    preserved_identities: int = 0
    errors: List[IssueResponse] = Field(default_factory=list)


class RestoreResponse(BaseModel):
    backup_id: str
    success: bool
    restored_counts: Dict[str, int] = Field(default_factory=dict)
    total_restored: int = 0
    skipped_counts: Dict[str, int] = Field(default_factory=dict)
    errors: List[IssueResponse] = Field(default_factory=list)


class BackupInfo(BaseModel):
    backup_id: str
    created_at: str = ""
    kind: str = "rollback"
    description: str = ""
    record_counts: Dict[str, int] = Field(default_factory=dict)


class BackupListResponse(BaseModel):
    backups: List[BackupInfo]
    total: int
