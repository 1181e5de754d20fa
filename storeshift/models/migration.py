"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime, timezone
import json
import os
import uuid
from types import MappingProxyType

from .errors import MigrationIssue, RunFinalizedError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MigrationPhase(str, Enum):
    """Phase of a migration run, in pipeline order."""
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

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationPhase.COMPLETED, MigrationPhase.FAILED)


# Linear part of the pipeline; forward skips along it are legal.
PIPELINE_PHASES: List[MigrationPhase] = [
    MigrationPhase.IDLE,
    MigrationPhase.INITIALIZING,
    MigrationPhase.EXPORTING,
    MigrationPhase.TRANSFORMING,
    MigrationPhase.VALIDATING,
    MigrationPhase.IMPORTING,
    MigrationPhase.VERIFYING,
]


@dataclass(frozen=True)
class ProgressUpdate:
    """One published progress event."""
    run_id: Optional[str]
    phase: MigrationPhase
    progress: float  # 0.0 - 1.0 within the phase
    label: str
    timestamp: datetime = field(default_factory=utcnow)
    completed_operations: int = 0
    failed_operations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "run_id": self.run_id,
            "phase": self.phase.value,
            "progress": self.progress,
            "label": self.label,
            "timestamp": self.timestamp.isoformat(),
            "completed_operations": self.completed_operations,
            "failed_operations": self.failed_operations,
        }


@dataclass
class MigrationRun:
    """
    A single end-to-end execution.

    The run is mutable while it executes. After finish() every attribute
    assignment and every mutating helper raises RunFinalizedError.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    dry_run: bool = False
    skip_validation: bool = False
    auto_verify: bool = True
    create_backup: bool = True

    phase: MigrationPhase = MigrationPhase.IDLE
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    success: Optional[bool] = None
    result: Dict[str, Any] = field(default_factory=dict)
    issues: List[MigrationIssue] = field(default_factory=list)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_finalized", False):
            raise RunFinalizedError(f"Run {self.id} is finished; cannot set {name}")
        super().__setattr__(name, value)

    @property
    def finalized(self) -> bool:
        return getattr(self, "_finalized", False)

    def add_issue(self, issue: MigrationIssue) -> None:
        if self.finalized:
            raise RunFinalizedError(f"Run {self.id} is finished; cannot add issues")
        self.issues.append(issue)

    def finish(self, success: bool, result: Optional[Dict[str, Any]] = None) -> None:
        """Record the outcome and freeze the run."""
        self.success = success
        if result is not None:
            self.result = result
        self.ended_at = utcnow()
        # Freeze containers too, so in-place edits fail loudly.
        self.issues = tuple(self.issues)
        self.result = MappingProxyType(dict(self.result))
        self._finalized = True

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "dry_run": self.dry_run,
            "skip_validation": self.skip_validation,
            "auto_verify": self.auto_verify,
            "create_backup": self.create_backup,
            "phase": self.phase.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
            "success": self.success,
            "result": dict(self.result),
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass
class MigrationConfig:
    """Configuration for a migration."""
    # Source and destination
    source_path: str = ""
    destination_url: str = ""
    destination_api_key: Optional[str] = None
    destination_schema: str = "public"

    # Output
    output_dir: str = "./migration_output"

    # Identities
    admin_email: str = "migration-admin@storeshift.local"
    admin_name: str = "Migration Admin"
    preserved_identity_emails: List[str] = field(
        default_factory=lambda: ["system@storeshift.local"]
    )

    # Verification
    sample_size: int = 10

    # HTTP client
    request_timeout: Optional[float] = None
    max_retries: int = 3
    backoff_factor: float = 1.0

    # Report thresholds
    slow_run_seconds: float = 300.0
    slow_phase_seconds: float = 120.0
    error_rate_threshold: float = 0.1
    heartbeat_interval: Optional[float] = None

    # Run flags
    dry_run: bool = False
    skip_validation: bool = False
    auto_verify: bool = True
    create_backup: bool = True

    @property
    def backup_dir(self) -> str:
        return os.path.join(self.output_dir, "backups")

    @property
    def report_dir(self) -> str:
        return os.path.join(self.output_dir, "reports")

    @property
    def mapping_dir(self) -> str:
        return os.path.join(self.output_dir, "mappings")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation. The API key is never included."""
        return {
            "source_path": self.source_path,
            "destination_url": self.destination_url,
            "destination_schema": self.destination_schema,
            "output_dir": self.output_dir,
            "admin_email": self.admin_email,
            "admin_name": self.admin_name,
            "preserved_identity_emails": self.preserved_identity_emails,
            "sample_size": self.sample_size,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "backoff_factor": self.backoff_factor,
            "slow_run_seconds": self.slow_run_seconds,
            "slow_phase_seconds": self.slow_phase_seconds,
            "error_rate_threshold": self.error_rate_threshold,
            "heartbeat_interval": self.heartbeat_interval,
            "dry_run": self.dry_run,
            "skip_validation": self.skip_validation,
            "auto_verify": self.auto_verify,
            "create_backup": self.create_backup,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation, falling back to environment variables."""
        defaults = cls()
        return cls(
            source_path=data.get("source_path") or os.getenv("STORESHIFT_SOURCE_PATH", ""),
            destination_url=data.get("destination_url") or os.getenv("STORESHIFT_DESTINATION_URL", ""),
            destination_api_key=data.get("destination_api_key") or os.getenv("STORESHIFT_DESTINATION_KEY"),
            destination_schema=data.get("destination_schema", defaults.destination_schema),
            output_dir=data.get("output_dir", defaults.output_dir),
            admin_email=data.get("admin_email", defaults.admin_email),
            admin_name=data.get("admin_name", defaults.admin_name),
            preserved_identity_emails=list(
                data.get("preserved_identity_emails", defaults.preserved_identity_emails)
            ),
            sample_size=data.get("sample_size", defaults.sample_size),
            request_timeout=data.get("request_timeout"),
            max_retries=data.get("max_retries", defaults.max_retries),
            backoff_factor=data.get("backoff_factor", defaults.backoff_factor),
            slow_run_seconds=data.get("slow_run_seconds", defaults.slow_run_seconds),
            slow_phase_seconds=data.get("slow_phase_seconds", defaults.slow_phase_seconds),
            error_rate_threshold=data.get("error_rate_threshold", defaults.error_rate_threshold),
            heartbeat_interval=data.get("heartbeat_interval"),
            dry_run=data.get("dry_run", False),
            skip_validation=data.get("skip_validation", False),
            auto_verify=data.get("auto_verify", True),
            create_backup=data.get("create_backup", True),
        )

    @classmethod
    def from_json_file(cls, path: str) -> "MigrationConfig":
        """Load configuration from a JSON file."""
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))
