"""Table declarations for the legacy source store and the hosted destination.

Source specs describe how raw SQLite columns are normalized during export.
Destination specs describe the constraints the validator and verifier check:
reference fields, enum domains, unique fields, minimum lengths, email fields,
fixed-length hash fields and logical date ordering.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Table(str, Enum):
    """The eight tables migrated, in import (dependency) order."""
    USERS = "users"
    TEAM_MEMBERS = "team_members"
    TASKS = "tasks"
    SECURITY_ALERTS = "security_alerts"
    AUDIT_LOGS = "audit_logs"
    DEPLOYMENTS = "deployments"
    SNAPSHOTS = "snapshots"
    SPECIFICATIONS = "specifications"


# Owners before dependents.
IMPORT_ORDER: List[str] = [t.value for t in Table]

# Dependents before owners.
ROLLBACK_ORDER: List[str] = list(reversed(IMPORT_ORDER))


@dataclass(frozen=True)
class SourceTableSpec:
    """How to normalize the columns of one legacy table."""
    name: str
    list_fields: Tuple[str, ...] = ()
    timestamp_fields: Tuple[str, ...] = ()
    bool_fields: Tuple[str, ...] = ()


SOURCE_TABLES: Dict[str, SourceTableSpec] = {
    "users": SourceTableSpec(
        name="users",
        timestamp_fields=("created_at", "updated_at", "last_login", "password_reset_expires"),
    ),
    "team_members": SourceTableSpec(
        name="team_members",
        list_fields=("assignments", "expertise"),
        timestamp_fields=("created_at", "updated_at"),
    ),
    "tasks": SourceTableSpec(
        name="tasks",
        list_fields=(
            "related_commits", "related_pull_requests", "dependencies",
            "blocked_by", "authorized_users", "authorized_roles",
        ),
        timestamp_fields=("created_at", "due_date", "completed_at"),
    ),
    "security_alerts": SourceTableSpec(
        name="security_alerts",
        timestamp_fields=("detected_at", "resolved_at"),
        bool_fields=("rollback_suggested",),
    ),
    "audit_logs": SourceTableSpec(
        name="audit_logs",
        timestamp_fields=("timestamp", "approved_at"),
        bool_fields=("requires_approval", "approved"),
    ),
    "deployments": SourceTableSpec(
        name="deployments",
        timestamp_fields=("deployed_at",),
        bool_fields=("rollback_available",),
    ),
    "snapshots": SourceTableSpec(
        name="snapshots",
        list_fields=("config_files",),
        timestamp_fields=("created_at",),
        bool_fields=("verified",),
    ),
    "specifications": SourceTableSpec(
        name="specifications",
        timestamp_fields=("created_at", "approved_at"),
    ),
}


@dataclass(frozen=True)
class Reference:
    """A foreign-key-shaped field."""
    table: str
    many: bool = False  # array of keys rather than a single key
    nullable: bool = True


@dataclass(frozen=True)
class DestinationTableSpec:
    """Constraints of one hosted table."""
    name: str
    references: Dict[str, Reference] = field(default_factory=dict)
    enums: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    unique_fields: Tuple[str, ...] = ()
    min_lengths: Dict[str, int] = field(default_factory=dict)
    max_lengths: Dict[str, int] = field(default_factory=dict)
    patterns: Dict[str, str] = field(default_factory=dict)  # regex the value must match at its start
    email_fields: Tuple[str, ...] = ()
    hash_fields: Tuple[str, ...] = ()
    date_order: Tuple[Tuple[str, str], ...] = ()  # (earlier, later)
    timestamp_fields: Tuple[str, ...] = ()

    def reference_fields(self, target: Optional[str] = None) -> List[str]:
        """Names of reference fields, optionally only those pointing at target."""
        return [
            name for name, ref in self.references.items()
            if target is None or ref.table == target
        ]


USER_ROLES = ("admin", "lead_developer", "developer", "viewer")
USER_STATUSES = ("active", "inactive", "pending")
TASK_TYPES = ("feature", "bug", "enhancement", "maintenance", "security")
PRIORITIES = ("low", "medium", "high", "critical")
TASK_STATUSES = ("todo", "in_progress", "review", "testing", "done", "blocked")
CONFIDENTIALITY_LEVELS = ("public", "team", "confidential", "restricted")
ALERT_SEVERITIES = ("low", "medium", "high", "critical")
ALERT_STATUSES = ("new", "investigating", "resolved", "false_positive")
DEPLOYMENT_STATUSES = ("pending", "in_progress", "success", "failed", "rolled_back")
ENVIRONMENTS = ("development", "staging", "production")
SPEC_STATUSES = ("draft", "review", "approved", "rejected", "implemented", "archived")


DESTINATION_TABLES: Dict[str, DestinationTableSpec] = {
    "users": DestinationTableSpec(
        name="users",
        enums={"role": USER_ROLES, "status": USER_STATUSES},
        unique_fields=("email",),
        min_lengths={"name": 2},
        max_lengths={"name": 100},
        email_fields=("email",),
        timestamp_fields=("created_at", "updated_at"),
    ),
    "team_members": DestinationTableSpec(
        name="team_members",
        references={"user_id": Reference("users", nullable=False)},
        min_lengths={"name": 2},
        max_lengths={"name": 100},
        email_fields=("email",),
        timestamp_fields=("created_at", "updated_at"),
    ),
    "tasks": DestinationTableSpec(
        name="tasks",
        references={
            "assignee_id": Reference("team_members"),
            "reporter_id": Reference("users", nullable=False),
            "dependencies": Reference("tasks", many=True),
            "blocked_by": Reference("tasks", many=True),
            "authorized_users": Reference("users", many=True),
        },
        enums={
            "type": TASK_TYPES,
            "priority": PRIORITIES,
            "status": TASK_STATUSES,
            "confidentiality_level": CONFIDENTIALITY_LEVELS,
        },
        min_lengths={"title": 3, "description": 10},
        max_lengths={"title": 200},
        date_order=(("created_at", "due_date"), ("created_at", "completed_at")),
        timestamp_fields=("created_at", "due_date", "completed_at"),
    ),
    "security_alerts": DestinationTableSpec(
        name="security_alerts",
        references={"assigned_to": Reference("users")},
        enums={"severity": ALERT_SEVERITIES, "status": ALERT_STATUSES},
        min_lengths={"title": 5, "description": 10},
        max_lengths={"title": 200},
        date_order=(("detected_at", "resolved_at"),),
        timestamp_fields=("detected_at", "resolved_at"),
    ),
    "audit_logs": DestinationTableSpec(
        name="audit_logs",
        references={
            "user_id": Reference("users"),
            "approved_by": Reference("users"),
        },
        min_lengths={"action_type": 3, "description": 5},
        max_lengths={"action_type": 100},
        date_order=(("timestamp", "approved_at"),),
        timestamp_fields=("timestamp", "approved_at"),
    ),
    "deployments": DestinationTableSpec(
        name="deployments",
        references={"initiated_by": Reference("users", nullable=False)},
        enums={"status": DEPLOYMENT_STATUSES, "environment": ENVIRONMENTS},
        patterns={"version": r"v?\d+\.\d+\.\d+"},
        hash_fields=("commit_hash",),
        timestamp_fields=("started_at", "created_at"),
    ),
    "snapshots": DestinationTableSpec(
        name="snapshots",
        references={"author_id": Reference("users", nullable=False)},
        min_lengths={"name": 3},
        max_lengths={"name": 200},
        hash_fields=("commit_hash",),
        timestamp_fields=("created_at",),
    ),
    "specifications": DestinationTableSpec(
        name="specifications",
        references={
            "author_id": Reference("users", nullable=False),
            "assignee_id": Reference("users"),
            "approved_by": Reference("users", many=True),
        },
        min_lengths={"title": 5, "description": 10, "content": 50},
        max_lengths={"title": 200},
        enums={"status": SPEC_STATUSES, "priority": PRIORITIES},
        date_order=(("created_at", "approved_at"),),
        timestamp_fields=("created_at", "approved_at"),
    ),
}
