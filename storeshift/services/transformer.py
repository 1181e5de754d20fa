"""Reshapes the exported legacy dataset into destination rows."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from datetime import datetime, timezone

from ..extractors.base import ExportedDataset
from ..models.errors import DuplicateMappingError, MigrationIssue, TransformationError
from ..models.mapping import IdentifierMapping, MEMBER_IDENTITY_SCOPE, SYSTEM_SCOPE
from ..models.record import SourceRecord, TransformedRecord
from ..models.schema import IMPORT_ORDER

logger = logging.getLogger(__name__)

ADMIN_KEY = "migration_admin"

SPEC_TITLE_MAX = 200
SPEC_DESCRIPTION_MAX = 500


@dataclass(frozen=True)
class EnumTranslation:
    """Fixed lookup from legacy values to a destination enum."""
    mapping: Dict[str, str]
    default: str

    def translate(self, value: Any) -> Tuple[str, bool]:
        """Returns (translated value, whether the default was used for an unknown value)."""
        if value is None or value == "":
            return self.default, False
        key = str(value).strip().lower()
        if key in self.mapping:
            return self.mapping[key], False
        return self.default, True


ROLE = EnumTranslation(
    {
        "admin": "admin",
        "lead_developer": "lead_developer",
        "security_reviewer": "lead_developer",
        "developer": "developer",
        "viewer": "viewer",
    },
    default="developer",
)
USER_STATUS = EnumTranslation(
    {
        "active": "active",
        "inactive": "inactive",
        "offline": "inactive",
        "suspended": "inactive",
        "bench": "pending",
        "pending": "pending",
    },
    default="active",
)
TASK_TYPE = EnumTranslation(
    {
        "feature": "feature",
        "bug": "bug",
        "security": "security",
        "deployment": "maintenance",
        "maintenance": "maintenance",
        "research": "enhancement",
        "enhancement": "enhancement",
    },
    default="feature",
)
PRIORITY = EnumTranslation(
    {p: p for p in ("low", "medium", "high", "critical")},
    default="medium",
)
TASK_STATUS = EnumTranslation(
    {
        "pending": "todo",
        "todo": "todo",
        "in_progress": "in_progress",
        "review": "review",
        "testing": "testing",
        "completed": "done",
        "done": "done",
        "blocked": "blocked",
    },
    default="todo",
)
CONFIDENTIALITY = EnumTranslation(
    {c: c for c in ("public", "team", "restricted", "confidential")},
    default="team",
)
SEVERITY = EnumTranslation(
    {s: s for s in ("low", "medium", "high", "critical")},
    default="medium",
)
ALERT_STATUS = EnumTranslation(
    {s: s for s in ("new", "investigating", "resolved", "false_positive")},
    default="new",
)
DEPLOYMENT_STATUS = EnumTranslation(
    {s: s for s in ("pending", "in_progress", "success", "failed", "rolled_back")},
    default="pending",
)
ENVIRONMENT = EnumTranslation(
    {
        "dev": "development",
        "development": "development",
        "staging": "staging",
        "stage": "staging",
        "prod": "production",
        "production": "production",
    },
    default="development",
)
SPEC_STATUS = EnumTranslation(
    {
        "draft": "draft",
        "approved": "approved",
        "in_progress": "review",
        "review": "review",
        "completed": "implemented",
        "implemented": "implemented",
        "rejected": "rejected",
        "archived": "archived",
    },
    default="draft",
)

# (table, field) -> translation applied during transformation
ENUM_TRANSLATIONS: Dict[Tuple[str, str], EnumTranslation] = {
    ("users", "role"): ROLE,
    ("users", "status"): USER_STATUS,
    ("tasks", "type"): TASK_TYPE,
    ("tasks", "priority"): PRIORITY,
    ("tasks", "status"): TASK_STATUS,
    ("tasks", "confidentiality_level"): CONFIDENTIALITY,
    ("security_alerts", "severity"): SEVERITY,
    ("security_alerts", "status"): ALERT_STATUS,
    ("deployments", "status"): DEPLOYMENT_STATUS,
    ("deployments", "environment"): ENVIRONMENT,
    ("specifications", "status"): SPEC_STATUS,
}


def placeholder_commit_hash(table: str, source_key: str) -> str:
    """Stable 40-character stand-in for a missing commit hash."""
    return hashlib.sha1(f"{table}:{source_key}".encode("utf-8")).hexdigest()


def truncate(value: Optional[str], max_length: int) -> str:
    if value is None:
        return ""
    return str(value)[:max_length]


@dataclass
class TransformationResult:
    """Destination rows for every table plus the mapping that produced them."""
    records: Dict[str, List[TransformedRecord]]
    mapping: IdentifierMapping
    admin_id: str
    warnings: List[MigrationIssue] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {table: len(rows) for table, rows in self.records.items()}

    @property
    def total_records(self) -> int:
        return sum(self.counts().values())

    def all_records(self) -> List[TransformedRecord]:
        return [r for table in self.records for r in self.records[table]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": self.counts(),
            "total_records": self.total_records,
            "admin_id": self.admin_id,
            "mapping_entries": len(self.mapping),
            "warnings": [w.to_dict() for w in self.warnings],
        }


class MigrationTransformer:
    """
    Two-pass transformation of the whole legacy dataset.

    Pass one assigns a surrogate key to every record of every table, so a
    reference may point forward within the batch. Pass two builds the
    destination rows and resolves every reference through the mapping.

    Identities (destination users) are the legacy account holders, one
    identity per roster entry whose email matches no account holder, and
    one synthesized administrative identity per run.
    """

    def __init__(
        self,
        admin_email: str,
        admin_name: str = "Migration Admin",
        seed_mapping: Optional[IdentifierMapping] = None,
        on_table: Optional[Callable[[str, int, int], None]] = None,
    ):
        """
        Args:
            admin_email: Email of the synthesized administrative identity
            admin_name: Display name of that identity
            seed_mapping: Mapping of a previous run; reused keys keep their surrogates
            on_table: Called as on_table(table, index, total) after each table
        """
        self.admin_email = admin_email
        self.admin_name = admin_name
        self.seed_mapping = seed_mapping
        self.on_table = on_table

    def transform(self, dataset: ExportedDataset) -> TransformationResult:
        """
        Transform the full dataset.

        Raises:
            TransformationError: on duplicate source keys or malformed JSON columns
        """
        self._mapping = IdentifierMapping.from_dict(self.seed_mapping.to_dict()) if self.seed_mapping else IdentifierMapping()
        self._warnings: List[MigrationIssue] = []
        self._roster_identity: Dict[str, str] = {}
        self._new_identities: List[SourceRecord] = []
        self._now = datetime.now(timezone.utc)

        self._assign_keys(dataset)

        builders = {
            "users": self._build_users,
            "team_members": self._build_team_members,
            "tasks": self._build_tasks,
            "security_alerts": self._build_security_alerts,
            "audit_logs": self._build_audit_logs,
            "deployments": self._build_deployments,
            "snapshots": self._build_snapshots,
            "specifications": self._build_specifications,
        }
        records: Dict[str, List[TransformedRecord]] = {}
        for index, table in enumerate(IMPORT_ORDER, start=1):
            records[table] = builders[table](dataset.records(table))
            logger.info(f"Transformed {len(records[table])} {table} records")
            if self.on_table:
                self.on_table(table, index, len(IMPORT_ORDER))

        return TransformationResult(
            records=records,
            mapping=self._mapping,
            admin_id=self._mapping.resolve(SYSTEM_SCOPE, ADMIN_KEY),
            warnings=self._warnings,
        )

    # Pass one

    def _assign_keys(self, dataset: ExportedDataset) -> None:
        for table in IMPORT_ORDER:
            seen = set()
            for record in dataset.records(table):
                if record.id in seen:
                    raise DuplicateMappingError(
                        f"Duplicate source key {record.id!r} in {table}",
                        table=table,
                        record_id=record.id,
                    )
                seen.add(record.id)
                self._mapping.get_or_assign(table, record.id)

        holder_by_email = {}
        for holder in dataset.records("users"):
            email = (holder.data.get("email") or "").strip().lower()
            if email:
                holder_by_email.setdefault(email, self._mapping.resolve("users", holder.id))

        created_by_email: Dict[str, str] = {}
        for member in dataset.records("team_members"):
            email = (member.data.get("email") or "").strip().lower()
            if email and email in holder_by_email:
                self._roster_identity[member.id] = holder_by_email[email]
            elif email and email in created_by_email:
                self._roster_identity[member.id] = created_by_email[email]
            else:
                identity = self._mapping.get_or_assign(MEMBER_IDENTITY_SCOPE, member.id)
                self._roster_identity[member.id] = identity
                self._new_identities.append(member)
                if email:
                    created_by_email[email] = identity

        self._mapping.get_or_assign(SYSTEM_SCOPE, ADMIN_KEY)

    # Helpers

    def _warn(self, record: TransformedRecord, message: str) -> None:
        record.warnings.append(message)
        self._warnings.append(MigrationIssue(
            kind=TransformationError.kind,
            message=message,
            table=record.table,
            record_id=record.source_key,
        ))
        logger.warning(f"{record.table}/{record.source_key}: {message}")

    def _new_record(self, table: str, source: SourceRecord) -> TransformedRecord:
        return TransformedRecord(
            id=self._mapping.resolve(table, source.id),
            table=table,
            data={},
            source_table=source.table,
            source_key=source.id,
        )

    def _enum(self, record: TransformedRecord, field_name: str, value: Any) -> str:
        translation = ENUM_TRANSLATIONS[(record.table, field_name)]
        translated, unknown = translation.translate(value)
        if unknown:
            self._warn(record, f"Unknown {field_name} {value!r}; using {translated!r}")
        return translated

    def _json(self, record: TransformedRecord, field_name: str, value: Any) -> Any:
        if value is None or value == "":
            return {}
        if isinstance(value, (dict, list)):
            return value
        try:
            return json.loads(value)
        except (TypeError, ValueError) as e:
            raise TransformationError(
                f"Malformed JSON in {record.table}.{field_name}: {e}",
                table=record.table,
                record_id=record.source_key,
                field=field_name,
            ) from e

    def _user_ref(self, source_key: Any) -> Optional[str]:
        if source_key is None or source_key == "":
            return None
        key = str(source_key)
        return self._mapping.get("users", key) or self._roster_identity.get(key)

    def _ref(
        self,
        record: TransformedRecord,
        field_name: str,
        source_key: Any,
        scope: str,
    ) -> Optional[str]:
        """Resolve a scalar reference; unmigrated targets are dropped with a warning."""
        if source_key is None or source_key == "":
            return None
        target = self._user_ref(source_key) if scope == "users" else self._mapping.get(scope, source_key)
        if target is None:
            self._warn(record, f"Dropped {field_name}: {source_key!r} was not migrated")
        return target

    def _refs(
        self,
        record: TransformedRecord,
        field_name: str,
        source_keys: Optional[List[Any]],
        scope: str,
    ) -> List[str]:
        resolved = []
        for key in source_keys or []:
            target = self._ref(record, field_name, key, scope)
            if target is not None:
                resolved.append(target)
        return resolved

    def _owner(self, record: TransformedRecord, field_name: str, source_key: Any) -> str:
        """Ownership fields fall back to the administrative identity."""
        owner = self._ref(record, field_name, source_key, "users")
        return owner or self._mapping.resolve(SYSTEM_SCOPE, ADMIN_KEY)

    def _timestamp(self, value: Optional[datetime]) -> datetime:
        return value or self._now

    @staticmethod
    def _int(value: Any) -> int:
        if value is None or value == "":
            return 0
        return int(round(float(value)))

    # Pass two, one builder per table

    def _build_users(self, holders: List[SourceRecord]) -> List[TransformedRecord]:
        rows = []
        for holder in holders:
            record = self._new_record("users", holder)
            data = holder.data
            record.data = {
                "email": data.get("email"),
                "name": data.get("name"),
                "role": self._enum(record, "role", data.get("role")),
                "status": self._enum(record, "status", data.get("status")),
                "github_username": data.get("github_username"),
                "avatar_url": data.get("avatar_url"),
                "created_at": self._timestamp(data.get("created_at")),
                "updated_at": self._timestamp(data.get("updated_at")),
            }
            rows.append(record)

        for member in self._new_identities:
            record = TransformedRecord(
                id=self._mapping.resolve(MEMBER_IDENTITY_SCOPE, member.id),
                table="users",
                data={},
                source_table="team_members",
                source_key=member.id,
            )
            data = member.data
            record.data = {
                "email": data.get("email"),
                "name": data.get("name"),
                "role": self._enum(record, "role", data.get("role")),
                "status": self._enum(record, "status", data.get("status")),
                "github_username": None,
                "avatar_url": None,
                "created_at": self._timestamp(data.get("created_at")),
                "updated_at": self._timestamp(data.get("updated_at")),
            }
            rows.append(record)

        rows.append(TransformedRecord(
            id=self._mapping.resolve(SYSTEM_SCOPE, ADMIN_KEY),
            table="users",
            data={
                "email": self.admin_email,
                "name": self.admin_name,
                "role": "admin",
                "status": "active",
                "github_username": None,
                "avatar_url": None,
                "created_at": self._now,
                "updated_at": self._now,
            },
        ))
        return rows

    def _build_team_members(self, members: List[SourceRecord]) -> List[TransformedRecord]:
        rows = []
        for member in members:
            record = self._new_record("team_members", member)
            data = member.data
            record.data = {
                "user_id": self._roster_identity[member.id],
                "name": data.get("name"),
                "email": data.get("email"),
                "role": data.get("role") or "developer",
                "status": data.get("status") or "active",
                "assignments": data.get("assignments") or [],
                "expertise": data.get("expertise") or [],
                "workload": self._int(data.get("workload")),
                "created_at": self._timestamp(data.get("created_at")),
                "updated_at": self._timestamp(data.get("updated_at")),
            }
            rows.append(record)
        return rows

    def _build_tasks(self, tasks: List[SourceRecord]) -> List[TransformedRecord]:
        rows = []
        for task in tasks:
            record = self._new_record("tasks", task)
            data = task.data
            record.data = {
                "title": data.get("title"),
                "description": data.get("description") or "",
                "type": self._enum(record, "type", data.get("type")),
                "priority": self._enum(record, "priority", data.get("priority")),
                "status": self._enum(record, "status", data.get("status")),
                "assignee_id": self._ref(record, "assignee_id", data.get("assignee_id"), "team_members"),
                "reporter_id": self._owner(record, "reporter_id", data.get("reporter_id")),
                "estimated_hours": self._int(data.get("estimated_hours")),
                "actual_hours": self._int(data.get("actual_hours")),
                "related_commits": data.get("related_commits") or [],
                "related_pull_requests": data.get("related_pull_requests") or [],
                "dependencies": self._refs(record, "dependencies", data.get("dependencies"), "tasks"),
                "blocked_by": self._refs(record, "blocked_by", data.get("blocked_by"), "tasks"),
                "confidentiality_level": self._enum(
                    record, "confidentiality_level", data.get("confidentiality_level")
                ),
                "authorized_users": self._refs(
                    record, "authorized_users", data.get("authorized_users"), "users"
                ),
                "authorized_roles": data.get("authorized_roles") or [],
                "created_at": self._timestamp(data.get("created_at")),
                "due_date": data.get("due_date"),
                "completed_at": data.get("completed_at"),
            }
            rows.append(record)
        return rows

    def _build_security_alerts(self, alerts: List[SourceRecord]) -> List[TransformedRecord]:
        rows = []
        for alert in alerts:
            record = self._new_record("security_alerts", alert)
            data = alert.data
            record.data = {
                "type": data.get("type"),
                "severity": self._enum(record, "severity", data.get("severity")),
                "title": data.get("title"),
                "description": data.get("description") or "",
                "ai_explanation": data.get("ai_explanation"),
                "trigger_data": self._json(record, "trigger_data", data.get("trigger_data")),
                "status": self._enum(record, "status", data.get("status")),
                "assigned_to": self._ref(record, "assigned_to", data.get("assigned_to"), "users"),
                "detected_at": self._timestamp(data.get("detected_at")),
                "resolved_at": data.get("resolved_at"),
                "rollback_suggested": bool(data.get("rollback_suggested")),
                "evidence": self._json(record, "evidence", data.get("evidence")),
            }
            rows.append(record)
        return rows

    def _build_audit_logs(self, logs: List[SourceRecord]) -> List[TransformedRecord]:
        rows = []
        for log in logs:
            record = self._new_record("audit_logs", log)
            data = log.data
            record.data = {
                "action_type": data.get("action_type"),
                "description": data.get("description") or "",
                "ai_reasoning": data.get("ai_reasoning"),
                "context_data": self._json(record, "context_data", data.get("context_data")),
                "user_id": self._ref(record, "user_id", data.get("user_id"), "users"),
                "timestamp": self._timestamp(data.get("timestamp")),
                "requires_approval": bool(data.get("requires_approval")),
                "approved": bool(data.get("approved")),
                "approved_by": self._ref(record, "approved_by", data.get("approved_by"), "users"),
                "approved_at": data.get("approved_at"),
            }
            rows.append(record)
        return rows

    def _build_deployments(self, deployments: List[SourceRecord]) -> List[TransformedRecord]:
        rows = []
        for deployment in deployments:
            record = self._new_record("deployments", deployment)
            data = deployment.data
            deployed_at = self._timestamp(data.get("deployed_at"))
            record.data = {
                "environment": self._enum(record, "environment", data.get("environment")),
                "version": data.get("version"),
                "status": self._enum(record, "status", data.get("status")),
                "initiated_by": self._owner(record, "initiated_by", data.get("deployed_by")),
                "commit_hash": placeholder_commit_hash("deployments", deployment.id),
                "branch": "main",
                "deployment_config": self._json(record, "deployment_config", data.get("pipeline_config")),
                "deployment_logs": data.get("logs"),
                "health_check_status": data.get("health_checks"),
                "started_at": deployed_at,
                "created_at": deployed_at,
            }
            rows.append(record)
        return rows

    def _build_snapshots(self, snapshots: List[SourceRecord]) -> List[TransformedRecord]:
        rows = []
        for snapshot in snapshots:
            record = self._new_record("snapshots", snapshot)
            data = snapshot.data
            record.data = {
                "name": f"Migration Snapshot {snapshot.id}",
                "description": "Migrated from legacy store",
                "commit_hash": data.get("git_commit") or placeholder_commit_hash("snapshots", snapshot.id),
                "branch": "main",
                "author_id": self._owner(record, "author_id", None),
                "file_changes": {"config_files": data.get("config_files") or []},
                "metadata": {
                    "original_id": snapshot.id,
                    "environment": data.get("environment"),
                    "database_backup": data.get("database_backup"),
                    "verified": bool(data.get("verified")),
                },
                "is_automated": True,
                "created_at": self._timestamp(data.get("created_at")),
            }
            rows.append(record)
        return rows

    def _build_specifications(self, specs: List[SourceRecord]) -> List[TransformedRecord]:
        rows = []
        for spec in specs:
            record = self._new_record("specifications", spec)
            data = spec.data
            approver = self._ref(record, "approved_by", data.get("approved_by"), "users")
            record.data = {
                "title": truncate(data.get("raw_input"), SPEC_TITLE_MAX),
                "description": truncate(data.get("ai_interpretation"), SPEC_DESCRIPTION_MAX),
                "content": data.get("ai_interpretation") or "",
                "type": "feature",
                "status": self._enum(record, "status", data.get("status")),
                "priority": "medium",
                "author_id": self._owner(record, "author_id", None),
                "assignee_id": self._ref(record, "assignee_id", data.get("assigned_to"), "users"),
                "approved_by": [approver] if approver else [],
                "attachments": {
                    "suggested_branch_name": data.get("suggested_branch_name"),
                    "suggested_commit_message": data.get("suggested_commit_message"),
                    "placeholder_diff": data.get("placeholder_diff"),
                },
                "created_at": self._timestamp(data.get("created_at")),
                "approved_at": data.get("approved_at"),
            }
            rows.append(record)
        return rows
